"""授权决策结果类型

各阶段的结果均为显式的 tagged 变体，调用方需要逐一处理。
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from .draft import Draft
from .enums import DenialReason
from .request import ActionRequest
from .verdict import ThreatDescriptor


class AuthorizationResult(BaseModel):
    """Owner Guard 判定结果"""

    model_config = ConfigDict(frozen=True)

    authorized: bool
    reason: DenialReason


class ImmediateExecution(BaseModel):
    """读动作且内容干净，可以立即执行"""

    kind: Literal["immediate"] = "immediate"
    request: ActionRequest


class StagingRejected(BaseModel):
    """读动作但内容被标记，拒绝执行"""

    kind: Literal["rejected"] = "rejected"
    request: ActionRequest
    reason: str
    threats: list[ThreatDescriptor] = Field(default_factory=list)


# stage_if_needed 的返回类型：ImmediateExecution | StagingRejected | Draft
StagingOutcome = ImmediateExecution | StagingRejected | Draft


class DeniedDecision(BaseModel):
    """Owner Guard 拒绝"""

    kind: Literal["denied"] = "denied"
    task_id: str
    reason: DenialReason


class BlockedDecision(BaseModel):
    """注入置信度达到阻断阈值"""

    kind: Literal["blocked"] = "blocked"
    task_id: str
    reason: str
    confidence: float
    threats: list[ThreatDescriptor] = Field(default_factory=list)


class RejectedDecision(BaseModel):
    """被标记的读动作"""

    kind: Literal["rejected"] = "rejected"
    task_id: str
    reason: str
    threats: list[ThreatDescriptor] = Field(default_factory=list)


class ImmediateDecision(BaseModel):
    """可立即交给执行器"""

    kind: Literal["immediate"] = "immediate"
    task_id: str
    request: ActionRequest


class StagedDecision(BaseModel):
    """已暂存为 Draft，等待双重确认"""

    kind: Literal["staged"] = "staged"
    task_id: str
    draft: Draft
    owner_notified: bool = False


PipelineDecision = Annotated[
    DeniedDecision | BlockedDecision | RejectedDecision | ImmediateDecision | StagedDecision,
    Field(discriminator="kind"),
]
