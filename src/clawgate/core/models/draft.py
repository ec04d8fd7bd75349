"""Draft 领域模型

写动作通过注入过滤后被暂存为 Draft，status=pending。
只有 Dual-Confirmation 校验成功才能流转到 confirmed；
超过 TTL 流转到 expired；release 或过期回收后从存储中删除。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import DraftStatus
from .request import ActionRequest
from .verdict import ThreatDescriptor


class Draft(BaseModel):
    """待确认的写动作"""

    task_id: str = Field(description="关联的任务标识")
    request: ActionRequest = Field(description="原始动作请求")
    status: DraftStatus = Field(default=DraftStatus.PENDING)
    high_risk: bool = Field(default=False, description="注入过滤命中但未达到阻断阈值")
    threats: list[ThreatDescriptor] = Field(
        default_factory=list,
        description="高风险 Draft 保留的威胁描述，用于通知 owner",
    )
    owner_notified: bool = Field(default=False, description="高风险威胁是否已通知 owner")
    confirmed_stages: list[str] = Field(
        default_factory=list,
        description="已完成双重确认的阶段",
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    expires_at: datetime = Field(description="过期时间")
    status_reason: str = Field(default="", description="最近一次状态变更原因")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def releasable(self) -> bool:
        """confirmed 且（非高风险或已通知 owner）"""
        if self.status != DraftStatus.CONFIRMED:
            return False
        return not self.high_risk or self.owner_notified
