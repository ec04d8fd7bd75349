"""Draft 确认路由

GET  /api/drafts/{task_id}: Draft 状态（不含密码）
POST /api/drafts/{task_id}/challenges: 签发挑战，密码只经带外渠道投递
POST /api/drafts/{task_id}/challenges/{stage}/redeliver: 重发未送达的槽位
POST /api/drafts/{task_id}/confirm: 校验双密码，永远 200 {valid}
POST /api/drafts/{task_id}/notify: 重发高风险 Draft 的 owner 通知
POST /api/drafts/{task_id}/release: 取出已确认的 Draft
POST /api/drafts/{task_id}/reject: 拒绝 Draft 并作废挑战
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, SecretStr
from starlette.responses import JSONResponse

from clawgate.core.exceptions import (
    ChallengeAlreadyIssued,
    ChallengeExpired,
    ChallengeNotFound,
    ChannelUnavailable,
    DeliveryFailure,
    DraftNotFound,
    DraftStateError,
    OwnerNotifyFailed,
)
from clawgate.core.models import ChallengeReceipt, Draft
from clawgate.guard import DEFAULT_STAGE

from ..deps import get_pipeline
from ..errors import error_response

router = APIRouter()


class DraftResponse(BaseModel):
    """Draft 状态响应"""

    task_id: str
    command: str
    status: str
    high_risk: bool
    owner_notified: bool
    threats: list[str]
    confirmed_stages: list[str]
    expires_at: datetime
    challenges: list[ChallengeReceipt] = Field(default_factory=list)


class ChallengeBody(BaseModel):
    stage: str = Field(default=DEFAULT_STAGE, min_length=1, max_length=64)


class ConfirmBody(BaseModel):
    """确认请求体 -- SecretStr 避免密码出现在 repr / 日志中"""

    password_a: SecretStr
    password_b: SecretStr
    stage: str | None = None


class RejectBody(BaseModel):
    reason: str = Field(default="owner_rejected", max_length=200)


def _draft_response(draft: Draft, challenges: list[ChallengeReceipt]) -> dict:
    return DraftResponse(
        task_id=draft.task_id,
        command=draft.request.command,
        status=draft.status.value,
        high_risk=draft.high_risk,
        owner_notified=draft.owner_notified,
        threats=[t.kind.value for t in draft.threats],
        confirmed_stages=draft.confirmed_stages,
        expires_at=draft.expires_at,
        challenges=challenges,
    ).model_dump(mode="json")


@router.get("/api/drafts/{task_id}")
async def get_draft(task_id: str, pipeline=Depends(get_pipeline)):
    """查询 Draft 状态"""
    draft = await pipeline.get_draft(task_id)
    if draft is None:
        return error_response(404, DraftNotFound(task_id))
    challenges = [pipeline.gate.receipt(c) for c in await pipeline.gate.list_challenges(task_id)]
    return JSONResponse(status_code=200, content=_draft_response(draft, challenges))


@router.post("/api/drafts/{task_id}/challenges")
async def issue_challenge(
    task_id: str,
    body: ChallengeBody | None = None,
    pipeline=Depends(get_pipeline),
):
    """签发挑战

    - 201: 已签发并完成双通道投递
    - 404: Draft 不存在
    - 409: 已有有效挑战，或 Draft 不是 pending
    - 502: 投递失败（部分失败时附带 failed_slot / failed_channel）
    - 503: 独立渠道不足两个
    """
    stage = body.stage if body is not None else DEFAULT_STAGE
    try:
        receipt = await pipeline.request_confirmation(task_id, stage)
    except DraftNotFound as e:
        return error_response(404, e)
    except (ChallengeAlreadyIssued, DraftStateError) as e:
        return error_response(409, e)
    except DeliveryFailure as e:
        return error_response(502, e)
    except ChannelUnavailable as e:
        return error_response(503, e)
    return JSONResponse(status_code=201, content=receipt.model_dump(mode="json"))


@router.post("/api/drafts/{task_id}/challenges/{stage}/redeliver")
async def redeliver_challenge(task_id: str, stage: str, pipeline=Depends(get_pipeline)):
    """重发未送达的密码槽位"""
    try:
        receipt = await pipeline.redeliver(task_id, stage)
    except ChallengeNotFound as e:
        return error_response(404, e)
    except ChallengeExpired as e:
        return error_response(410, e)
    except DraftStateError as e:
        return error_response(409, e)
    except DeliveryFailure as e:
        return error_response(502, e)
    return JSONResponse(status_code=200, content=receipt.model_dump(mode="json"))


@router.post("/api/drafts/{task_id}/confirm")
async def confirm_draft(task_id: str, body: ConfirmBody, pipeline=Depends(get_pipeline)):
    """校验双密码 -- 无论成功与否都返回 200，失败原因不外露"""
    result = await pipeline.confirm(task_id, body.password_a, body.password_b, body.stage)
    return JSONResponse(status_code=200, content={"valid": result.valid})


@router.post("/api/drafts/{task_id}/notify")
async def notify_owner(task_id: str, pipeline=Depends(get_pipeline)):
    """重发 owner 通知；提交时通知失败的高风险 Draft 需要它才能 release

    - 200: 已通知，或 Draft 不是高风险（无需通知）
    - 404: Draft 不存在
    - 502: 通知仍未送达
    """
    draft = await pipeline.get_draft(task_id)
    if draft is None:
        return error_response(404, DraftNotFound(task_id))
    try:
        notified = await pipeline.notify_owner(task_id)
    except DraftNotFound as e:
        return error_response(404, e)
    if draft.high_risk and not notified:
        return error_response(502, OwnerNotifyFailed(task_id))
    return JSONResponse(
        status_code=200,
        content={"task_id": task_id, "high_risk": draft.high_risk, "owner_notified": notified},
    )


@router.post("/api/drafts/{task_id}/release")
async def release_draft(task_id: str, pipeline=Depends(get_pipeline)):
    """取出已确认的 Draft 交给执行器"""
    try:
        draft = await pipeline.release(task_id)
    except DraftNotFound as e:
        return error_response(404, e)
    except DraftStateError as e:
        return error_response(409, e)
    return JSONResponse(status_code=200, content=draft.model_dump(mode="json"))


@router.post("/api/drafts/{task_id}/reject")
async def reject_draft(
    task_id: str,
    body: RejectBody | None = None,
    pipeline=Depends(get_pipeline),
):
    """拒绝 Draft，并作废其所有未完成的挑战"""
    reason = body.reason if body is not None else "owner_rejected"
    try:
        draft = await pipeline.reject(task_id, reason)
    except DraftNotFound as e:
        return error_response(404, e)
    except DraftStateError as e:
        return error_response(409, e)
    return JSONResponse(
        status_code=200,
        content=_draft_response(draft, []),
    )
