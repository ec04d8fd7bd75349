"""动作提交路由

POST /api/actions: 提交一个动作请求，走完整授权流水线。
- 200: 读动作，可立即执行
- 202: 写动作，已暂存为 Draft
- 403: Owner Guard 拒绝
- 409: task_id 已存在 Draft
- 422: 注入阻断，或被标记的读动作
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from ulid import ULID

from clawgate.core.exceptions import DraftStateError
from clawgate.core.models import ActionRequest

from ..deps import get_pipeline
from ..errors import error_response

router = APIRouter()

_STATUS_BY_KIND = {
    "immediate": 200,
    "staged": 202,
    "denied": 403,
    "blocked": 422,
    "rejected": 422,
}


class ActionBody(BaseModel):
    """动作提交请求体"""

    command: str = Field(description="动作名称，如 send_email")
    origin: str = Field(description="声明来源，channel:identifier")
    payload: str = Field(default="", description="自由文本 payload")
    content: dict[str, str] = Field(default_factory=dict, description="额外的不可信文本字段")
    task_id: str | None = Field(default=None, description="任务标识，缺省时生成 ULID")


@router.post("/api/actions")
async def submit_action(body: ActionBody, pipeline=Depends(get_pipeline)):
    """提交动作请求，按决策类型返回对应状态码"""
    request = ActionRequest(
        task_id=body.task_id or str(ULID()),
        command=body.command,
        origin=body.origin,
        payload=body.payload,
        content=body.content,
    )

    try:
        decision = await pipeline.submit(request)
    except DraftStateError as e:
        return error_response(409, e)

    return JSONResponse(
        status_code=_STATUS_BY_KIND[decision.kind],
        content=decision.model_dump(mode="json"),
    )
