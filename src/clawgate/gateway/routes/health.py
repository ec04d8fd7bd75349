"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含存储连通性、owner 配置与投递渠道数量。
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. store: 键值存储可读
    2. owner: 已配置 owner principal
    3. channels: 至少两个投递渠道
    """
    checks = {}
    all_ok = True

    try:
        store_group = request.app.state.store_group
        await store_group.kv.get("health", "ready")
        checks["store"] = "ok"
    except Exception as e:
        log.warning("readiness_store_failed", error_type=type(e).__name__)
        checks["store"] = f"error: {type(e).__name__}"
        all_ok = False

    config = getattr(request.app.state, "gate_config", None)
    if config is not None and config.owner_configured:
        checks["owner"] = "ok"
    else:
        checks["owner"] = "not_configured"
        all_ok = False

    pipeline = getattr(request.app.state, "pipeline", None)
    channel_count = len(pipeline.gate.channels) if pipeline is not None else 0
    checks["channels"] = channel_count
    if channel_count < 2:
        all_ok = False

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
