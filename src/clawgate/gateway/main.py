"""FastAPI 应用主文件

app 创建 + lifespan 管理：配置加载、Store 初始化/关闭、渠道与流水线组装、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from clawgate import __version__
from clawgate.core.config import get_db_path, load_gate_config
from clawgate.core.store import create_store_group
from clawgate.guard import build_channels, build_pipeline, load_channel_config

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import actions, drafts, health

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时组装流水线，关闭时清理存储连接"""
    gate_config = load_gate_config()
    app.state.gate_config = gate_config

    store_group = await create_store_group(
        gate_config.store_backend,
        db_path=get_db_path(),
        retention_s=gate_config.record_retention_s,
    )
    app.state.store_group = store_group

    channel_config = load_channel_config()
    channels = build_channels(channel_config)
    app.state.pipeline = build_pipeline(
        gate_config,
        store_group,
        channels,
        notify_channel_name=channel_config.notify_channel,
    )

    if not gate_config.owner_configured:
        log.warning("owner_not_configured", hint="set CLAWGATE_OWNER; all commands are denied")
    log.info(
        "gateway_initialized",
        store_backend=gate_config.store_backend,
        channels=[c.name for c in channels],
    )

    yield

    if getattr(app.state, "store_group", None) is not None:
        await app.state.store_group.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="ClawGate Gateway",
        version=__version__,
        description="自主 agent 动作授权网关",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()

    app.include_router(actions.router, tags=["actions"])
    app.include_router(drafts.router, tags=["drafts"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
