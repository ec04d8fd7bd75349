"""依赖注入模块 -- 通过 FastAPI Depends 注入流水线与 Store

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request

from clawgate.core.store import StoreGroup
from clawgate.guard import AuthorizationPipeline


def get_pipeline(request: Request) -> AuthorizationPipeline:
    """从 app.state 获取 AuthorizationPipeline 实例"""
    return request.app.state.pipeline


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group
