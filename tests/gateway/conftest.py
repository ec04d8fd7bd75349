"""gateway 测试配置 -- 手动填充 app.state（绕过 lifespan）+ httpx AsyncClient"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from clawgate.gateway.main import create_app


@pytest_asyncio.fixture
async def app(gate_config, stores, pipeline):
    """测试用 FastAPI app，与全局 fixture 共享 Store、流水线与记录渠道"""
    application = create_app()
    application.state.gate_config = gate_config
    application.state.store_group = stores
    application.state.pipeline = pipeline
    yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def staged_id(client: AsyncClient, owner: str) -> str:
    """通过 API 暂存一个 send_email Draft"""
    resp = await client.post(
        "/api/actions",
        json={
            "command": "send_email",
            "origin": owner,
            "payload": "Send the Q3 report to finance@example.com",
        },
    )
    assert resp.status_code == 202
    return resp.json()["task_id"]
