"""全局 pytest 配置 -- 可控时钟 + 内存存储 + 记录型投递渠道"""

import re
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from pydantic import SecretStr

from clawgate.core.config import GateConfig
from clawgate.core.locks import KeyedLocks
from clawgate.core.models import ActionRequest
from clawgate.core.store import StoreGroup, create_store_group
from clawgate.guard import AuthorizationPipeline, RecordingChannel, build_pipeline

OWNER = "telegram:+15550001111"

_SECRET_RE = re.compile(r"Password ([AB]): (\S+)")


class FakeClock:
    """手动推进的时钟"""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def owner() -> str:
    return OWNER


@pytest.fixture
def gate_config() -> GateConfig:
    """测试用配置：固定 owner，内存后端"""
    return GateConfig(owner_principal=SecretStr(OWNER), store_backend="memory")


@pytest_asyncio.fixture
async def stores(clock: FakeClock, gate_config: GateConfig) -> AsyncGenerator[StoreGroup, None]:
    """内存 StoreGroup，共享 FakeClock"""
    group = await create_store_group(
        "memory", clock=clock, retention_s=gate_config.record_retention_s
    )
    yield group
    await group.close()


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def sms_channel() -> RecordingChannel:
    return RecordingChannel("sms", kind="sms")


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel("email", kind="email")


@pytest.fixture
def channels(sms_channel: RecordingChannel, email_channel: RecordingChannel) -> list:
    return [sms_channel, email_channel]


@pytest.fixture
def pipeline(
    gate_config: GateConfig,
    stores: StoreGroup,
    channels: list,
    clock: FakeClock,
) -> AuthorizationPipeline:
    return build_pipeline(gate_config, stores, channels, clock)


@pytest.fixture
def read_secret() -> Callable[[RecordingChannel], str]:
    """从 RecordingChannel 最近一条消息中取出密码"""

    def _read(channel: RecordingChannel) -> str:
        assert channel.last is not None, f"nothing delivered on {channel.name}"
        match = _SECRET_RE.search(channel.last)
        assert match is not None
        return match.group(2)

    return _read


@pytest.fixture
def make_request(owner: str) -> Callable[..., ActionRequest]:
    """构造 ActionRequest，默认来自 owner 的 send_email"""

    def _make(
        command: str = "send_email",
        payload: str = "Send the Q3 report to finance@example.com",
        origin: str | None = None,
        **kwargs,
    ) -> ActionRequest:
        return ActionRequest(
            command=command,
            payload=payload,
            origin=origin if origin is not None else owner,
            **kwargs,
        )

    return _make


@pytest_asyncio.fixture
async def staged_task(pipeline: AuthorizationPipeline, make_request) -> str:
    """已暂存为 pending Draft 的写动作，返回 task_id"""
    request = make_request()
    decision = await pipeline.submit(request)
    assert decision.kind == "staged"
    return request.task_id
