"""ClawGate Core Store -- Draft / Challenge 持久化

提供工厂函数按配置的后端创建共享同一键值存储的 Store 实例组。
"""

from pathlib import Path
from typing import Literal

import aiosqlite

from ..clock import Clock, SystemClock
from .memory_store import InMemoryKeyValueStore
from .protocols import KeyValueStore
from .records import ChallengeStore, DraftStore
from .sqlite_init import init_db
from .sqlite_store import SqliteKeyValueStore


class StoreGroup:
    """Store 实例组 -- 共享同一个键值存储"""

    def __init__(
        self,
        kv: KeyValueStore,
        clock: Clock,
        retention_s: int = 0,
    ) -> None:
        self.kv = kv
        self.draft_store = DraftStore(kv, clock, retention_s)
        self.challenge_store = ChallengeStore(kv, clock, retention_s)

    async def close(self) -> None:
        await self.kv.close()


async def create_store_group(
    backend: Literal["sqlite", "memory"] = "sqlite",
    db_path: str | Path | None = None,
    clock: Clock | None = None,
    retention_s: int = 0,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        backend: sqlite 或 memory
        db_path: SQLite 数据库文件路径（sqlite 后端必填）
        clock: 时钟，默认 SystemClock
        retention_s: 过期记录保留时长（秒）

    Returns:
        StoreGroup 实例
    """
    clock = clock or SystemClock()

    if backend == "memory":
        return StoreGroup(InMemoryKeyValueStore(clock), clock, retention_s)

    if db_path is None:
        raise ValueError("db_path is required for the sqlite backend")

    # 确保数据库目录存在
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(str(db_path))
    await init_db(conn)
    return StoreGroup(SqliteKeyValueStore(conn, clock), clock, retention_s)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
    "DraftStore",
    "ChallengeStore",
    "init_db",
]
