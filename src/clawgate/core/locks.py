"""按 task_id 串行化的 asyncio 锁注册表

同一任务的 签发 -> 校验 -> 消费 / 拒绝 读改写序列必须串行；
不同任务互不影响，可以并行推进。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLocks:
    """task 级别锁注册表，由 Draft Enforcer 与 Confirmation Gate 共享

    引用计数归零时移除 lock，字典大小只与当前活跃任务数相关。
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}
        self._guard = asyncio.Lock()

    async def _acquire_ref(self, key: str) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            self._refs[key] = self._refs.get(key, 0) + 1
            return lock

    async def _release_ref(self, key: str) -> None:
        async with self._guard:
            remaining = self._refs.get(key, 1) - 1
            if remaining <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = remaining

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """持有指定 key 的锁"""
        lock = await self._acquire_ref(key)
        try:
            async with lock:
                yield
        finally:
            await self._release_ref(key)

    def __len__(self) -> int:
        return len(self._locks)
