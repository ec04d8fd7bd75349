"""KeyValueStore 内存实现 -- 测试与 memory 后端使用"""

import copy
from datetime import datetime, timedelta
from typing import Any

from ..clock import Clock, SystemClock


class InMemoryKeyValueStore:
    """进程内字典实现，值以深拷贝保存，避免调用方修改已存记录"""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._data: dict[tuple[str, str, str], tuple[dict[str, Any], datetime | None]] = {}

    def _alive(self, expires_at: datetime | None) -> bool:
        return expires_at is None or self._clock.now() < expires_at

    async def get(self, namespace: str, task_id: str, stage: str = "") -> dict[str, Any] | None:
        entry = self._data.get((namespace, task_id, stage))
        if entry is None:
            return None
        value, expires_at = entry
        if not self._alive(expires_at):
            return None
        return copy.deepcopy(value)

    async def put(
        self,
        namespace: str,
        task_id: str,
        stage: str,
        value: dict[str, Any],
        ttl_s: float | None = None,
    ) -> None:
        expires_at = None
        if ttl_s is not None:
            expires_at = self._clock.now() + timedelta(seconds=ttl_s)
        self._data[(namespace, task_id, stage)] = (copy.deepcopy(value), expires_at)

    async def delete(self, namespace: str, task_id: str, stage: str = "") -> bool:
        return self._data.pop((namespace, task_id, stage), None) is not None

    async def list_for_task(self, namespace: str, task_id: str) -> list[dict[str, Any]]:
        records = []
        for key in sorted(self._data):
            ns, tid, _stage = key
            value, expires_at = self._data[key]
            if ns == namespace and tid == task_id and self._alive(expires_at):
                records.append(copy.deepcopy(value))
        return records

    async def purge_expired(self) -> int:
        expired = [key for key, (_v, exp) in self._data.items() if not self._alive(exp)]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def close(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
