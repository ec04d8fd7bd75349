"""KeyValueStore SQLite 实现

单表 kv_records，以 (namespace, task_id, stage) 为主键。
每次写操作立即提交；同一任务的读改写由上层 KeyedLocks 串行化。
"""

import json
from datetime import timedelta
from typing import Any

import aiosqlite

from ..clock import Clock, SystemClock


class SqliteKeyValueStore:
    """KeyValueStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection, clock: Clock | None = None) -> None:
        self._conn = conn
        self._clock = clock or SystemClock()

    def _now_ts(self) -> float:
        return self._clock.now().timestamp()

    async def get(self, namespace: str, task_id: str, stage: str = "") -> dict[str, Any] | None:
        cursor = await self._conn.execute(
            """
            SELECT value FROM kv_records
            WHERE namespace = ? AND task_id = ? AND stage = ?
              AND (expires_at IS NULL OR expires_at > ?)
            """,
            (namespace, task_id, stage, self._now_ts()),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def put(
        self,
        namespace: str,
        task_id: str,
        stage: str,
        value: dict[str, Any],
        ttl_s: float | None = None,
    ) -> None:
        now = self._clock.now()
        expires_at = None
        if ttl_s is not None:
            expires_at = (now + timedelta(seconds=ttl_s)).timestamp()
        try:
            await self._conn.execute(
                """
                INSERT INTO kv_records (namespace, task_id, stage, value, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (namespace, task_id, stage) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    namespace,
                    task_id,
                    stage,
                    json.dumps(value, ensure_ascii=False),
                    expires_at,
                    now.timestamp(),
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def delete(self, namespace: str, task_id: str, stage: str = "") -> bool:
        try:
            cursor = await self._conn.execute(
                "DELETE FROM kv_records WHERE namespace = ? AND task_id = ? AND stage = ?",
                (namespace, task_id, stage),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise
        return cursor.rowcount > 0

    async def list_for_task(self, namespace: str, task_id: str) -> list[dict[str, Any]]:
        cursor = await self._conn.execute(
            """
            SELECT value FROM kv_records
            WHERE namespace = ? AND task_id = ?
              AND (expires_at IS NULL OR expires_at > ?)
            ORDER BY stage ASC
            """,
            (namespace, task_id, self._now_ts()),
        )
        rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    async def purge_expired(self) -> int:
        try:
            cursor = await self._conn.execute(
                "DELETE FROM kv_records WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._now_ts(),),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise
        return cursor.rowcount

    async def close(self) -> None:
        await self._conn.close()
