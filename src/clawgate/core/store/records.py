"""Draft / Challenge 记录存储 -- 在 KeyValueStore 之上的类型化封装

记录在存储中的 TTL = 业务过期时间 + retention，
业务过期判定由调用方基于记录内 expires_at 与注入时钟完成。
"""

from ..clock import Clock
from ..models.challenge import ConfirmationChallenge
from ..models.draft import Draft
from .protocols import KeyValueStore

DRAFT_NAMESPACE = "draft"
CHALLENGE_NAMESPACE = "challenge"


class DraftStore:
    """Draft 存储，每个 task_id 至多一个 Draft"""

    def __init__(self, kv: KeyValueStore, clock: Clock, retention_s: int = 0) -> None:
        self._kv = kv
        self._clock = clock
        self._retention_s = retention_s

    async def get(self, task_id: str) -> Draft | None:
        data = await self._kv.get(DRAFT_NAMESPACE, task_id)
        if data is None:
            return None
        return Draft.model_validate(data)

    async def save(self, draft: Draft) -> None:
        ttl_s = (draft.expires_at - self._clock.now()).total_seconds() + self._retention_s
        await self._kv.put(
            DRAFT_NAMESPACE,
            draft.task_id,
            "",
            draft.model_dump(mode="json"),
            ttl_s=max(ttl_s, 0.0),
        )

    async def delete(self, task_id: str) -> bool:
        return await self._kv.delete(DRAFT_NAMESPACE, task_id)


class ChallengeStore:
    """ConfirmationChallenge 存储，以 (task_id, stage) 为键"""

    def __init__(self, kv: KeyValueStore, clock: Clock, retention_s: int = 0) -> None:
        self._kv = kv
        self._clock = clock
        self._retention_s = retention_s

    async def get(self, task_id: str, stage: str) -> ConfirmationChallenge | None:
        data = await self._kv.get(CHALLENGE_NAMESPACE, task_id, stage)
        if data is None:
            return None
        return ConfirmationChallenge.model_validate(data)

    async def save(self, challenge: ConfirmationChallenge) -> None:
        ttl_s = (
            (challenge.expires_at - self._clock.now()).total_seconds() + self._retention_s
        )
        await self._kv.put(
            CHALLENGE_NAMESPACE,
            challenge.task_id,
            challenge.stage,
            challenge.model_dump(mode="json"),
            ttl_s=max(ttl_s, 0.0),
        )

    async def list_for_task(self, task_id: str) -> list[ConfirmationChallenge]:
        """按创建时间升序返回某任务的全部挑战"""
        rows = await self._kv.list_for_task(CHALLENGE_NAMESPACE, task_id)
        challenges = [ConfirmationChallenge.model_validate(row) for row in rows]
        return sorted(challenges, key=lambda c: c.created_at)

    async def delete(self, task_id: str, stage: str) -> bool:
        return await self._kv.delete(CHALLENGE_NAMESPACE, task_id, stage)
