"""DraftEnforcer -- 读写分类与写动作暂存

写动作（包括未知动作）永远不直接执行，而是暂存为 pending Draft，
等待 Dual-Confirmation 通过后才能 release。
被注入过滤标记的读动作直接拒绝，避免读取结果把被注入的内容带出去。

同一 task 的读改写通过共享的 KeyedLocks 串行化。
"""

from datetime import datetime, timedelta

import structlog

from clawgate.core.clock import Clock, SystemClock
from clawgate.core.config import GateConfig
from clawgate.core.exceptions import DraftNotFound, DraftStateError
from clawgate.core.locks import KeyedLocks
from clawgate.core.models import (
    ActionRequest,
    Draft,
    DraftStatus,
    ImmediateExecution,
    InjectionVerdict,
    StagingOutcome,
    StagingRejected,
    validate_draft_transition,
)
from clawgate.core.store import StoreGroup

from .lifecycle import load_live_draft, reject_outstanding_challenges

log = structlog.get_logger()


class DraftEnforcer:
    """写动作暂存与 Draft 生命周期管理"""

    def __init__(
        self,
        config: GateConfig,
        stores: StoreGroup,
        locks: KeyedLocks,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._stores = stores
        self._locks = locks
        self._clock = clock or SystemClock()

    def is_write_action(self, action_name: object) -> bool:
        """查静态分类表；未知或畸形的动作名一律视为写"""
        if not isinstance(action_name, str) or not action_name.strip():
            return True
        if action_name in self._config.write_actions:
            return True
        return action_name not in self._config.read_actions

    async def stage_if_needed(
        self,
        request: ActionRequest,
        verdict: InjectionVerdict,
    ) -> StagingOutcome:
        """按 (write, flagged) 决定立即执行 / 拒绝 / 暂存

        Returns:
            ImmediateExecution | StagingRejected | Draft

        Raises:
            DraftStateError: 该 task_id 已存在 Draft
        """
        if not self.is_write_action(request.command):
            if verdict.flagged:
                log.info(
                    "flagged_read_rejected",
                    task_id=request.task_id,
                    command=request.command,
                    threats=verdict.threat_kinds,
                )
                return StagingRejected(
                    request=request,
                    reason="flagged_read",
                    threats=verdict.threats,
                )
            return ImmediateExecution(request=request)

        async with self._locks.hold(request.task_id):
            now = self._clock.now()
            existing = await load_live_draft(self._stores, request.task_id, now)
            if existing is not None:
                raise DraftStateError(request.task_id, existing.status, "stage")

            draft = Draft(
                task_id=request.task_id,
                request=request,
                high_risk=verdict.flagged,
                threats=verdict.threats if verdict.flagged else [],
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(seconds=self._config.draft_ttl_s),
                status_reason="staged",
            )
            await self._stores.draft_store.save(draft)

        log.info(
            "draft_staged",
            task_id=draft.task_id,
            command=request.command,
            high_risk=draft.high_risk,
            threats=verdict.threat_kinds,
            payload_length=len(request.payload),
        )
        return draft

    async def get_draft(self, task_id: str) -> Draft | None:
        """读取 Draft（读取时应用 TTL 过期）"""
        async with self._locks.hold(task_id):
            return await load_live_draft(self._stores, task_id, self._clock.now())

    async def reject_draft(self, task_id: str, reason: str = "owner_rejected") -> Draft:
        """拒绝 Draft，并在同一把锁内作废该任务所有未完成的挑战

        Raises:
            DraftNotFound: Draft 不存在
            DraftStateError: Draft 已不是 pending
        """
        async with self._locks.hold(task_id):
            now = self._clock.now()
            draft = await self._require(task_id, now)
            draft = self._transition(draft, DraftStatus.REJECTED, "reject", now, reason)
            await self._stores.draft_store.save(draft)
            invalidated = await reject_outstanding_challenges(self._stores, task_id, now)

        log.info(
            "draft_rejected",
            task_id=task_id,
            reason=reason,
            challenges_invalidated=invalidated,
        )
        return draft

    async def mark_owner_notified(self, task_id: str) -> Draft:
        """记录高风险 Draft 已通知 owner"""
        async with self._locks.hold(task_id):
            draft = await self._require(task_id, self._clock.now())
            draft = draft.model_copy(
                update={"owner_notified": True, "updated_at": self._clock.now()}
            )
            await self._stores.draft_store.save(draft)
        return draft

    async def release_draft(self, task_id: str) -> Draft:
        """取出已确认的 Draft，只能成功一次

        高风险 Draft 需要先通知 owner。release 后 Draft 与其挑战从存储中删除。

        Raises:
            DraftNotFound: Draft 不存在（或已 release）
            DraftStateError: Draft 未确认，或高风险且尚未通知 owner
        """
        async with self._locks.hold(task_id):
            draft = await self._require(task_id, self._clock.now())
            if not draft.releasable:
                operation = "release unnotified high-risk" if (
                    draft.status == DraftStatus.CONFIRMED
                ) else "release"
                raise DraftStateError(task_id, draft.status, operation)

            await self._stores.draft_store.delete(task_id)
            for challenge in await self._stores.challenge_store.list_for_task(task_id):
                await self._stores.challenge_store.delete(task_id, challenge.stage)

        log.info(
            "draft_released",
            task_id=task_id,
            command=draft.request.command,
            confirmed_stages=draft.confirmed_stages,
            high_risk=draft.high_risk,
        )
        return draft

    async def _require(self, task_id: str, now: datetime) -> Draft:
        draft = await load_live_draft(self._stores, task_id, now)
        if draft is None:
            raise DraftNotFound(task_id)
        return draft

    @staticmethod
    def _transition(
        draft: Draft,
        target: DraftStatus,
        operation: str,
        now: datetime,
        reason: str,
    ) -> Draft:
        if not validate_draft_transition(draft.status, target):
            raise DraftStateError(draft.task_id, draft.status, operation)
        return draft.model_copy(
            update={"status": target, "updated_at": now, "status_reason": reason}
        )
