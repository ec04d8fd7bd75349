"""Draft / Challenge 共享的生命周期操作

DraftEnforcer 与 DualConfirmationGate 在持有同一 task 锁时调用，
函数本身不加锁，调用方必须已通过 KeyedLocks.hold(task_id) 串行化。
"""

from datetime import datetime

import structlog

from clawgate.core.models import (
    ChallengeStatus,
    Draft,
    DraftStatus,
    validate_challenge_transition,
)
from clawgate.core.store import StoreGroup

log = structlog.get_logger()

_EXPIRABLE = {DraftStatus.PENDING, DraftStatus.CONFIRMED}


async def load_live_draft(stores: StoreGroup, task_id: str, now: datetime) -> Draft | None:
    """读取 Draft，并在读取时应用 TTL 过期

    已确认但尚未 release 的 Draft 同样受 TTL 约束，过期后不可再 release。
    """
    draft = await stores.draft_store.get(task_id)
    if draft is None:
        return None
    if draft.status in _EXPIRABLE and draft.is_expired(now):
        previous = draft.status
        draft = draft.model_copy(
            update={
                "status": DraftStatus.EXPIRED,
                "updated_at": now,
                "status_reason": "ttl_elapsed",
            }
        )
        await stores.draft_store.save(draft)
        await reject_outstanding_challenges(stores, task_id, now, ChallengeStatus.EXPIRED)
        log.info("draft_expired", task_id=task_id, previous_status=previous)
    return draft


async def reject_outstanding_challenges(
    stores: StoreGroup,
    task_id: str,
    now: datetime,
    target: ChallengeStatus = ChallengeStatus.REJECTED,
) -> int:
    """把任务下所有未终结的挑战流转到 target，返回受影响数量"""
    changed = 0
    for challenge in await stores.challenge_store.list_for_task(task_id):
        if not validate_challenge_transition(challenge.status, target):
            continue
        await stores.challenge_store.save(
            challenge.model_copy(update={"status": target, "updated_at": now})
        )
        changed += 1
    return changed
