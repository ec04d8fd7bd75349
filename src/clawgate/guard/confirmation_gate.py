"""DualConfirmationGate -- 双通道双密码确认

每个 (task_id, stage) 生成两个相互独立的密码，分别投递到两个不同的渠道，
两者都不能与请求的来源渠道相同。只有两个密码同时匹配才算确认成功，
成功后挑战被消费，密码只能使用一次。

对外只返回 valid=true/false，不区分失败原因；内部原因写入日志。
"""

import asyncio
import hashlib
import hmac
import secrets
from collections.abc import Sequence
from datetime import datetime, timedelta

import structlog
from pydantic import SecretStr

from clawgate.core.clock import Clock, SystemClock
from clawgate.core.config import GateConfig
from clawgate.core.exceptions import (
    ChallengeAlreadyIssued,
    ChallengeExpired,
    ChallengeNotFound,
    ChannelUnavailable,
    DeliveryFailure,
    DraftNotFound,
    DraftStateError,
    PartialDeliveryFailure,
)
from clawgate.core.locks import KeyedLocks
from clawgate.core.models import (
    ChallengeReceipt,
    ChallengeStatus,
    ConfirmationChallenge,
    Draft,
    DraftStatus,
    PasswordPair,
    SecretSlot,
    VerificationResult,
    validate_challenge_transition,
)
from clawgate.core.store import StoreGroup

from .channels import DeliveryChannel, DeliveryResult
from .lifecycle import load_live_draft, reject_outstanding_challenges

log = structlog.get_logger()

DEFAULT_STAGE = "initiation"

# 仍可能被消费的挑战状态，重新签发会冲突
_LIVE_STATES = {ChallengeStatus.ISSUING, ChallengeStatus.PENDING}


def format_delivery_text(
    task_id: str,
    stage: str,
    slot: SecretSlot,
    secret: str,
    expires_at: datetime,
) -> str:
    """投递给 owner 的消息正文"""
    return (
        f"ClawGate confirmation for task {task_id} ({stage})\n"
        f"Password {slot.value.upper()}: {secret}\n"
        f"Expires: {expires_at.isoformat(timespec='seconds')}\n"
        "Never share this code with anyone, including the agent."
    )


def _digest(salt: str, secret: str) -> str:
    return hashlib.sha256(bytes.fromhex(salt) + secret.encode("utf-8")).hexdigest()


def _reveal(value: object) -> str | None:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, str):
        return value
    return None


class DualConfirmationGate:
    """双重确认闸门"""

    def __init__(
        self,
        config: GateConfig,
        stores: StoreGroup,
        locks: KeyedLocks,
        channels: Sequence[DeliveryChannel],
        clock: Clock | None = None,
    ) -> None:
        names = [c.name for c in channels]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate delivery channel names: {names}")
        self._config = config
        self._stores = stores
        self._locks = locks
        self._channels = {c.name: c for c in channels}
        self._clock = clock or SystemClock()

    @property
    def channels(self) -> list[DeliveryChannel]:
        return list(self._channels.values())

    def _generate_secret(self) -> str:
        alphabet = self._config.password_alphabet
        return "".join(secrets.choice(alphabet) for _ in range(self._config.password_length))

    def _select_channels(self, origin_channel: str) -> tuple[DeliveryChannel, DeliveryChannel]:
        """选出两个不同类型、且都不同于来源渠道的投递渠道"""
        picked: list[DeliveryChannel] = []
        kinds: set[str] = {origin_channel.lower()}
        for channel in self._channels.values():
            if channel.kind.lower() in kinds:
                continue
            picked.append(channel)
            kinds.add(channel.kind.lower())
            if len(picked) == 2:
                return picked[0], picked[1]
        raise ChannelUnavailable(
            f"need two independent delivery channels distinct from origin channel "
            f"'{origin_channel}', found {len(picked)}"
        )

    async def generate_password_pair(
        self,
        task_id: str,
        stage: str = DEFAULT_STAGE,
    ) -> PasswordPair:
        """签发挑战并通过两个渠道投递密码

        Raises:
            DraftNotFound: 任务没有 Draft
            DraftStateError: Draft 不是 pending
            ChallengeAlreadyIssued: 已有未过期的有效挑战
            ChannelUnavailable: 独立渠道不足两个
            PartialDeliveryFailure: 一个渠道投递失败
            DeliveryFailure: 两个渠道均投递失败
        """
        async with self._locks.hold(task_id):
            now = self._clock.now()
            draft = await self._require_pending_draft(task_id, now, "issue challenge for")

            existing = await self._stores.challenge_store.get(task_id, stage)
            if existing is not None and (
                existing.status == ChallengeStatus.CONSUMED
                or (existing.status in _LIVE_STATES and not existing.is_expired(now))
            ):
                raise ChallengeAlreadyIssued(task_id, stage)

            principal = draft.request.principal
            channel_a, channel_b = self._select_channels(principal.channel if principal else "")

            password_a = self._generate_secret()
            password_b = self._generate_secret()
            while hmac.compare_digest(password_a, password_b):
                password_b = self._generate_secret()

            salt = secrets.token_hex(16)
            challenge = ConfirmationChallenge(
                task_id=task_id,
                stage=stage,
                status=ChallengeStatus.ISSUING,
                salt=salt,
                digest_a=_digest(salt, password_a),
                digest_b=_digest(salt, password_b),
                channel_a=channel_a.name,
                channel_b=channel_b.name,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(seconds=self._config.challenge_ttl_s),
            )
            await self._stores.challenge_store.save(challenge)

            results = await self._deliver(
                challenge, {SecretSlot.A: password_a, SecretSlot.B: password_b}
            )
            challenge = await self._record_delivery(challenge, results)

        log.info(
            "challenge_issued",
            task_id=task_id,
            stage=stage,
            channels=[channel_a.name, channel_b.name],
            expires_at=challenge.expires_at.isoformat(),
        )
        return PasswordPair(
            task_id=task_id,
            stage=stage,
            password_a=SecretStr(password_a),
            password_b=SecretStr(password_b),
            expires_at=challenge.expires_at,
        )

    async def retry_delivery(self, task_id: str, stage: str = DEFAULT_STAGE) -> ChallengeReceipt:
        """只为未送达的槽位重新生成密码，并在原渠道上重发

        Raises:
            ChallengeNotFound: 没有可重试的挑战
            ChallengeExpired: 挑战已过期
            DraftStateError: Draft 不再是 pending
            PartialDeliveryFailure / DeliveryFailure: 重发仍然失败
        """
        async with self._locks.hold(task_id):
            now = self._clock.now()
            challenge = await self._stores.challenge_store.get(task_id, stage)
            if challenge is None:
                raise ChallengeNotFound(task_id, stage)
            if challenge.status == ChallengeStatus.PENDING and not challenge.is_expired(now):
                return self.receipt(challenge)
            if challenge.status == ChallengeStatus.EXPIRED or challenge.is_expired(now):
                await self._expire(challenge, now)
                raise ChallengeExpired(task_id, stage)
            if challenge.status not in (ChallengeStatus.ISSUING, ChallengeStatus.DELIVERY_FAILED):
                raise ChallengeNotFound(task_id, stage)

            await self._require_pending_draft(task_id, now, "redeliver challenge for")

            fresh: dict[SecretSlot, str] = {}
            update: dict = {"updated_at": now}
            for slot in challenge.undelivered_slots():
                secret = self._generate_secret()
                fresh[slot] = secret
                update[f"digest_{slot.value}"] = _digest(challenge.salt, secret)
            challenge = challenge.model_copy(update=update)
            await self._stores.challenge_store.save(challenge)

            results = await self._deliver(challenge, fresh)
            challenge = await self._record_delivery(challenge, results)

        log.info(
            "challenge_redelivered",
            task_id=task_id,
            stage=stage,
            slots=[slot.value for slot in fresh],
        )
        return self.receipt(challenge)

    async def verify_both(
        self,
        task_id: str,
        password_a: str | SecretStr,
        password_b: str | SecretStr,
        stage: str | None = None,
    ) -> VerificationResult:
        """校验两个密码，成功时消费挑战

        stage 为空时校验最近创建的、pending 且未过期的挑战。
        任何失败都返回 valid=False，不区分原因。
        """
        secret_a = _reveal(password_a)
        secret_b = _reveal(password_b)

        async with self._locks.hold(task_id):
            now = self._clock.now()
            # 先读 Draft：Draft 过期会连带作废其挑战
            draft = await load_live_draft(self._stores, task_id, now)
            challenge = await self._find_challenge(task_id, stage, now)

            reason = ""
            if draft is None or draft.status != DraftStatus.PENDING:
                reason = "draft_not_pending"
            elif challenge is None:
                reason = "challenge_not_found"
            elif challenge.status != ChallengeStatus.PENDING:
                reason = f"challenge_{challenge.status}"
            elif challenge.is_expired(now):
                await self._expire(challenge, now)
                reason = "challenge_expired"
            if reason:
                log.info("verification_failed", task_id=task_id, stage=stage, reason=reason)
                return VerificationResult(valid=False)

            # 两次比较都执行，不短路
            match_a = hmac.compare_digest(
                _digest(challenge.salt, secret_a or ""), challenge.digest_a
            )
            match_b = hmac.compare_digest(
                _digest(challenge.salt, secret_b or ""), challenge.digest_b
            )
            if not (match_a & match_b) or secret_a is None or secret_b is None:
                await self._record_failed_attempt(challenge, now)
                return VerificationResult(valid=False)

            await self._transition(challenge, ChallengeStatus.CONSUMED, now)
            draft = await self._confirm_stage(draft, challenge.stage, now)

        log.info(
            "challenge_consumed",
            task_id=task_id,
            stage=challenge.stage,
            draft_status=draft.status,
        )
        return VerificationResult(valid=True)

    async def invalidate_task(self, task_id: str) -> int:
        """作废任务下所有未完成的挑战，返回作废数量"""
        async with self._locks.hold(task_id):
            count = await reject_outstanding_challenges(self._stores, task_id, self._clock.now())
        log.info("challenges_invalidated", task_id=task_id, count=count)
        return count

    async def reap_expired(self) -> int:
        """回收存储中已超过保留期的挑战与 Draft"""
        removed = await self._stores.kv.purge_expired()
        log.info("expired_records_reaped", removed=removed)
        return removed

    async def get_challenge(self, task_id: str, stage: str) -> ConfirmationChallenge | None:
        return await self._stores.challenge_store.get(task_id, stage)

    async def list_challenges(self, task_id: str) -> list[ConfirmationChallenge]:
        return await self._stores.challenge_store.list_for_task(task_id)

    @staticmethod
    def receipt(challenge: ConfirmationChallenge) -> ChallengeReceipt:
        """不含密码的挑战回执"""
        return ChallengeReceipt(
            task_id=challenge.task_id,
            stage=challenge.stage,
            status=challenge.status,
            channels=[challenge.channel_a, challenge.channel_b],
            expires_at=challenge.expires_at,
        )

    async def _require_pending_draft(self, task_id: str, now: datetime, operation: str) -> Draft:
        draft = await load_live_draft(self._stores, task_id, now)
        if draft is None:
            raise DraftNotFound(task_id)
        if draft.status != DraftStatus.PENDING:
            raise DraftStateError(task_id, draft.status, operation)
        return draft

    async def _find_challenge(
        self,
        task_id: str,
        stage: str | None,
        now: datetime,
    ) -> ConfirmationChallenge | None:
        if stage is not None:
            return await self._stores.challenge_store.get(task_id, stage)
        live = [
            c
            for c in await self._stores.challenge_store.list_for_task(task_id)
            if c.status == ChallengeStatus.PENDING and not c.is_expired(now)
        ]
        return live[-1] if live else None

    async def _deliver(
        self,
        challenge: ConfirmationChallenge,
        payloads: dict[SecretSlot, str],
    ) -> dict[SecretSlot, DeliveryResult]:
        """并发投递，渠道异常按投递失败处理"""
        slots = list(payloads)
        coros = []
        for slot in slots:
            channel = self._channels[challenge.channel_for(slot)]
            text = format_delivery_text(
                challenge.task_id, challenge.stage, slot, payloads[slot], challenge.expires_at
            )
            coros.append(channel.send(text))

        outcomes = await asyncio.gather(*coros, return_exceptions=True)
        results: dict[SecretSlot, DeliveryResult] = {}
        for slot, outcome in zip(slots, outcomes):
            channel_name = challenge.channel_for(slot)
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log.warning(
                    "channel_send_raised",
                    channel=channel_name,
                    error_type=type(outcome).__name__,
                )
                outcome = DeliveryResult(
                    channel=channel_name, ok=False, error=type(outcome).__name__
                )
            results[slot] = outcome
        return results

    async def _record_delivery(
        self,
        challenge: ConfirmationChallenge,
        results: dict[SecretSlot, DeliveryResult],
    ) -> ConfirmationChallenge:
        """写回投递结果并决定挑战状态；有失败时抛出投递异常"""
        now = self._clock.now()
        update: dict = {"updated_at": now}
        for slot, result in results.items():
            if result.ok:
                update[f"delivered_{slot.value}"] = True
        challenge = challenge.model_copy(update=update)

        target = (
            ChallengeStatus.PENDING
            if not challenge.undelivered_slots()
            else ChallengeStatus.DELIVERY_FAILED
        )
        challenge = await self._transition(challenge, target, now)
        if target == ChallengeStatus.PENDING:
            return challenge

        failed = {slot: r for slot, r in results.items() if not r.ok}
        errors = {challenge.channel_for(slot): r.error for slot, r in failed.items()}
        undelivered = challenge.undelivered_slots()
        if len(undelivered) == 1:
            slot = undelivered[0]
            log.warning(
                "challenge_delivery_partial",
                task_id=challenge.task_id,
                stage=challenge.stage,
                failed_slot=slot.value,
                failed_channel=challenge.channel_for(slot),
            )
            raise PartialDeliveryFailure(
                challenge.task_id,
                challenge.stage,
                slot.value,
                challenge.channel_for(slot),
                errors.get(challenge.channel_for(slot), ""),
            )
        log.warning(
            "challenge_delivery_failed",
            task_id=challenge.task_id,
            stage=challenge.stage,
            errors=errors,
        )
        raise DeliveryFailure(challenge.task_id, challenge.stage, errors)

    async def _record_failed_attempt(self, challenge: ConfirmationChallenge, now: datetime) -> None:
        attempts = challenge.attempts + 1
        challenge = challenge.model_copy(update={"attempts": attempts, "updated_at": now})
        limit = self._config.max_verify_attempts
        if limit and attempts >= limit:
            await self._transition(challenge, ChallengeStatus.LOCKED, now)
            reason = "attempts_exhausted"
        else:
            await self._stores.challenge_store.save(challenge)
            reason = "mismatch"
        log.info(
            "verification_failed",
            task_id=challenge.task_id,
            stage=challenge.stage,
            reason=reason,
            attempts=attempts,
        )

    async def _confirm_stage(self, draft: Draft, stage: str, now: datetime) -> Draft:
        stages = list(draft.confirmed_stages)
        if stage not in stages:
            stages.append(stage)
        update: dict = {"confirmed_stages": stages, "updated_at": now}
        if all(s in stages for s in self._config.required_stages):
            update["status"] = DraftStatus.CONFIRMED
            update["status_reason"] = "dual_confirmation"
        draft = draft.model_copy(update=update)
        await self._stores.draft_store.save(draft)
        if draft.status == DraftStatus.CONFIRMED:
            log.info("draft_confirmed", task_id=draft.task_id, stages=stages)
        return draft

    async def _expire(self, challenge: ConfirmationChallenge, now: datetime) -> None:
        if validate_challenge_transition(challenge.status, ChallengeStatus.EXPIRED):
            await self._transition(challenge, ChallengeStatus.EXPIRED, now)

    async def _transition(
        self,
        challenge: ConfirmationChallenge,
        target: ChallengeStatus,
        now: datetime,
    ) -> ConfirmationChallenge:
        if not validate_challenge_transition(challenge.status, target):
            raise ValueError(f"invalid challenge transition {challenge.status} -> {target}")
        challenge = challenge.model_copy(update={"status": target, "updated_at": now})
        await self._stores.challenge_store.save(challenge)
        return challenge
