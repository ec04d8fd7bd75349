"""DualConfirmationGate 测试：签发、投递、校验、消费、过期、并发"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from pydantic import SecretStr

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
from clawgate.core.models import ChallengeStatus, DraftStatus
from clawgate.core.store import create_store_group
from clawgate.guard import DualConfirmationGate, RecordingChannel, build_pipeline


@pytest.fixture
def gate(pipeline) -> DualConfirmationGate:
    return pipeline.gate


class TestGeneratePasswordPair:
    async def test_delivers_each_secret_on_its_own_channel(
        self, gate, staged_task, sms_channel, email_channel, read_secret, gate_config
    ):
        pair = await gate.generate_password_pair(staged_task)
        secret_a = pair.password_a.get_secret_value()
        secret_b = pair.password_b.get_secret_value()

        assert secret_a != secret_b
        assert len(secret_a) == len(secret_b) == gate_config.password_length
        assert set(secret_a + secret_b) <= set(gate_config.password_alphabet)
        assert read_secret(sms_channel) == secret_a
        assert read_secret(email_channel) == secret_b
        # 每个渠道只看到自己的密码
        assert secret_b not in sms_channel.last
        assert secret_a not in email_channel.last

    async def test_stored_as_digest(self, gate, staged_task, stores):
        pair = await gate.generate_password_pair(staged_task)
        challenge = await stores.challenge_store.get(staged_task, "initiation")
        dumped = challenge.model_dump_json()
        assert pair.password_a.get_secret_value() not in dumped
        assert pair.password_b.get_secret_value() not in dumped
        assert challenge.status == ChallengeStatus.PENDING
        assert challenge.delivered_a and challenge.delivered_b

    async def test_no_draft(self, gate):
        with pytest.raises(DraftNotFound):
            await gate.generate_password_pair("no-such-task")

    async def test_reissue_while_live_conflicts(self, gate, staged_task):
        await gate.generate_password_pair(staged_task)
        with pytest.raises(ChallengeAlreadyIssued):
            await gate.generate_password_pair(staged_task)

    async def test_reissue_after_expiry_allowed(self, gate, staged_task, clock, gate_config):
        first = await gate.generate_password_pair(staged_task)
        clock.advance(gate_config.challenge_ttl_s)
        second = await gate.generate_password_pair(staged_task)
        assert first.password_a.get_secret_value() != second.password_a.get_secret_value()

    async def test_independent_stages(self, gate, staged_task):
        await gate.generate_password_pair(staged_task, "initiation")
        await gate.generate_password_pair(staged_task, "final_release")
        stages = [c.stage for c in await gate.list_challenges(staged_task)]
        assert sorted(stages) == ["final_release", "initiation"]

    async def test_origin_channel_excluded(
        self, gate_config, stores, clock, make_request, read_secret
    ):
        """与请求来源同类型的渠道不能用于投递"""
        telegram = RecordingChannel("tg", kind="telegram")
        sms = RecordingChannel("sms", kind="sms")
        email = RecordingChannel("email", kind="email")
        pipeline = build_pipeline(gate_config, stores, [telegram, sms, email], clock)
        request = make_request()
        await pipeline.submit(request)

        await pipeline.gate.generate_password_pair(request.task_id)
        assert telegram.sent == []
        assert read_secret(sms) and read_secret(email)

    async def test_same_kind_channels_not_independent(
        self, gate_config, stores, clock, make_request
    ):
        channels = [RecordingChannel("mail1", kind="email"), RecordingChannel("mail2", kind="email")]
        pipeline = build_pipeline(gate_config, stores, channels, clock)
        request = make_request()
        await pipeline.submit(request)
        with pytest.raises(ChannelUnavailable):
            await pipeline.gate.generate_password_pair(request.task_id)

    def test_duplicate_channel_names(self, gate_config, stores, locks):
        with pytest.raises(ValueError):
            DualConfirmationGate(
                gate_config,
                stores,
                locks,
                [RecordingChannel("x", kind="sms"), RecordingChannel("x", kind="email")],
            )


class TestDelivery:
    async def test_partial_failure_then_retry(
        self, gate, staged_task, sms_channel, email_channel, read_secret
    ):
        email_channel.fail = True
        with pytest.raises(PartialDeliveryFailure) as exc_info:
            await gate.generate_password_pair(staged_task)
        assert exc_info.value.failed_slot == "b"
        assert exc_info.value.failed_channel == "email"
        secret_a = read_secret(sms_channel)

        challenge = await gate.get_challenge(staged_task, "initiation")
        assert challenge.status == ChallengeStatus.DELIVERY_FAILED
        # 未送达时不能校验
        result = await gate.verify_both(staged_task, secret_a, "anything")
        assert not result.valid

        email_channel.fail = False
        receipt = await gate.retry_delivery(staged_task)
        assert receipt.status == ChallengeStatus.PENDING
        # 只重发失败的槽位，A 保持不变
        assert len(sms_channel.sent) == 1

        result = await gate.verify_both(staged_task, secret_a, read_secret(email_channel))
        assert result.valid

    async def test_both_fail(self, gate, staged_task, sms_channel, email_channel):
        sms_channel.fail = True
        email_channel.fail = True
        with pytest.raises(DeliveryFailure) as exc_info:
            await gate.generate_password_pair(staged_task)
        assert not isinstance(exc_info.value, PartialDeliveryFailure)
        assert set(exc_info.value.errors) == {"sms", "email"}

    async def test_channel_exception_is_delivery_failure(
        self, gate, staged_task, sms_channel
    ):
        sms_channel.send = AsyncMock(side_effect=RuntimeError("socket closed"))
        with pytest.raises(PartialDeliveryFailure) as exc_info:
            await gate.generate_password_pair(staged_task)
        assert exc_info.value.errors == {"sms": "RuntimeError"}

    async def test_retry_pending_is_noop(self, gate, staged_task, sms_channel):
        await gate.generate_password_pair(staged_task)
        receipt = await gate.retry_delivery(staged_task)
        assert receipt.status == ChallengeStatus.PENDING
        assert len(sms_channel.sent) == 1

    async def test_retry_missing(self, gate, staged_task):
        with pytest.raises(ChallengeNotFound):
            await gate.retry_delivery(staged_task)

    async def test_retry_expired(self, gate, staged_task, email_channel, clock, gate_config):
        email_channel.fail = True
        with pytest.raises(PartialDeliveryFailure):
            await gate.generate_password_pair(staged_task)
        clock.advance(gate_config.challenge_ttl_s + 1)
        with pytest.raises(ChallengeExpired):
            await gate.retry_delivery(staged_task)


class TestVerifyBoth:
    async def test_round_trip_valid_once(self, gate, staged_task, stores):
        pair = await gate.generate_password_pair(staged_task)
        first = await gate.verify_both(staged_task, pair.password_a, pair.password_b)
        second = await gate.verify_both(staged_task, pair.password_a, pair.password_b)
        assert first.valid
        assert not second.valid

        challenge = await stores.challenge_store.get(staged_task, "initiation")
        assert challenge.consumed
        draft = await stores.draft_store.get(staged_task)
        assert draft.status == DraftStatus.CONFIRMED
        assert draft.confirmed_stages == ["initiation"]

    async def test_plain_strings_accepted(self, gate, staged_task):
        pair = await gate.generate_password_pair(staged_task)
        result = await gate.verify_both(
            staged_task,
            pair.password_a.get_secret_value(),
            pair.password_b.get_secret_value(),
            stage="initiation",
        )
        assert result.valid

    async def test_wrong_then_right(self, gate, staged_task):
        pair = await gate.generate_password_pair(staged_task)
        assert not (await gate.verify_both(staged_task, "WRONG", "WRONG")).valid
        assert (await gate.verify_both(staged_task, pair.password_a, pair.password_b)).valid

    async def test_half_correct_indistinguishable(self, gate, staged_task):
        """只对一个密码与全错返回完全相同的结果"""
        pair = await gate.generate_password_pair(staged_task)
        half = await gate.verify_both(staged_task, pair.password_a, "WRONG")
        other_half = await gate.verify_both(staged_task, "WRONG", pair.password_b)
        wrong = await gate.verify_both(staged_task, "WRONG", "WRONG")
        assert half == other_half == wrong
        assert half.model_dump() == {"valid": False}

    async def test_swapped_pair_rejected(self, gate, staged_task):
        pair = await gate.generate_password_pair(staged_task)
        result = await gate.verify_both(staged_task, pair.password_b, pair.password_a)
        assert not result.valid

    async def test_non_string_input(self, gate, staged_task):
        await gate.generate_password_pair(staged_task)
        assert not (await gate.verify_both(staged_task, None, 123)).valid

    async def test_expired(self, gate, staged_task, clock, gate_config, stores):
        pair = await gate.generate_password_pair(staged_task)
        clock.advance(gate_config.challenge_ttl_s)
        result = await gate.verify_both(
            staged_task, pair.password_a, pair.password_b, stage="initiation"
        )
        assert not result.valid
        challenge = await stores.challenge_store.get(staged_task, "initiation")
        assert challenge.status == ChallengeStatus.EXPIRED

    async def test_unknown_task(self, gate):
        assert not (await gate.verify_both("nope", "a", "b")).valid

    async def test_attempt_lockout(self, gate, staged_task, gate_config, stores):
        pair = await gate.generate_password_pair(staged_task)
        for _ in range(gate_config.max_verify_attempts):
            await gate.verify_both(staged_task, "WRONG", "WRONG")

        challenge = await stores.challenge_store.get(staged_task, "initiation")
        assert challenge.status == ChallengeStatus.LOCKED
        # 锁定后正确密码也无效
        assert not (await gate.verify_both(staged_task, pair.password_a, pair.password_b)).valid
        # 锁定的挑战可以重新签发
        await gate.generate_password_pair(staged_task)

    async def test_confirmed_draft_cannot_be_reissued(self, gate, staged_task):
        pair = await gate.generate_password_pair(staged_task)
        await gate.verify_both(staged_task, pair.password_a, pair.password_b)
        with pytest.raises(DraftStateError):
            await gate.generate_password_pair(staged_task)


class TestConcurrency:
    """并发校验在两种后端上都只成功一次

    SQLite 后端的每次读写都会让出事件循环，只有 task 锁能阻止重复消费。
    """

    @pytest_asyncio.fixture(params=["memory", "sqlite"])
    async def stores(self, request, clock, tmp_db_path, gate_config):
        group = await create_store_group(
            request.param,
            db_path=tmp_db_path,
            clock=clock,
            retention_s=gate_config.record_retention_s,
        )
        yield group
        await group.close()

    async def test_concurrent_exactly_one_success(self, gate, staged_task):
        pair = await gate.generate_password_pair(staged_task)
        results = await asyncio.gather(
            *(gate.verify_both(staged_task, pair.password_a, pair.password_b) for _ in range(8))
        )
        assert sum(r.valid for r in results) == 1

    async def test_concurrent_release_exactly_once(self, pipeline, staged_task):
        pair = await pipeline.gate.generate_password_pair(staged_task)
        assert (await pipeline.confirm(staged_task, pair.password_a, pair.password_b)).valid

        results = await asyncio.gather(
            *(pipeline.release(staged_task) for _ in range(4)),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        assert len(results) - len(errors) == 1
        assert all(isinstance(e, DraftNotFound) for e in errors)


class TestMultiStage:
    @pytest.fixture
    def gate_config(self, owner) -> GateConfig:
        return GateConfig(
            owner_principal=SecretStr(owner),
            store_backend="memory",
            required_stages=("initiation", "final_release"),
        )

    async def test_all_required_stages_needed(self, gate, staged_task, stores):
        first = await gate.generate_password_pair(staged_task, "initiation")
        assert (await gate.verify_both(staged_task, first.password_a, first.password_b)).valid
        draft = await stores.draft_store.get(staged_task)
        assert draft.status == DraftStatus.PENDING
        assert draft.confirmed_stages == ["initiation"]

        with pytest.raises(ChallengeAlreadyIssued):
            await gate.generate_password_pair(staged_task, "initiation")

        final = await gate.generate_password_pair(staged_task, "final_release")
        # 一个阶段的密码不能用于另一个阶段
        assert not (
            await gate.verify_both(
                staged_task, first.password_a, first.password_b, stage="final_release"
            )
        ).valid
        assert (
            await gate.verify_both(
                staged_task, final.password_a, final.password_b, stage="final_release"
            )
        ).valid
        draft = await stores.draft_store.get(staged_task)
        assert draft.status == DraftStatus.CONFIRMED


class TestInvalidation:
    async def test_reject_invalidates_challenges(self, gate, staged_task, pipeline, stores):
        pair = await gate.generate_password_pair(staged_task)
        await pipeline.reject(staged_task)
        challenge = await stores.challenge_store.get(staged_task, "initiation")
        assert challenge.status == ChallengeStatus.REJECTED
        assert not (await gate.verify_both(staged_task, pair.password_a, pair.password_b)).valid

    async def test_draft_expiry_cascades(self, gate, staged_task, clock, gate_config, stores):
        await gate.generate_password_pair(staged_task)
        clock.advance(gate_config.draft_ttl_s)
        assert not (await gate.verify_both(staged_task, "x", "y")).valid
        draft = await stores.draft_store.get(staged_task)
        assert draft.status == DraftStatus.EXPIRED
        # 挑战已随 Draft 作废，存储中可能已无记录
        challenge = await stores.challenge_store.get(staged_task, "initiation")
        assert challenge is None or challenge.status == ChallengeStatus.EXPIRED

    async def test_invalidate_task(self, gate, staged_task):
        await gate.generate_password_pair(staged_task)
        assert await gate.invalidate_task(staged_task) == 1
        assert await gate.invalidate_task(staged_task) == 0

    async def test_reap_expired(self, gate, staged_task, clock, gate_config, stores):
        await gate.generate_password_pair(staged_task)
        clock.advance(gate_config.draft_ttl_s + gate_config.record_retention_s + 1)
        assert await gate.reap_expired() == 2
        assert await stores.draft_store.get(staged_task) is None
