"""AuthorizationPipeline -- 四个组件的编排入口

submit 依次执行：
1. Owner Guard 判定来源
2. Injection Filter 扫描 payload 与 content 字段
3. 置信度达到 block_threshold 直接阻断
4. Draft Enforcer 决定立即执行 / 拒绝 / 暂存
5. 高风险 Draft 通知 owner

每个请求的结果都是 PipelineDecision 中的一个变体。
"""

from collections.abc import Sequence

import structlog
from pydantic import SecretStr

from clawgate.core.clock import Clock, SystemClock
from clawgate.core.config import GateConfig
from clawgate.core.exceptions import (
    ContentFlagged,
    DraftNotFound,
    Unauthorized,
    VerificationMismatch,
)
from clawgate.core.locks import KeyedLocks
from clawgate.core.models import (
    ActionRequest,
    BlockedDecision,
    ChallengeReceipt,
    DeniedDecision,
    Draft,
    ImmediateDecision,
    ImmediateExecution,
    PipelineDecision,
    RejectedDecision,
    StagedDecision,
    StagingRejected,
    VerificationResult,
)
from clawgate.core.store import StoreGroup

from .channels import DeliveryChannel
from .confirmation_gate import DEFAULT_STAGE, DualConfirmationGate
from .draft_enforcer import DraftEnforcer
from .injection_filter import InjectionFilter
from .owner_guard import OwnerGuard

log = structlog.get_logger()


class AuthorizationPipeline:
    """授权流水线"""

    def __init__(
        self,
        config: GateConfig,
        guard: OwnerGuard,
        injection_filter: InjectionFilter,
        enforcer: DraftEnforcer,
        gate: DualConfirmationGate,
        notify_channel: DeliveryChannel | None = None,
    ) -> None:
        self.config = config
        self.guard = guard
        self.injection_filter = injection_filter
        self.enforcer = enforcer
        self.gate = gate
        self._notify_channel = notify_channel

    async def submit(self, request: ActionRequest) -> PipelineDecision:
        """处理一个动作请求

        Raises:
            DraftStateError: 该 task_id 已存在 Draft
        """
        auth = self.guard.authorize_command(request.command, request.origin)
        if not auth.authorized:
            log.warning(
                "owner_guard_denied",
                task_id=request.task_id,
                command=request.command,
                reason=auth.reason,
            )
            return DeniedDecision(task_id=request.task_id, reason=auth.reason)

        verdict = self.injection_filter.sanitize_fields(
            request.untrusted_fields(), context=request.command
        )
        if verdict.flagged:
            log.warning(
                "content_flagged",
                task_id=request.task_id,
                command=request.command,
                threats=verdict.threat_kinds,
                confidence=verdict.confidence,
                truncated=verdict.truncated,
            )
            if verdict.confidence >= self.config.block_threshold:
                return BlockedDecision(
                    task_id=request.task_id,
                    reason="injection_confidence_exceeded",
                    confidence=verdict.confidence,
                    threats=verdict.threats,
                )

        outcome = await self.enforcer.stage_if_needed(request, verdict)

        if isinstance(outcome, ImmediateExecution):
            return ImmediateDecision(task_id=request.task_id, request=outcome.request)
        if isinstance(outcome, StagingRejected):
            return RejectedDecision(
                task_id=request.task_id,
                reason=outcome.reason,
                threats=outcome.threats,
            )

        draft = outcome
        notified = False
        if draft.high_risk:
            notified = await self.notify_owner(draft.task_id)
            draft = await self.enforcer.get_draft(draft.task_id) or draft
        return StagedDecision(task_id=request.task_id, draft=draft, owner_notified=notified)

    async def request_confirmation(
        self,
        task_id: str,
        stage: str = DEFAULT_STAGE,
    ) -> ChallengeReceipt:
        """签发挑战，只返回回执；密码仅经由投递渠道离开网关"""
        await self.gate.generate_password_pair(task_id, stage)
        challenge = await self.gate.get_challenge(task_id, stage)
        return self.gate.receipt(challenge)

    async def redeliver(self, task_id: str, stage: str = DEFAULT_STAGE) -> ChallengeReceipt:
        return await self.gate.retry_delivery(task_id, stage)

    async def confirm(
        self,
        task_id: str,
        password_a: str | SecretStr,
        password_b: str | SecretStr,
        stage: str | None = None,
    ) -> VerificationResult:
        return await self.gate.verify_both(task_id, password_a, password_b, stage)

    async def confirm_and_release(
        self,
        task_id: str,
        password_a: str | SecretStr,
        password_b: str | SecretStr,
        stage: str | None = None,
    ) -> Draft:
        """校验双密码并立即取出 Draft，供执行器在同一步完成确认与执行

        Raises:
            VerificationMismatch: 校验未通过（不区分原因）
            DraftNotFound / DraftStateError: 校验通过但 Draft 仍不可 release
        """
        result = await self.gate.verify_both(task_id, password_a, password_b, stage)
        if not result.valid:
            raise VerificationMismatch(task_id)
        return await self.enforcer.release_draft(task_id)

    async def get_draft(self, task_id: str) -> Draft | None:
        return await self.enforcer.get_draft(task_id)

    async def release(self, task_id: str) -> Draft:
        """取出已确认的 Draft 交给执行器"""
        return await self.enforcer.release_draft(task_id)

    async def reject(self, task_id: str, reason: str = "owner_rejected") -> Draft:
        return await self.enforcer.reject_draft(task_id, reason)

    async def notify_owner(self, task_id: str) -> bool:
        """把高风险 Draft 的威胁摘要发给 owner

        消息只包含动作名与威胁类型，不包含 payload。

        Returns:
            owner 是否已被通知

        Raises:
            DraftNotFound: Draft 不存在
        """
        draft = await self.enforcer.get_draft(task_id)
        if draft is None:
            raise DraftNotFound(task_id)
        if not draft.high_risk or draft.owner_notified:
            return draft.owner_notified
        if self._notify_channel is None:
            log.warning("owner_notify_unavailable", task_id=task_id)
            return False

        kinds = sorted({t.kind.value for t in draft.threats})
        text = (
            f"ClawGate staged a high-risk '{draft.request.command}' action "
            f"(task {task_id}).\n"
            f"Detected: {', '.join(kinds) or 'unknown'}\n"
            "The action will not run unless you confirm it with both passwords."
        )
        result = await self._notify_channel.send(text)
        if not result.ok:
            log.warning(
                "owner_notify_failed",
                task_id=task_id,
                channel=result.channel,
                error=result.error,
            )
            return False

        await self.enforcer.mark_owner_notified(task_id)
        log.info("owner_notified", task_id=task_id, channel=result.channel, threats=kinds)
        return True

    async def reap_expired(self) -> int:
        return await self.gate.reap_expired()


def build_pipeline(
    config: GateConfig,
    stores: StoreGroup,
    channels: Sequence[DeliveryChannel],
    clock: Clock | None = None,
    notify_channel_name: str = "",
) -> AuthorizationPipeline:
    """组装流水线，Draft Enforcer 与 Gate 共享同一个 KeyedLocks

    Args:
        notify_channel_name: 高风险通知渠道名，空值使用第一个渠道
    """
    clock = clock or SystemClock()
    locks = KeyedLocks()

    notify_channel = None
    if notify_channel_name:
        notify_channel = next((c for c in channels if c.name == notify_channel_name), None)
        if notify_channel is None:
            log.warning("notify_channel_not_found", channel=notify_channel_name)
    elif channels:
        notify_channel = channels[0]

    return AuthorizationPipeline(
        config=config,
        guard=OwnerGuard(config),
        injection_filter=InjectionFilter(config),
        enforcer=DraftEnforcer(config, stores, locks, clock),
        gate=DualConfirmationGate(config, stores, locks, channels, clock),
        notify_channel=notify_channel,
    )


def raise_for_decision(decision: PipelineDecision) -> PipelineDecision:
    """把拒绝类决策转为异常，供偏好异常风格的调用方使用

    Raises:
        Unauthorized: Owner Guard 拒绝
        ContentFlagged: 注入阻断或被标记的读动作
    """
    if isinstance(decision, DeniedDecision):
        raise Unauthorized(decision.reason.value)
    if isinstance(decision, BlockedDecision):
        raise ContentFlagged([t.kind.value for t in decision.threats], decision.confidence)
    if isinstance(decision, RejectedDecision):
        raise ContentFlagged([t.kind.value for t in decision.threats], 0.0)
    return decision
