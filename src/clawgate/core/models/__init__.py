"""ClawGate Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .challenge import (
    ChallengeReceipt,
    ConfirmationChallenge,
    PasswordPair,
    VerificationResult,
)
from .decision import (
    AuthorizationResult,
    BlockedDecision,
    DeniedDecision,
    ImmediateDecision,
    ImmediateExecution,
    PipelineDecision,
    RejectedDecision,
    StagedDecision,
    StagingOutcome,
    StagingRejected,
)
from .draft import Draft
from .enums import (
    DRAFT_TERMINAL_STATES,
    REISSUABLE_CHALLENGE_STATES,
    SEVERITY_ORDER,
    VALID_CHALLENGE_TRANSITIONS,
    VALID_DRAFT_TRANSITIONS,
    ActionKind,
    ChallengeStatus,
    DenialReason,
    DraftStatus,
    SecretSlot,
    Severity,
    ThreatKind,
    validate_challenge_transition,
    validate_draft_transition,
)
from .request import ActionRequest, Principal
from .verdict import CLEAN_VERDICT, InjectionVerdict, ThreatDescriptor

__all__ = [
    # 枚举
    "ActionKind",
    "DraftStatus",
    "ChallengeStatus",
    "Severity",
    "ThreatKind",
    "DenialReason",
    "SecretSlot",
    "SEVERITY_ORDER",
    # 状态机
    "VALID_DRAFT_TRANSITIONS",
    "VALID_CHALLENGE_TRANSITIONS",
    "DRAFT_TERMINAL_STATES",
    "REISSUABLE_CHALLENGE_STATES",
    "validate_draft_transition",
    "validate_challenge_transition",
    # 请求
    "Principal",
    "ActionRequest",
    # Verdict
    "ThreatDescriptor",
    "InjectionVerdict",
    "CLEAN_VERDICT",
    # Draft / Challenge
    "Draft",
    "ConfirmationChallenge",
    "PasswordPair",
    "ChallengeReceipt",
    "VerificationResult",
    # 决策
    "AuthorizationResult",
    "ImmediateExecution",
    "StagingRejected",
    "StagingOutcome",
    "DeniedDecision",
    "BlockedDecision",
    "RejectedDecision",
    "ImmediateDecision",
    "StagedDecision",
    "PipelineDecision",
]
