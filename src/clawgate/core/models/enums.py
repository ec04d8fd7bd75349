"""枚举定义

包含动作分类、Draft / Challenge 状态机、威胁类型与严重度枚举，
以及 VALID_DRAFT_TRANSITIONS / VALID_CHALLENGE_TRANSITIONS 合法流转映射。
"""

from enum import StrEnum


class ActionKind(StrEnum):
    """动作读写分类"""

    READ = "read"
    WRITE = "write"


class DraftStatus(StrEnum):
    """Draft 状态机"""

    PENDING = "pending"
    CONFIRMED = "confirmed"

    # 终态
    REJECTED = "rejected"
    EXPIRED = "expired"


# Draft 合法状态流转
VALID_DRAFT_TRANSITIONS: dict[DraftStatus, set[DraftStatus]] = {
    DraftStatus.PENDING: {
        DraftStatus.CONFIRMED,
        DraftStatus.REJECTED,
        DraftStatus.EXPIRED,
    },
    # confirmed 之后只能被 release 删除，或超过 TTL 过期
    DraftStatus.CONFIRMED: {DraftStatus.EXPIRED},
    DraftStatus.REJECTED: set(),
    DraftStatus.EXPIRED: set(),
}

DRAFT_TERMINAL_STATES: set[DraftStatus] = {
    DraftStatus.REJECTED,
    DraftStatus.EXPIRED,
}


class ChallengeStatus(StrEnum):
    """ConfirmationChallenge 状态机

    issuing 阶段密码尚未完成双通道投递，不可用于校验。
    """

    ISSUING = "issuing"
    PENDING = "pending"

    # 终态
    CONSUMED = "consumed"
    EXPIRED = "expired"
    REJECTED = "rejected"
    DELIVERY_FAILED = "delivery_failed"
    LOCKED = "locked"


VALID_CHALLENGE_TRANSITIONS: dict[ChallengeStatus, set[ChallengeStatus]] = {
    ChallengeStatus.ISSUING: {
        ChallengeStatus.PENDING,
        ChallengeStatus.DELIVERY_FAILED,
        ChallengeStatus.REJECTED,
        ChallengeStatus.EXPIRED,
    },
    ChallengeStatus.DELIVERY_FAILED: {
        ChallengeStatus.PENDING,
        ChallengeStatus.DELIVERY_FAILED,
        ChallengeStatus.REJECTED,
        ChallengeStatus.EXPIRED,
    },
    ChallengeStatus.PENDING: {
        ChallengeStatus.CONSUMED,
        ChallengeStatus.EXPIRED,
        ChallengeStatus.REJECTED,
        ChallengeStatus.LOCKED,
    },
    ChallengeStatus.CONSUMED: set(),
    ChallengeStatus.EXPIRED: set(),
    ChallengeStatus.REJECTED: set(),
    ChallengeStatus.LOCKED: set(),
}

# 可被同一 (task_id, stage) 重新签发覆盖的状态
REISSUABLE_CHALLENGE_STATES: set[ChallengeStatus] = {
    ChallengeStatus.EXPIRED,
    ChallengeStatus.REJECTED,
    ChallengeStatus.DELIVERY_FAILED,
    ChallengeStatus.LOCKED,
}


class Severity(StrEnum):
    """威胁严重度，按升序排列"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
)


class ThreatKind(StrEnum):
    """注入检测器类型，顺序即检测顺序"""

    INSTRUCTION_OVERRIDE = "instruction_override"
    SYSTEM_PROMPT_EXFILTRATION = "system_prompt_exfiltration"
    ROLE_MANIPULATION = "role_manipulation"
    JAILBREAK = "jailbreak"
    FAKE_AUTHORIZATION = "fake_authorization"
    ANTI_TRANSPARENCY = "anti_transparency"
    SECRET_SOLICITATION = "secret_solicitation"
    DELIMITER_INJECTION = "delimiter_injection"
    ESCAPE_SEQUENCE = "escape_sequence"
    ENCODED_PAYLOAD = "encoded_payload"
    HOMOGLYPH_OBFUSCATION = "homoglyph_obfuscation"


class DenialReason(StrEnum):
    """Owner Guard 判定原因码（不包含 owner 标识）"""

    OWNER_VERIFIED = "owner_verified"
    ORIGIN_MALFORMED = "origin_malformed"
    COMMAND_MALFORMED = "command_malformed"
    ORIGIN_IS_CONTENT_PROVENANCE = "origin_is_content_provenance"
    CHANNEL_NOT_REGISTERED = "channel_not_registered"
    ORIGIN_NOT_OWNER = "origin_not_owner"


class SecretSlot(StrEnum):
    """双密码槽位"""

    A = "a"
    B = "b"


def validate_draft_transition(from_status: DraftStatus, to_status: DraftStatus) -> bool:
    """验证 Draft 状态流转是否合法"""
    return to_status in VALID_DRAFT_TRANSITIONS.get(from_status, set())


def validate_challenge_transition(
    from_status: ChallengeStatus,
    to_status: ChallengeStatus,
) -> bool:
    """验证 Challenge 状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    return to_status in VALID_CHALLENGE_TRANSITIONS.get(from_status, set())
