"""ClawGate 异常体系

每个异常带机器可读 code 与 recoverable 标记，调用方据此选择补救方式。
任何异常都只代表单个请求的失败结果，不会终止宿主进程。
异常消息不得包含密码明文或 owner 标识。
"""


class GateError(Exception):
    """ClawGate 基础异常"""

    code: str = "GATE_ERROR"

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或重新签发恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class Unauthorized(GateError):
    """Owner Guard 拒绝 -- 不自动重试"""

    code = "UNAUTHORIZED"

    def __init__(self, reason: str) -> None:
        super().__init__(f"origin not authorized: {reason}", recoverable=True)
        self.reason = reason


class ContentFlagged(GateError):
    """注入过滤阻断 -- 附带威胁列表供审计，不重试"""

    code = "CONTENT_FLAGGED"

    def __init__(self, threat_kinds: list[str], confidence: float) -> None:
        kinds = ",".join(threat_kinds) or "unknown"
        super().__init__(f"content flagged: threat={kinds}", recoverable=False)
        self.threat_kinds = threat_kinds
        self.confidence = confidence


class ChallengeAlreadyIssued(GateError):
    """同一 (task_id, stage) 已存在未过期的有效挑战"""

    code = "CHALLENGE_ALREADY_ISSUED"

    def __init__(self, task_id: str, stage: str) -> None:
        super().__init__(
            f"challenge already issued for task {task_id} stage {stage}",
            recoverable=True,
        )
        self.task_id = task_id
        self.stage = stage


class ChallengeExpired(GateError):
    """挑战已过期，需要重新签发"""

    code = "CHALLENGE_EXPIRED"

    def __init__(self, task_id: str, stage: str) -> None:
        super().__init__(
            f"challenge expired for task {task_id} stage {stage}",
            recoverable=True,
        )
        self.task_id = task_id
        self.stage = stage


class ChallengeNotFound(GateError):
    """挑战不存在"""

    code = "CHALLENGE_NOT_FOUND"

    def __init__(self, task_id: str, stage: str) -> None:
        super().__init__(
            f"no challenge for task {task_id} stage {stage}",
            recoverable=True,
        )
        self.task_id = task_id
        self.stage = stage


class DeliveryFailure(GateError):
    """两个渠道均投递失败 -- 需要重新签发"""

    code = "DELIVERY_FAILURE"

    def __init__(self, task_id: str, stage: str, errors: dict[str, str]) -> None:
        super().__init__(
            f"both confirmation channels failed for task {task_id} stage {stage}",
            recoverable=True,
        )
        self.task_id = task_id
        self.stage = stage
        self.errors = errors


class PartialDeliveryFailure(DeliveryFailure):
    """仅一个渠道投递失败 -- 调用方可只重试该渠道

    继承 DeliveryFailure，但 code 不同，必须单独处理。
    """

    code = "PARTIAL_DELIVERY_FAILURE"

    def __init__(
        self,
        task_id: str,
        stage: str,
        failed_slot: str,
        failed_channel: str,
        error: str,
    ) -> None:
        GateError.__init__(
            self,
            f"confirmation delivery failed on slot {failed_slot} "
            f"({failed_channel}) for task {task_id} stage {stage}",
            recoverable=True,
        )
        self.task_id = task_id
        self.stage = stage
        self.failed_slot = failed_slot
        self.failed_channel = failed_channel
        self.errors = {failed_channel: error}


class VerificationMismatch(GateError):
    """双密码校验未通过 -- 不区分哪一个错误"""

    code = "VERIFICATION_MISMATCH"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"confirmation failed for task {task_id}", recoverable=True)
        self.task_id = task_id


class DraftNotFound(GateError):
    """Draft 不存在（或已 release / 回收）"""

    code = "DRAFT_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"no draft for task {task_id}", recoverable=False)
        self.task_id = task_id


class DraftStateError(GateError):
    """Draft 状态不允许该操作"""

    code = "DRAFT_STATE_CONFLICT"

    def __init__(self, task_id: str, status: str, operation: str) -> None:
        super().__init__(
            f"cannot {operation} draft {task_id} in status {status}",
            recoverable=False,
        )
        self.task_id = task_id
        self.status = status
        self.operation = operation


class ChannelUnavailable(GateError):
    """可用于投递的独立渠道不足两个"""

    code = "CHANNEL_UNAVAILABLE"

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class OwnerNotifyFailed(GateError):
    """高风险 Draft 的 owner 通知未送达，可重试"""

    code = "OWNER_NOTIFY_FAILED"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"owner notification failed for task {task_id}", recoverable=True)
        self.task_id = task_id
