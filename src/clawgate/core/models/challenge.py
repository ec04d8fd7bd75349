"""ConfirmationChallenge 领域模型

以 (task_id, stage) 为键，由 Dual-Confirmation Gate 独占。
两个密码只以加盐 SHA-256 摘要形式保存，明文只作为投递 payload 离开网关。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .enums import ChallengeStatus, SecretSlot


class ConfirmationChallenge(BaseModel):
    """双通道确认挑战"""

    task_id: str = Field(description="关联的任务标识")
    stage: str = Field(description="生命周期阶段，如 initiation / final_release")
    status: ChallengeStatus = Field(default=ChallengeStatus.ISSUING)
    salt: str = Field(description="摘要盐值（hex）")
    digest_a: str = Field(description="密码 A 摘要")
    digest_b: str = Field(description="密码 B 摘要")
    channel_a: str = Field(description="密码 A 投递渠道名")
    channel_b: str = Field(description="密码 B 投递渠道名")
    delivered_a: bool = Field(default=False)
    delivered_b: bool = Field(default=False)
    attempts: int = Field(default=0, ge=0, description="失败校验次数")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    expires_at: datetime = Field(description="过期时间")

    @property
    def consumed(self) -> bool:
        return self.status == ChallengeStatus.CONSUMED

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def undelivered_slots(self) -> list[SecretSlot]:
        slots = []
        if not self.delivered_a:
            slots.append(SecretSlot.A)
        if not self.delivered_b:
            slots.append(SecretSlot.B)
        return slots

    def channel_for(self, slot: SecretSlot) -> str:
        return self.channel_a if slot == SecretSlot.A else self.channel_b


class PasswordPair(BaseModel):
    """generate_password_pair 的返回值

    使用 SecretStr，避免 repr / 日志意外泄露明文。
    """

    model_config = ConfigDict(frozen=True)

    task_id: str
    stage: str
    password_a: SecretStr
    password_b: SecretStr
    expires_at: datetime


class ChallengeReceipt(BaseModel):
    """不含密码的挑战回执，供 HTTP 等外部表面返回"""

    task_id: str
    stage: str
    status: ChallengeStatus
    channels: list[str] = Field(description="两个投递渠道名")
    expires_at: datetime


class VerificationResult(BaseModel):
    """verify_both 的返回值

    失败时不区分"A 错 / B 错 / 不存在 / 已过期 / 已消费"。
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
