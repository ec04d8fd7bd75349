"""ChannelConfig -- 投递渠道配置加载

与 GateConfig 分开加载：渠道凭证只在这里出现，不进入核心配置。
"""

import os

import structlog
from pydantic import BaseModel, Field, SecretStr

from .channels import (
    DeliveryChannel,
    RecordingChannel,
    SmtpEmailChannel,
    TelegramChannel,
    WebhookChannel,
)

log = structlog.get_logger()


class ChannelConfig(BaseModel):
    """投递渠道配置 -- 从环境变量加载

    环境变量:
        CLAWGATE_TELEGRAM_BOT_TOKEN / CLAWGATE_TELEGRAM_CHAT_ID
        CLAWGATE_SMTP_HOST / CLAWGATE_SMTP_PORT / CLAWGATE_SMTP_USERNAME /
        CLAWGATE_SMTP_PASSWORD / CLAWGATE_SMTP_SENDER / CLAWGATE_SMTP_RECIPIENT /
        CLAWGATE_SMTP_STARTTLS
        CLAWGATE_WEBHOOK_URL / CLAWGATE_WEBHOOK_TOKEN
        CLAWGATE_NOTIFY_CHANNEL: 高风险通知使用的渠道名
        CLAWGATE_CHANNEL_TIMEOUT_S: 单次投递超时（秒）
    """

    telegram_bot_token: SecretStr = Field(default=SecretStr(""))
    telegram_chat_id: str = Field(default="")

    smtp_host: str = Field(default="")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str = Field(default="")
    smtp_password: SecretStr = Field(default=SecretStr(""))
    smtp_sender: str = Field(default="")
    smtp_recipient: str = Field(default="")
    smtp_starttls: bool = Field(default=True)

    webhook_url: str = Field(default="")
    webhook_token: SecretStr = Field(default=SecretStr(""))

    notify_channel: str = Field(default="", description="高风险通知渠道名，空值使用第一个渠道")
    timeout_s: float = Field(default=10.0, gt=0)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token.get_secret_value() and self.telegram_chat_id)

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_sender and self.smtp_recipient)

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.webhook_url)


def load_channel_config() -> ChannelConfig:
    """从环境变量加载渠道配置

    Returns:
        ChannelConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("CLAWGATE_TELEGRAM_BOT_TOKEN"):
        kwargs["telegram_bot_token"] = SecretStr(val)
    if val := os.environ.get("CLAWGATE_TELEGRAM_CHAT_ID"):
        kwargs["telegram_chat_id"] = val

    if val := os.environ.get("CLAWGATE_SMTP_HOST"):
        kwargs["smtp_host"] = val
    if val := os.environ.get("CLAWGATE_SMTP_PORT"):
        try:
            kwargs["smtp_port"] = int(val)
        except ValueError:
            log.warning(
                "invalid_int_config",
                env_var="CLAWGATE_SMTP_PORT",
                value=val,
                fallback=587,
            )
    if val := os.environ.get("CLAWGATE_SMTP_USERNAME"):
        kwargs["smtp_username"] = val
    if val := os.environ.get("CLAWGATE_SMTP_PASSWORD"):
        kwargs["smtp_password"] = SecretStr(val)
    if val := os.environ.get("CLAWGATE_SMTP_SENDER"):
        kwargs["smtp_sender"] = val
    if val := os.environ.get("CLAWGATE_SMTP_RECIPIENT"):
        kwargs["smtp_recipient"] = val
    if val := os.environ.get("CLAWGATE_SMTP_STARTTLS"):
        kwargs["smtp_starttls"] = val.lower() not in ("0", "false", "no")

    if val := os.environ.get("CLAWGATE_WEBHOOK_URL"):
        kwargs["webhook_url"] = val
    if val := os.environ.get("CLAWGATE_WEBHOOK_TOKEN"):
        kwargs["webhook_token"] = SecretStr(val)

    if val := os.environ.get("CLAWGATE_NOTIFY_CHANNEL"):
        kwargs["notify_channel"] = val
    if val := os.environ.get("CLAWGATE_CHANNEL_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = float(val)
        except ValueError:
            log.warning(
                "invalid_float_config",
                env_var="CLAWGATE_CHANNEL_TIMEOUT_S",
                value=val,
                fallback=10.0,
            )

    return ChannelConfig(**kwargs)


def build_channels(config: ChannelConfig) -> list[DeliveryChannel]:
    """按配置构建渠道列表

    没有任何真实渠道时回退到两个 RecordingChannel（echo 模式），并记录告警。
    """
    channels: list[DeliveryChannel] = []
    if config.telegram_enabled:
        channels.append(
            TelegramChannel(
                bot_token=config.telegram_bot_token,
                chat_id=config.telegram_chat_id,
                timeout_s=config.timeout_s,
            )
        )
    if config.smtp_enabled:
        channels.append(
            SmtpEmailChannel(
                host=config.smtp_host,
                port=config.smtp_port,
                sender=config.smtp_sender,
                recipient=config.smtp_recipient,
                username=config.smtp_username,
                password=config.smtp_password,
                use_tls=config.smtp_starttls,
                timeout_s=config.timeout_s,
            )
        )
    if config.webhook_enabled:
        channels.append(
            WebhookChannel(
                url=config.webhook_url,
                token=config.webhook_token,
                timeout_s=config.timeout_s,
            )
        )

    if not channels:
        log.warning(
            "no_delivery_channels_configured",
            fallback="recording",
            hint="confirmation secrets stay in process memory",
        )
        channels = [RecordingChannel("recording_a"), RecordingChannel("recording_b")]
    return channels
