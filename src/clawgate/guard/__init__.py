"""ClawGate Guard -- 授权流水线组件

Owner Guard -> Injection Filter -> Draft Enforcer -> Dual-Confirmation Gate
"""

from .channel_config import ChannelConfig, build_channels, load_channel_config
from .channels import (
    DeliveryChannel,
    DeliveryResult,
    RecordingChannel,
    SmtpEmailChannel,
    TelegramChannel,
    WebhookChannel,
)
from .confirmation_gate import DEFAULT_STAGE, DualConfirmationGate, format_delivery_text
from .draft_enforcer import DraftEnforcer
from .injection_filter import InjectionFilter, normalize, score
from .owner_guard import OwnerGuard
from .pipeline import AuthorizationPipeline, build_pipeline, raise_for_decision

__all__ = [
    "OwnerGuard",
    "InjectionFilter",
    "normalize",
    "score",
    "DraftEnforcer",
    "DualConfirmationGate",
    "DEFAULT_STAGE",
    "format_delivery_text",
    "AuthorizationPipeline",
    "build_pipeline",
    "raise_for_decision",
    "DeliveryChannel",
    "DeliveryResult",
    "RecordingChannel",
    "TelegramChannel",
    "SmtpEmailChannel",
    "WebhookChannel",
    "ChannelConfig",
    "load_channel_config",
    "build_channels",
]
