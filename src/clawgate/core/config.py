"""GateConfig -- 授权网关配置

启动时构建一次的不可变配置对象，显式注入各组件，不使用全局可变状态。
load_gate_config() 从环境变量加载，非法数值记录告警并回退默认值。
"""

import os
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from .models.enums import SEVERITY_ORDER, Severity
from .models.request import Principal

log = structlog.get_logger()

DEFAULT_COMMAND_CHANNELS: frozenset[str] = frozenset(
    {"telegram", "whatsapp", "signal", "cli", "web"}
)

# 内容来源标签：只描述文本从哪里读到，永远不是授权身份
DEFAULT_PROVENANCE_TAGS: frozenset[str] = frozenset(
    {
        "email_content",
        "web_content",
        "document_content",
        "attachment_content",
        "forwarded_content",
        "tool_output",
    }
)

DEFAULT_READ_ACTIONS: frozenset[str] = frozenset(
    {
        "read_file",
        "list_files",
        "search_files",
        "read_email",
        "list_emails",
        "search_email",
        "get_calendar",
        "list_calendar_events",
        "web_search",
        "get_weather",
        "get_status",
    }
)

DEFAULT_WRITE_ACTIONS: frozenset[str] = frozenset(
    {
        "send_email",
        "reply_email",
        "forward_email",
        "delete_email",
        "write_file",
        "delete_file",
        "move_file",
        "execute_command",
        "send_message",
        "create_calendar_event",
        "update_calendar_event",
        "delete_calendar_event",
        "http_request",
        "make_payment",
        "install_package",
    }
)

# 31 个不易混淆的字符（去掉 0/O/1/I/L）
DEFAULT_PASSWORD_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"

DEFAULT_SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.LOW: 0.2,
    Severity.MEDIUM: 0.35,
    Severity.HIGH: 0.6,
    Severity.CRITICAL: 0.9,
}


class GateConfig(BaseModel):
    """授权网关配置 -- 不可变

    环境变量:
        CLAWGATE_OWNER: owner principal，如 telegram:+15550001111
        CLAWGATE_COMMAND_CHANNELS: 允许下达命令的渠道前缀（逗号分隔）
        CLAWGATE_PROVENANCE_TAGS: 内容来源标签（逗号分隔）
        CLAWGATE_READ_ACTIONS / CLAWGATE_WRITE_ACTIONS: 动作分类（逗号分隔）
        CLAWGATE_PASSWORD_LENGTH: 单个密码长度
        CLAWGATE_CHALLENGE_TTL_S / CLAWGATE_DRAFT_TTL_S: 有效期（秒）
        CLAWGATE_MAX_VERIFY_ATTEMPTS: 每个挑战允许的失败次数，0 表示不限
        CLAWGATE_REQUIRED_STAGES: Draft 确认所需的阶段（逗号分隔）
        CLAWGATE_SCAN_LIMIT_CHARS: 注入扫描字符上限
        CLAWGATE_BLOCK_THRESHOLD: 直接阻断的置信度阈值
        CLAWGATE_STORE_BACKEND: sqlite / memory
    """

    model_config = ConfigDict(frozen=True)

    owner_principal: SecretStr = Field(
        default=SecretStr(""),
        description="唯一 owner 的 channel:identifier，空值表示拒绝所有命令",
    )
    command_channels: frozenset[str] = Field(default=DEFAULT_COMMAND_CHANNELS)
    content_provenance_tags: frozenset[str] = Field(default=DEFAULT_PROVENANCE_TAGS)
    read_actions: frozenset[str] = Field(default=DEFAULT_READ_ACTIONS)
    write_actions: frozenset[str] = Field(default=DEFAULT_WRITE_ACTIONS)

    password_length: int = Field(default=20, ge=12, le=128)
    password_alphabet: str = Field(default=DEFAULT_PASSWORD_ALPHABET)
    challenge_ttl_s: int = Field(default=600, ge=1, description="挑战有效期（秒）")
    draft_ttl_s: int = Field(default=86400, ge=1, description="Draft 有效期（秒）")
    max_verify_attempts: int = Field(
        default=5,
        ge=0,
        description="每个挑战允许的失败校验次数，0 表示不限制",
    )
    required_stages: tuple[str, ...] = Field(default=("initiation",), min_length=1)
    record_retention_s: int = Field(
        default=3600,
        ge=0,
        description="过期记录在存储中保留多久后可被回收",
    )

    scan_limit_chars: int = Field(default=65536, ge=256)
    block_threshold: float = Field(default=0.9, gt=0.0, le=1.0)
    severity_weights: dict[Severity, float] = Field(
        default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS)
    )
    multi_hit_bonus: float = Field(default=0.25, ge=0.0, le=1.0)

    store_backend: Literal["sqlite", "memory"] = Field(default="sqlite")

    @field_validator("password_alphabet")
    @classmethod
    def _check_alphabet(cls, value: str) -> str:
        if len(set(value)) < 16:
            raise ValueError("password_alphabet needs at least 16 distinct symbols")
        return value

    @field_validator("severity_weights")
    @classmethod
    def _check_weights(cls, value: dict[Severity, float]) -> dict[Severity, float]:
        missing = [s for s in SEVERITY_ORDER if s not in value]
        if missing:
            raise ValueError(f"severity_weights missing {missing}")
        for sev in SEVERITY_ORDER:
            if not 0.0 < value[sev] <= 1.0:
                raise ValueError(f"severity weight for {sev} must be in (0, 1]")
        # 单调递增，且两个低一级命中不低于一个高一级命中
        for lower, higher in zip(SEVERITY_ORDER, SEVERITY_ORDER[1:]):
            if value[lower] > value[higher]:
                raise ValueError("severity weights must be non-decreasing")
            if 2 * value[lower] < value[higher]:
                raise ValueError(
                    f"two {lower} hits must not score below one {higher} hit"
                )
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "GateConfig":
        overlap = self.read_actions & self.write_actions
        if overlap:
            raise ValueError(f"actions classified as both read and write: {sorted(overlap)}")

        owner = self.owner_principal.get_secret_value()
        if owner:
            principal = Principal.parse(owner)
            if principal is None:
                raise ValueError("owner_principal must be channel:identifier")
            if self.is_provenance_channel(principal.channel):
                raise ValueError("owner_principal cannot be a content provenance tag")
            if principal.channel not in self.command_channels:
                raise ValueError("owner_principal channel is not a registered command channel")
        return self

    def is_provenance_channel(self, channel: str) -> bool:
        """判断渠道前缀是否为内容来源标签（大小写不敏感）"""
        lowered = channel.lower()
        tags = {t.lower() for t in self.content_provenance_tags}
        return lowered in tags or lowered.endswith("_content")

    @property
    def owner_configured(self) -> bool:
        return bool(self.owner_principal.get_secret_value())


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("CLAWGATE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "CLAWGATE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "clawgate.db"),
    )


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


_INT_ENV_FIELDS = {
    "CLAWGATE_PASSWORD_LENGTH": "password_length",
    "CLAWGATE_CHALLENGE_TTL_S": "challenge_ttl_s",
    "CLAWGATE_DRAFT_TTL_S": "draft_ttl_s",
    "CLAWGATE_MAX_VERIFY_ATTEMPTS": "max_verify_attempts",
    "CLAWGATE_SCAN_LIMIT_CHARS": "scan_limit_chars",
    "CLAWGATE_RECORD_RETENTION_S": "record_retention_s",
}

_CSV_ENV_FIELDS = {
    "CLAWGATE_COMMAND_CHANNELS": "command_channels",
    "CLAWGATE_PROVENANCE_TAGS": "content_provenance_tags",
    "CLAWGATE_READ_ACTIONS": "read_actions",
    "CLAWGATE_WRITE_ACTIONS": "write_actions",
}


def load_gate_config() -> GateConfig:
    """从环境变量加载 GateConfig

    未设置的变量使用默认值；数值解析失败时记录告警并保留默认值，不阻塞启动。

    Returns:
        GateConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("CLAWGATE_OWNER"):
        kwargs["owner_principal"] = SecretStr(val)

    for env_var, field_name in _CSV_ENV_FIELDS.items():
        if val := os.environ.get(env_var):
            kwargs[field_name] = frozenset(_split_csv(val))

    if val := os.environ.get("CLAWGATE_REQUIRED_STAGES"):
        kwargs["required_stages"] = tuple(_split_csv(val))

    for env_var, field_name in _INT_ENV_FIELDS.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field_name] = int(val)
            except ValueError:
                log.warning(
                    "invalid_int_config",
                    env_var=env_var,
                    value=val,
                    fallback=GateConfig.model_fields[field_name].default,
                )

    if val := os.environ.get("CLAWGATE_BLOCK_THRESHOLD"):
        try:
            kwargs["block_threshold"] = float(val)
        except ValueError:
            log.warning(
                "invalid_float_config",
                env_var="CLAWGATE_BLOCK_THRESHOLD",
                value=val,
                fallback=0.9,
            )

    if val := os.environ.get("CLAWGATE_STORE_BACKEND"):
        kwargs["store_backend"] = val

    return GateConfig(**kwargs)
