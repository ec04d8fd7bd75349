"""ActionRequest / Principal 领域模型

ActionRequest 创建后不可变，由授权流水线消费。
origin 保留调用方声明的原始字符串，畸形 origin 同样可以被表达并被拒绝。
"""

import re
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

# channel 前缀 + 标识符，标识符不允许空白和控制字符
_PRINCIPAL_RE = re.compile(r"([A-Za-z][A-Za-z0-9_.-]{0,31}):([^\s\x00-\x1f\x7f]{1,256})")


class Principal(BaseModel):
    """带渠道限定的身份，如 telegram:+15550001111"""

    model_config = ConfigDict(frozen=True)

    channel: str = Field(description="渠道前缀")
    identifier: str = Field(description="渠道内标识")

    @property
    def qualified(self) -> str:
        return f"{self.channel}:{self.identifier}"

    @classmethod
    def parse(cls, origin: object) -> "Principal | None":
        """解析 channel:identifier 形式的 origin，无法识别时返回 None（不抛异常）"""
        if not isinstance(origin, str):
            return None
        match = _PRINCIPAL_RE.fullmatch(origin)
        if match is None:
            return None
        return cls(channel=match.group(1), identifier=match.group(2))


class ActionRequest(BaseModel):
    """动作请求 -- 命令名 + 自由文本 payload + 声明来源

    content 存放额外的不可信文本字段（如被引用的邮件正文），
    与 payload 一起送入 Injection Filter。
    """

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(
        default_factory=lambda: str(ULID()),
        description="任务标识，ULID 格式",
    )
    command: str = Field(description="动作名称，如 send_email")
    payload: str = Field(default="", description="自由文本 payload")
    origin: str = Field(description="声明来源，channel:identifier")
    content: dict[str, str] = Field(
        default_factory=dict,
        description="额外的不可信文本字段",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="创建时间",
    )

    @property
    def principal(self) -> Principal | None:
        return Principal.parse(self.origin)

    def untrusted_fields(self) -> dict[str, str]:
        """返回需要经过注入扫描的全部文本字段"""
        fields = {"payload": self.payload}
        for name, value in self.content.items():
            fields[f"content.{name}"] = value
        return fields
