"""DeliveryChannel -- 确认密码的带外投递渠道

send() 从不抛异常，失败以 DeliveryResult(ok=False) 返回；
error 只包含异常类型或状态码，不包含 payload 与凭证。
"""

import asyncio
import re
import smtplib
from email.message import EmailMessage
from typing import Protocol, runtime_checkable

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, SecretStr

log = structlog.get_logger()

TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_CHARS = 4096

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f]")


class DeliveryResult(BaseModel):
    """单次投递结果"""

    model_config = ConfigDict(frozen=True)

    channel: str
    ok: bool
    error: str = ""


@runtime_checkable
class DeliveryChannel(Protocol):
    """投递渠道接口

    name 在注册表中唯一；kind 为渠道类型（telegram / email / webhook ...），
    用于保证两个密码走相互独立、且不同于请求来源的渠道。
    """

    name: str
    kind: str

    async def send(self, text: str) -> DeliveryResult: ...


def sanitize_message(text: str, max_len: int = TELEGRAM_MAX_CHARS) -> str:
    """清洗控制字符并截断超长消息"""
    cleaned = _CONTROL_CHARS.sub("", text or "")
    if len(cleaned) > max_len:
        cleaned = cleaned[: max_len - 24] + "... [message truncated]"
    return cleaned


class TelegramChannel:
    """Telegram Bot API sendMessage

    不使用 parse_mode，避免富文本解析错误。
    """

    kind = "telegram"

    def __init__(
        self,
        bot_token: SecretStr,
        chat_id: str,
        name: str = "telegram",
        api_base: str = TELEGRAM_API_BASE,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._api_base = api_base.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    async def send(self, text: str) -> DeliveryResult:
        url = f"{self._api_base}/bot{self._bot_token.get_secret_value()}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": sanitize_message(text),
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s, transport=self._transport
            ) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            # 异常消息里带有含 token 的 URL，只记录类型
            log.warning("channel_send_failed", channel=self.name, error_type=type(e).__name__)
            return DeliveryResult(channel=self.name, ok=False, error=type(e).__name__)

        if resp.status_code != 200:
            log.warning("channel_send_failed", channel=self.name, status_code=resp.status_code)
            return DeliveryResult(channel=self.name, ok=False, error=f"http_{resp.status_code}")
        return DeliveryResult(channel=self.name, ok=True)


class WebhookChannel:
    """JSON POST 到任意 webhook，可选 Bearer token"""

    kind = "webhook"

    def __init__(
        self,
        url: str,
        token: SecretStr | None = None,
        name: str = "webhook",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self._url = url
        self._token = token
        self._timeout_s = timeout_s
        self._transport = transport

    async def send(self, text: str) -> DeliveryResult:
        headers = {}
        if self._token is not None and self._token.get_secret_value():
            headers["Authorization"] = f"Bearer {self._token.get_secret_value()}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._url,
                    json={"channel": self.name, "text": sanitize_message(text)},
                    headers=headers,
                )
        except httpx.HTTPError as e:
            log.warning("channel_send_failed", channel=self.name, error_type=type(e).__name__)
            return DeliveryResult(channel=self.name, ok=False, error=type(e).__name__)

        if not resp.is_success:
            log.warning("channel_send_failed", channel=self.name, status_code=resp.status_code)
            return DeliveryResult(channel=self.name, ok=False, error=f"http_{resp.status_code}")
        return DeliveryResult(channel=self.name, ok=True)


class SmtpEmailChannel:
    """SMTP 邮件投递，阻塞的 smtplib 调用放到线程中执行"""

    kind = "email"

    def __init__(
        self,
        host: str,
        sender: str,
        recipient: str,
        port: int = 587,
        username: str = "",
        password: SecretStr | None = None,
        use_tls: bool = True,
        name: str = "email",
        timeout_s: float = 15.0,
        subject: str = "ClawGate confirmation",
    ) -> None:
        self.name = name
        self._host = host
        self._port = port
        self._sender = sender
        self._recipient = recipient
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout_s = timeout_s
        self._subject = subject

    def _build_message(self, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self._subject
        msg["From"] = self._sender
        msg["To"] = self._recipient
        msg.set_content(sanitize_message(text, max_len=16384))
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout_s) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password is not None:
                smtp.login(self._username, self._password.get_secret_value())
            smtp.send_message(msg)

    async def send(self, text: str) -> DeliveryResult:
        try:
            await asyncio.to_thread(self._send_sync, self._build_message(text))
        except (smtplib.SMTPException, OSError) as e:
            log.warning("channel_send_failed", channel=self.name, error_type=type(e).__name__)
            return DeliveryResult(channel=self.name, ok=False, error=type(e).__name__)
        return DeliveryResult(channel=self.name, ok=True)


class RecordingChannel:
    """进程内渠道 -- 记录已发送消息，用于 echo 模式与测试"""

    def __init__(self, name: str, kind: str | None = None, fail: bool = False) -> None:
        self.name = name
        self.kind = kind or name
        self.fail = fail
        self.sent: list[str] = []

    async def send(self, text: str) -> DeliveryResult:
        if self.fail:
            return DeliveryResult(channel=self.name, ok=False, error="recording_channel_failed")
        self.sent.append(text)
        return DeliveryResult(channel=self.name, ok=True)

    @property
    def last(self) -> str | None:
        return self.sent[-1] if self.sent else None
