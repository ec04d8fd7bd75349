"""OwnerGuard -- 单一 owner 访问控制

origin 与配置的 owner 做精确、大小写敏感、带渠道前缀的比较。
内容来源标签（如 email_content）永远不会被视为授权来源，
无论其字符串多么接近 owner 标识：内容出处不能升级为命令权限。

纯函数：无 I/O、无副作用，对任何输入都不抛异常。
"""

import hmac

from clawgate.core.config import GateConfig
from clawgate.core.models import AuthorizationResult, DenialReason, Principal


class OwnerGuard:
    """单一 owner 授权判定"""

    def __init__(self, config: GateConfig) -> None:
        self._config = config
        self._owner = config.owner_principal.get_secret_value().encode("utf-8")

    def authorize_command(self, command: object, origin: object) -> AuthorizationResult:
        """判定 origin 是否为唯一授权的 owner

        Args:
            command: 动作名称，仅校验格式
            origin: 声明来源，channel:identifier

        Returns:
            AuthorizationResult，reason 为原因码，不包含 owner 标识
        """
        if not isinstance(origin, str) or not origin:
            return _deny(DenialReason.ORIGIN_MALFORMED)

        # 内容来源标签优先判定，不论是否带 channel 前缀
        if self._is_content_provenance(origin):
            return _deny(DenialReason.ORIGIN_IS_CONTENT_PROVENANCE)

        principal = Principal.parse(origin)
        if principal is None:
            return _deny(DenialReason.ORIGIN_MALFORMED)

        if not isinstance(command, str) or not command.strip() or not command.isprintable():
            return _deny(DenialReason.COMMAND_MALFORMED)

        if principal.channel not in self._config.command_channels:
            return _deny(DenialReason.CHANNEL_NOT_REGISTERED)

        if not self._owner:
            return _deny(DenialReason.ORIGIN_NOT_OWNER)

        if hmac.compare_digest(origin.encode("utf-8"), self._owner):
            return AuthorizationResult(authorized=True, reason=DenialReason.OWNER_VERIFIED)
        return _deny(DenialReason.ORIGIN_NOT_OWNER)

    def _is_content_provenance(self, origin: str) -> bool:
        head = origin.split(":", 1)[0]
        return self._config.is_provenance_channel(origin) or self._config.is_provenance_channel(
            head
        )


def _deny(reason: DenialReason) -> AuthorizationResult:
    return AuthorizationResult(authorized=False, reason=reason)
