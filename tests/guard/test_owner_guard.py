"""OwnerGuard 测试"""

import pytest
from pydantic import SecretStr

from clawgate.core.config import GateConfig
from clawgate.core.models import DenialReason
from clawgate.guard import OwnerGuard


@pytest.fixture
def guard(gate_config: GateConfig) -> OwnerGuard:
    return OwnerGuard(gate_config)


class TestOwnerGuard:
    def test_owner_authorized(self, guard: OwnerGuard, owner: str):
        result = guard.authorize_command("send_email", owner)
        assert result.authorized
        assert result.reason == DenialReason.OWNER_VERIFIED

    def test_stranger_rejected(self, guard: OwnerGuard):
        result = guard.authorize_command("send_email", "telegram:+15559999999")
        assert not result.authorized
        assert result.reason == DenialReason.ORIGIN_NOT_OWNER

    def test_same_identifier_other_channel_rejected(self, guard: OwnerGuard):
        """identifier 相同但渠道不同，仍不是 owner"""
        result = guard.authorize_command("send_email", "signal:+15550001111")
        assert result.reason == DenialReason.ORIGIN_NOT_OWNER

    def test_case_sensitive(self, guard: OwnerGuard):
        result = guard.authorize_command("send_email", "Telegram:+15550001111")
        assert not result.authorized

    @pytest.mark.parametrize(
        "origin",
        [
            "email_content:+15550001111",
            "EMAIL_CONTENT:telegram:+15550001111",
            "web_content:https://example.com",
            "tool_output:+15550001111",
            "calendar_content:+15550001111",
            "email_content",
        ],
    )
    def test_content_provenance_never_authorized(self, guard: OwnerGuard, origin: str):
        """内容来源标签即使携带 owner 标识也被拒绝"""
        result = guard.authorize_command("send_email", origin)
        assert not result.authorized
        assert result.reason == DenialReason.ORIGIN_IS_CONTENT_PROVENANCE

    @pytest.mark.parametrize(
        "origin",
        ["", "+15550001111", "telegram:", "telegram:+1555 0001111", None, 42, b"telegram:x"],
    )
    def test_malformed_origin(self, guard: OwnerGuard, origin):
        result = guard.authorize_command("send_email", origin)
        assert not result.authorized
        assert result.reason == DenialReason.ORIGIN_MALFORMED

    @pytest.mark.parametrize("command", ["", "   ", None, "send\nemail", 7])
    def test_malformed_command(self, guard: OwnerGuard, owner: str, command):
        result = guard.authorize_command(command, owner)
        assert not result.authorized
        assert result.reason == DenialReason.COMMAND_MALFORMED

    def test_unregistered_channel(self, guard: OwnerGuard):
        result = guard.authorize_command("send_email", "irc:owner")
        assert result.reason == DenialReason.CHANNEL_NOT_REGISTERED

    def test_no_owner_configured_denies_everything(self):
        guard = OwnerGuard(GateConfig())
        result = guard.authorize_command("send_email", "telegram:+15550001111")
        assert not result.authorized
        assert result.reason == DenialReason.ORIGIN_NOT_OWNER

    def test_reason_does_not_leak_owner(self, guard: OwnerGuard):
        result = guard.authorize_command("send_email", "telegram:+15559999999")
        assert "15550001111" not in result.model_dump_json()

    def test_custom_owner_channel(self):
        config = GateConfig(
            owner_principal=SecretStr("cli:alice"),
            command_channels=frozenset({"cli"}),
        )
        guard = OwnerGuard(config)
        assert guard.authorize_command("get_status", "cli:alice").authorized
        assert not guard.authorize_command("get_status", "cli:alice2").authorized
