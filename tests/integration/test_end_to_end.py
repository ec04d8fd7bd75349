"""端到端测试：SQLite 后端上的完整授权流程 + CLI 自检"""

import sys

import pytest
import pytest_asyncio

from clawgate.core.exceptions import DraftStateError
from clawgate.core.models import ActionRequest, ChallengeStatus
from clawgate.core.store import create_store_group
from clawgate.guard import AuthorizationPipeline, RecordingChannel, build_pipeline
from clawgate.guard.__main__ import main, reap, verify

_SECRET_PREFIX = "Password "


@pytest_asyncio.fixture
async def sqlite_stores(tmp_db_path, clock, gate_config):
    group = await create_store_group(
        "sqlite", db_path=tmp_db_path, clock=clock, retention_s=gate_config.record_retention_s
    )
    yield group
    await group.close()


class TestSqliteFlow:
    async def test_stage_confirm_release(
        self, gate_config, sqlite_stores, clock, owner, read_secret
    ):
        sms = RecordingChannel("sms", kind="sms")
        email = RecordingChannel("email", kind="email")
        pipeline = build_pipeline(gate_config, sqlite_stores, [sms, email], clock)

        request = ActionRequest(
            command="forward_email",
            origin=owner,
            payload="Forward the signed contract to legal@example.com",
        )
        decision = await pipeline.submit(request)
        assert decision.kind == "staged"

        await pipeline.request_confirmation(request.task_id)
        assert await pipeline.confirm(request.task_id, read_secret(sms), "WRONG") == (
            await pipeline.confirm(request.task_id, "WRONG", read_secret(email))
        )
        result = await pipeline.confirm(request.task_id, read_secret(sms), read_secret(email))
        assert result.valid

        challenge = await pipeline.gate.get_challenge(request.task_id, "initiation")
        assert challenge.status == ChallengeStatus.CONSUMED
        assert challenge.attempts == 2

        released = await pipeline.release(request.task_id)
        assert released.request == request
        assert await sqlite_stores.kv.list_for_task("challenge", request.task_id) == []

    async def test_state_survives_restart(
        self, gate_config, tmp_db_path, clock, owner, read_secret
    ):
        """挑战与 Draft 持久化，重启后仍可完成确认"""
        sms = RecordingChannel("sms", kind="sms")
        email = RecordingChannel("email", kind="email")

        first = await create_store_group("sqlite", db_path=tmp_db_path, clock=clock)
        pipeline = build_pipeline(gate_config, first, [sms, email], clock)
        request = ActionRequest(command="delete_file", origin=owner, payload="/tmp/old.log")
        await pipeline.submit(request)
        await pipeline.request_confirmation(request.task_id)
        await first.close()

        second = await create_store_group("sqlite", db_path=tmp_db_path, clock=clock)
        try:
            restarted = build_pipeline(gate_config, second, [sms, email], clock)
            result = await restarted.confirm(
                request.task_id, read_secret(sms), read_secret(email)
            )
            assert result.valid
        finally:
            await second.close()


class TestCli:
    @pytest.fixture(autouse=True)
    def _env(self, monkeypatch, tmp_path, owner):
        monkeypatch.setenv("CLAWGATE_OWNER", owner)
        monkeypatch.setenv("CLAWGATE_DB_PATH", str(tmp_path / "sqlite" / "cli.db"))
        for key in ("CLAWGATE_TELEGRAM_BOT_TOKEN", "CLAWGATE_SMTP_HOST", "CLAWGATE_WEBHOOK_URL"):
            monkeypatch.delenv(key, raising=False)

    async def test_verify_passes(self, capsys):
        failures = await verify()
        out = capsys.readouterr().out
        assert failures == 0, out
        assert "FAIL" not in out
        assert "PASS  confirmation gate: secrets single-use" in out
        assert _SECRET_PREFIX not in out

    async def test_verify_multi_stage(self, monkeypatch, capsys):
        """多阶段配置下自检逐阶段确认后 release"""
        monkeypatch.setenv("CLAWGATE_REQUIRED_STAGES", "initiation,final_release")
        failures = await verify()
        out = capsys.readouterr().out
        assert failures == 0, out
        assert "PASS  confirmation gate: final_release pair accepted" in out
        assert "PASS  draft enforcer: confirmed draft released" in out

    async def test_verify_release_failure_reported(self, monkeypatch, capsys):
        async def _refuse(self, task_id):
            raise DraftStateError(task_id, "pending", "release")

        monkeypatch.setattr(AuthorizationPipeline, "release", _refuse)
        failures = await verify()
        out = capsys.readouterr().out
        assert failures == 1
        assert "FAIL  draft enforcer: confirmed draft released: DRAFT_STATE_CONFLICT" in out

    async def test_verify_without_owner_fails(self, monkeypatch, capsys):
        monkeypatch.delenv("CLAWGATE_OWNER")
        failures = await verify()
        assert failures >= 1
        assert "FAIL  owner configured" in capsys.readouterr().out

    async def test_reap(self, capsys, tmp_path):
        await reap()
        out = capsys.readouterr().out
        assert "删除 0 条记录" in out
        assert (tmp_path / "sqlite" / "cli.db").exists()

    def test_main_usage(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["clawgate-guard"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "verify" in capsys.readouterr().out

    def test_main_unknown_command(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["clawgate-guard", "launch"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
