"""KeyValueStore 测试：内存与 SQLite 两种后端行为一致"""

from datetime import timedelta

import pytest
import pytest_asyncio

from clawgate.core.models import ActionRequest, Draft
from clawgate.core.store import StoreGroup, create_store_group
from clawgate.core.store.sqlite_init import verify_wal_mode


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def group(request, clock, tmp_db_path):
    store_group = await create_store_group(
        request.param, db_path=tmp_db_path, clock=clock, retention_s=60
    )
    yield store_group
    await store_group.close()


class TestKeyValueStore:
    async def test_put_get(self, group: StoreGroup):
        await group.kv.put("ns", "t1", "", {"a": 1, "text": "中文"})
        assert await group.kv.get("ns", "t1") == {"a": 1, "text": "中文"}

    async def test_missing_returns_none(self, group: StoreGroup):
        assert await group.kv.get("ns", "missing") is None

    async def test_put_overwrites(self, group: StoreGroup):
        await group.kv.put("ns", "t1", "s", {"v": 1})
        await group.kv.put("ns", "t1", "s", {"v": 2})
        assert await group.kv.get("ns", "t1", "s") == {"v": 2}

    async def test_namespaces_isolated(self, group: StoreGroup):
        await group.kv.put("draft", "t1", "", {"kind": "draft"})
        await group.kv.put("challenge", "t1", "", {"kind": "challenge"})
        assert (await group.kv.get("draft", "t1"))["kind"] == "draft"
        assert (await group.kv.get("challenge", "t1"))["kind"] == "challenge"

    async def test_ttl_expiry(self, group: StoreGroup, clock):
        await group.kv.put("ns", "t1", "", {"v": 1}, ttl_s=30)
        clock.advance(29)
        assert await group.kv.get("ns", "t1") is not None
        clock.advance(1)
        assert await group.kv.get("ns", "t1") is None

    async def test_delete_reports_existence(self, group: StoreGroup):
        await group.kv.put("ns", "t1", "", {"v": 1})
        assert await group.kv.delete("ns", "t1") is True
        assert await group.kv.delete("ns", "t1") is False
        assert await group.kv.get("ns", "t1") is None

    async def test_list_for_task(self, group: StoreGroup, clock):
        await group.kv.put("ns", "t1", "b", {"stage": "b"})
        await group.kv.put("ns", "t1", "a", {"stage": "a"})
        await group.kv.put("ns", "t1", "gone", {"stage": "gone"}, ttl_s=5)
        await group.kv.put("ns", "t2", "a", {"stage": "other"})
        clock.advance(10)

        records = await group.kv.list_for_task("ns", "t1")
        assert [r["stage"] for r in records] == ["a", "b"]

    async def test_purge_expired(self, group: StoreGroup, clock):
        await group.kv.put("ns", "t1", "", {"v": 1}, ttl_s=5)
        await group.kv.put("ns", "t2", "", {"v": 2}, ttl_s=50)
        await group.kv.put("ns", "t3", "", {"v": 3})
        clock.advance(10)

        assert await group.kv.purge_expired() == 1
        assert await group.kv.purge_expired() == 0
        assert await group.kv.get("ns", "t2") is not None
        assert await group.kv.get("ns", "t3") is not None


class TestRecordStores:
    async def test_draft_round_trip(self, group: StoreGroup, clock):
        now = clock.now()
        draft = Draft(
            task_id="t1",
            request=ActionRequest(command="send_email", origin="cli:owner", task_id="t1"),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=5),
        )
        await group.draft_store.save(draft)
        assert await group.draft_store.get("t1") == draft

    async def test_expired_draft_kept_for_retention(self, group: StoreGroup, clock):
        """业务过期后记录仍保留 retention_s，便于读取终态"""
        now = clock.now()
        draft = Draft(
            task_id="t1",
            request=ActionRequest(command="send_email", origin="cli:owner", task_id="t1"),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=10),
        )
        await group.draft_store.save(draft)
        clock.advance(30)
        assert await group.draft_store.get("t1") is not None
        clock.advance(60)
        assert await group.draft_store.get("t1") is None


class TestSqliteInit:
    async def test_creates_parent_dir_and_wal(self, clock, tmp_db_path):
        assert not tmp_db_path.parent.exists()
        group = await create_store_group("sqlite", db_path=tmp_db_path, clock=clock)
        try:
            assert tmp_db_path.exists()
            assert await verify_wal_mode(group.kv._conn)
        finally:
            await group.close()

    async def test_sqlite_requires_path(self, clock):
        with pytest.raises(ValueError):
            await create_store_group("sqlite", clock=clock)

    async def test_data_survives_reopen(self, clock, tmp_db_path):
        group = await create_store_group("sqlite", db_path=tmp_db_path, clock=clock)
        await group.kv.put("ns", "t1", "", {"v": 1})
        await group.close()

        reopened = await create_store_group("sqlite", db_path=tmp_db_path, clock=clock)
        try:
            assert await reopened.kv.get("ns", "t1") == {"v": 1}
        finally:
            await reopened.close()
