"""
Tests for all call store backends.

Covers:
  - InMemoryCallStore
  - SqlCallStore (via SQLite for test portability)
  - Attempt status transitions on both backends
  - Store factory
"""
import pytest
from datetime import timedelta

from database import session
from database.store import SqlCallStore
from database.store_base import AttemptTransitionError
from database.store_factory import create_store
from database.store_memory import InMemoryCallStore
from models.schemas import AttemptStatus, CallAttemptRecord, CallRecord, Tenant
from tests.conftest import MONDAY_10AM


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def sql_store(tmp_path, monkeypatch):
    monkeypatch.setattr(session, "_url_override", f"sqlite:///{tmp_path / 'dialqueue_test.db'}")
    monkeypatch.setattr(session, "_engine", None)
    monkeypatch.setattr(session, "_session_factory", None)
    return SqlCallStore()


def history(hours_ago: float, tenant_id: str = "tenant_1", **kwargs) -> CallRecord:
    return CallRecord(tenant_id=tenant_id, started_at=MONDAY_10AM - timedelta(hours=hours_ago),
                      duration_seconds=42, ended_reason="customer-ended-call",
                      success_evaluation=True, assistant_id="asst_1", **kwargs)


def attempt(job_id: str = "job_1") -> CallAttemptRecord:
    return CallAttemptRecord(tenant_id="tenant_1", assistant_id="asst_1",
                             contact_name="Ravi", contact_number="+15551234567", job_id=job_id)


# ──────────────────────────────────────────────────────────────
#  Behaviour shared by both backends
# ──────────────────────────────────────────────────────────────

async def check_tenants(store, tenant):
    assert await store.get_tenant("tenant_1") is None
    await store.upsert_tenant(tenant)
    await store.upsert_tenant(Tenant(id="tenant_0"))

    loaded = await store.get_tenant("tenant_1")
    assert loaded.telephony.sid == "AC123"
    assert loaded.weekly_schedule["monday"]["morning"].call_time_start == "09:00"
    assert await store.list_tenant_ids() == ["tenant_0", "tenant_1"]

    await store.upsert_tenant(tenant.model_copy(update={"name": "Renamed"}))
    assert (await store.get_tenant("tenant_1")).name == "Renamed"


async def check_history(store):
    await store.add_call_records([
        history(1, customer_name="B"),
        history(5, customer_name="A"),
        history(30),
        history(2, tenant_id="tenant_2"),
    ])

    rows = await store.fetch_call_history("tenant_1", MONDAY_10AM - timedelta(hours=24), MONDAY_10AM)
    assert [r.customer_name for r in rows] == ["A", "B"]
    assert rows[0].started_at == MONDAY_10AM - timedelta(hours=5)
    assert rows[0].success_evaluation is True

    assert await store.delete_call_history_before(MONDAY_10AM - timedelta(hours=24)) == 1
    rows = await store.fetch_call_history("tenant_1", MONDAY_10AM - timedelta(days=7), MONDAY_10AM)
    assert len(rows) == 2


async def check_history_bounds_exclusive(store):
    await store.add_call_records([history(24), history(0)])
    rows = await store.fetch_call_history("tenant_1", MONDAY_10AM - timedelta(hours=24), MONDAY_10AM)
    assert rows == []


async def check_attempts(store):
    record = await store.create_attempt(attempt())
    assert (await store.get_attempt(record.id)).status == AttemptStatus.PENDING_INITIATION
    assert await store.find_initiated_attempt("job_1") is None

    updated = await store.update_attempt(record.id, AttemptStatus.INITIATED)
    assert updated.status == AttemptStatus.INITIATED
    assert updated.completed_at is not None
    assert (await store.find_initiated_attempt("job_1")).id == record.id

    with pytest.raises(AttemptTransitionError):
        await store.update_attempt(record.id, AttemptStatus.FAILED, "late failure")
    assert (await store.get_attempt(record.id)).status == AttemptStatus.INITIATED

    other = await store.create_attempt(attempt("job_2"))
    await store.update_attempt(other.id, AttemptStatus.FAILED, "busy signal")
    assert (await store.get_attempt(other.id)).reason == "busy signal"
    assert len(await store.list_attempts(tenant_id="tenant_1")) == 2
    assert await store.list_attempts(contact_number="+10000000000") == []

    with pytest.raises(KeyError):
        await store.update_attempt("missing", AttemptStatus.FAILED)


# ──────────────────────────────────────────────────────────────
#  InMemoryCallStore
# ──────────────────────────────────────────────────────────────

class TestInMemoryCallStore:
    @pytest.mark.asyncio
    async def test_tenants(self, tenant):
        await check_tenants(InMemoryCallStore(), tenant)

    @pytest.mark.asyncio
    async def test_history(self):
        await check_history(InMemoryCallStore())

    @pytest.mark.asyncio
    async def test_history_bounds_exclusive(self):
        await check_history_bounds_exclusive(InMemoryCallStore())

    @pytest.mark.asyncio
    async def test_attempts(self):
        await check_attempts(InMemoryCallStore())

    @pytest.mark.asyncio
    async def test_ping_follows_availability(self):
        store = InMemoryCallStore()
        assert await store.ping() is True
        store.available = False
        assert await store.ping() is False


# ──────────────────────────────────────────────────────────────
#  SqlCallStore (SQLite)
# ──────────────────────────────────────────────────────────────

class TestSqlCallStore:
    @pytest.mark.asyncio
    async def test_tenants(self, sql_store, tenant):
        await sql_store.initialize()
        try:
            await check_tenants(sql_store, tenant)
        finally:
            await sql_store.close()

    @pytest.mark.asyncio
    async def test_history(self, sql_store):
        await sql_store.initialize()
        try:
            await check_history(sql_store)
        finally:
            await sql_store.close()

    @pytest.mark.asyncio
    async def test_history_bounds_exclusive(self, sql_store):
        await sql_store.initialize()
        try:
            await check_history_bounds_exclusive(sql_store)
        finally:
            await sql_store.close()

    @pytest.mark.asyncio
    async def test_attempts(self, sql_store):
        await sql_store.initialize()
        try:
            await check_attempts(sql_store)
        finally:
            await sql_store.close()

    @pytest.mark.asyncio
    async def test_ping(self, sql_store):
        await sql_store.initialize()
        try:
            assert await sql_store.ping() is True
        finally:
            await sql_store.close()


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def test_default_is_memory(self):
        assert isinstance(create_store(), InMemoryCallStore)
        assert isinstance(create_store({"store_backend": "memory"}), InMemoryCallStore)

    def test_sql_configures_url(self, monkeypatch):
        monkeypatch.setattr(session, "_url_override", None)
        store = create_store({"store_backend": "sql", "url": "sqlite:///./factory.db"})
        assert isinstance(store, SqlCallStore)
        assert session._url_override == "sqlite:///./factory.db"


def test_async_url_mapping():
    assert session._to_async_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert session._to_async_url("postgres://h/db") == "postgresql+asyncpg://h/db"
    assert session._to_async_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"


# ──────────────────────────────────────────────────────────────
#  Migration script
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_migration_creates_missing_tables(tmp_path, monkeypatch):
    from config import settings as settings_module
    from scripts.migrate_db import run_migration

    monkeypatch.setattr(settings_module, "_settings", None)
    monkeypatch.setattr(session, "_url_override", None)
    monkeypatch.setattr(session, "_engine", None)
    monkeypatch.setattr(session, "_session_factory", None)
    config = tmp_path / "settings.yaml"
    config.write_text(f"database:\n  url: \"sqlite:///{tmp_path / 'migrate.db'}\"\n")

    expected = ["call_attempts", "call_history", "tenants"]
    assert await run_migration(check_only=True, config_path=str(config)) == expected
    assert await run_migration(config_path=str(config)) == expected
    assert await run_migration(check_only=True, config_path=str(config)) == []
