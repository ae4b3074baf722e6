"""
InMemoryCallStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlCallStore
  - All data lost on process restart
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional

from database.store_base import BaseCallStore, check_transition
from models.schemas import AttemptStatus, CallAttemptRecord, CallRecord, Tenant

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCallStore(BaseCallStore):

    def __init__(self):
        self._tenants: dict[str, Tenant] = {}
        self._calls: dict[str, CallRecord] = {}
        self._attempts: dict[str, CallAttemptRecord] = {}
        self.available = True       # flip to simulate a connectivity outage
        logger.info("inmemory_store_initialized")

    async def ping(self) -> bool:
        return self.available

    # ── Tenants ───────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self._tenants.get(tenant_id)

    async def list_tenant_ids(self) -> list[str]:
        return sorted(self._tenants)

    async def upsert_tenant(self, tenant: Tenant) -> Tenant:
        self._tenants[tenant.id] = tenant
        return tenant

    # ── Call history ──────────────────────────────────────

    async def fetch_call_history(self, tenant_id: str, start: datetime, end: datetime) -> list[CallRecord]:
        rows = [
            c for c in self._calls.values()
            if c.tenant_id == tenant_id and start < c.started_at < end
        ]
        return sorted(rows, key=lambda c: c.started_at)

    async def add_call_records(self, records: list[CallRecord]) -> int:
        for record in records:
            self._calls[record.id] = record
        return len(records)

    async def delete_call_history_before(self, cutoff: datetime) -> int:
        stale = [cid for cid, c in self._calls.items() if c.started_at < cutoff]
        for cid in stale:
            del self._calls[cid]
        return len(stale)

    # ── Call attempts ─────────────────────────────────────

    async def create_attempt(self, record: CallAttemptRecord) -> CallAttemptRecord:
        self._attempts[record.id] = record.model_copy()
        return record

    async def update_attempt(
        self, attempt_id: str, status: AttemptStatus, reason: Optional[str] = None,
    ) -> CallAttemptRecord:
        current = self._attempts.get(attempt_id)
        if current is None:
            raise KeyError(attempt_id)
        check_transition(current, status)
        updated = current.model_copy(update={
            "status": status, "reason": reason, "completed_at": _utcnow(),
        })
        self._attempts[attempt_id] = updated
        return updated

    async def get_attempt(self, attempt_id: str) -> Optional[CallAttemptRecord]:
        return self._attempts.get(attempt_id)

    async def list_attempts(
        self, tenant_id: Optional[str] = None, contact_number: Optional[str] = None,
    ) -> list[CallAttemptRecord]:
        rows = [
            a for a in self._attempts.values()
            if (tenant_id is None or a.tenant_id == tenant_id)
            and (contact_number is None or a.contact_number == contact_number)
        ]
        return sorted(rows, key=lambda a: a.created_at)

    async def find_initiated_attempt(self, job_id: str) -> Optional[CallAttemptRecord]:
        for attempt in self._attempts.values():
            if attempt.job_id == job_id and attempt.status == AttemptStatus.INITIATED:
                return attempt
        return None
