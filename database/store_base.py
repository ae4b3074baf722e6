"""
Abstract Call Store — Interface for all storage backends.

Implementations:
  - SqlCallStore      (PostgreSQL / SQLite via SQLAlchemy async)
  - InMemoryCallStore (dict-based, single-process, no persistence)

Three collections are reachable through this interface:
  tenants         — read-only to the dispatch engine (schedules, credentials)
  call history    — completed calls reported by the voice service
  call attempts   — one audit row per dispatch attempt
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from models.schemas import AttemptStatus, CallAttemptRecord, CallRecord, Tenant


class AttemptTransitionError(ValueError):
    """Attempt status may only move pending_initiation → initiated | failed."""


class BaseCallStore(ABC):
    """Interface that all call store backends must implement."""

    async def initialize(self) -> None:
        """Create tables / connections. No-op for in-memory backends."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def ping(self) -> bool:
        """Connectivity probe used by health checks."""
        ...

    # ── Tenants ───────────────────────────────────────────────

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def list_tenant_ids(self) -> list[str]:
        ...

    @abstractmethod
    async def upsert_tenant(self, tenant: Tenant) -> Tenant:
        ...

    # ── Call history ──────────────────────────────────────────

    @abstractmethod
    async def fetch_call_history(self, tenant_id: str, start: datetime, end: datetime) -> list[CallRecord]:
        """Calls with ``start < started_at < end``, oldest first."""
        ...

    @abstractmethod
    async def add_call_records(self, records: list[CallRecord]) -> int:
        ...

    @abstractmethod
    async def delete_call_history_before(self, cutoff: datetime) -> int:
        ...

    # ── Call attempts ─────────────────────────────────────────

    @abstractmethod
    async def create_attempt(self, record: CallAttemptRecord) -> CallAttemptRecord:
        ...

    @abstractmethod
    async def update_attempt(
        self, attempt_id: str, status: AttemptStatus, reason: Optional[str] = None,
    ) -> CallAttemptRecord:
        """Resolve a pending attempt; raises AttemptTransitionError otherwise."""
        ...

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> Optional[CallAttemptRecord]:
        ...

    @abstractmethod
    async def list_attempts(
        self, tenant_id: Optional[str] = None, contact_number: Optional[str] = None,
    ) -> list[CallAttemptRecord]:
        ...

    @abstractmethod
    async def find_initiated_attempt(self, job_id: str) -> Optional[CallAttemptRecord]:
        ...


def check_transition(record: CallAttemptRecord, status: AttemptStatus) -> None:
    if not record.can_transition_to(status):
        raise AttemptTransitionError(
            f"Attempt {record.id} cannot move from {record.status.value} to {status.value}"
        )
