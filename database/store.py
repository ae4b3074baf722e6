"""
SqlCallStore — Portable SQL queries for PostgreSQL and SQLite.

SQLite drops timezone information, so every datetime is normalized to UTC
on write and re-tagged as UTC on read.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select, text

from database.models import CallAttemptRow, CallHistoryRow, TenantRow
from database.session import close_db, get_session, init_db
from database.store_base import BaseCallStore, check_transition
from models.schemas import (
    AttemptStatus, CallAttemptRecord, CallRecord, TelephonyConfig, Tenant,
)

logger = structlog.get_logger()


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlCallStore(BaseCallStore):
    """
    Persistent call store backed by any SQLAlchemy-supported database.
    """

    async def initialize(self) -> None:
        await init_db()

    async def close(self) -> None:
        await close_db()

    async def ping(self) -> bool:
        try:
            async with get_session() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("store_ping_failed", error=str(e))
            return False

    # ── Tenants ────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        async with get_session() as db:
            row = await db.get(TenantRow, tenant_id)
            return self._row_to_tenant(row) if row else None

    async def list_tenant_ids(self) -> list[str]:
        async with get_session() as db:
            result = await db.execute(select(TenantRow.id).order_by(TenantRow.id))
            return list(result.scalars())

    async def upsert_tenant(self, tenant: Tenant) -> Tenant:
        schedule = {
            day: {name: slot.model_dump(by_alias=True) for name, slot in slots.items()}
            for day, slots in tenant.weekly_schedule.items()
        }
        telephony = tenant.telephony.model_dump(by_alias=True) if tenant.telephony else None
        async with get_session() as db:
            row = await db.get(TenantRow, tenant.id)
            if row:
                row.name = tenant.name
                row.telephony = telephony
                row.weekly_schedule = schedule
            else:
                db.add(TenantRow(id=tenant.id, name=tenant.name,
                                 telephony=telephony, weekly_schedule=schedule))
        return tenant

    # ── Call history ───────────────────────────────────────

    async def fetch_call_history(self, tenant_id: str, start: datetime, end: datetime) -> list[CallRecord]:
        async with get_session() as db:
            stmt = (
                select(CallHistoryRow)
                .where(
                    CallHistoryRow.tenant_id == tenant_id,
                    CallHistoryRow.started_at > _to_utc(start),
                    CallHistoryRow.started_at < _to_utc(end),
                )
                .order_by(CallHistoryRow.started_at)
            )
            result = await db.execute(stmt)
            return [self._row_to_call(r) for r in result.scalars()]

    async def add_call_records(self, records: list[CallRecord]) -> int:
        async with get_session() as db:
            for record in records:
                data = record.model_dump()
                data["started_at"] = _to_utc(record.started_at)
                db.add(CallHistoryRow(**data))
        return len(records)

    async def delete_call_history_before(self, cutoff: datetime) -> int:
        async with get_session() as db:
            result = await db.execute(
                delete(CallHistoryRow).where(CallHistoryRow.started_at < _to_utc(cutoff))
            )
            return result.rowcount or 0

    # ── Call attempts ──────────────────────────────────────

    async def create_attempt(self, record: CallAttemptRecord) -> CallAttemptRecord:
        async with get_session() as db:
            db.add(CallAttemptRow(
                id=record.id,
                tenant_id=record.tenant_id,
                assistant_id=record.assistant_id,
                contact_name=record.contact_name,
                contact_number=record.contact_number,
                job_id=record.job_id,
                status=record.status.value,
                reason=record.reason,
                created_at=_to_utc(record.created_at),
                completed_at=_to_utc(record.completed_at),
            ))
        return record

    async def update_attempt(
        self, attempt_id: str, status: AttemptStatus, reason: Optional[str] = None,
    ) -> CallAttemptRecord:
        async with get_session() as db:
            row = await db.get(CallAttemptRow, attempt_id)
            if row is None:
                raise KeyError(attempt_id)
            check_transition(self._row_to_attempt(row), status)
            row.status = status.value
            row.reason = reason
            row.completed_at = datetime.now(timezone.utc)
            return self._row_to_attempt(row)

    async def get_attempt(self, attempt_id: str) -> Optional[CallAttemptRecord]:
        async with get_session() as db:
            row = await db.get(CallAttemptRow, attempt_id)
            return self._row_to_attempt(row) if row else None

    async def list_attempts(
        self, tenant_id: Optional[str] = None, contact_number: Optional[str] = None,
    ) -> list[CallAttemptRecord]:
        stmt = select(CallAttemptRow).order_by(CallAttemptRow.created_at)
        if tenant_id is not None:
            stmt = stmt.where(CallAttemptRow.tenant_id == tenant_id)
        if contact_number is not None:
            stmt = stmt.where(CallAttemptRow.contact_number == contact_number)
        async with get_session() as db:
            result = await db.execute(stmt)
            return [self._row_to_attempt(r) for r in result.scalars()]

    async def find_initiated_attempt(self, job_id: str) -> Optional[CallAttemptRecord]:
        async with get_session() as db:
            stmt = (
                select(CallAttemptRow)
                .where(CallAttemptRow.job_id == job_id,
                       CallAttemptRow.status == AttemptStatus.INITIATED.value)
                .limit(1)
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            return self._row_to_attempt(row) if row else None

    # ── Row mapping ────────────────────────────────────────

    @staticmethod
    def _row_to_tenant(row: TenantRow) -> Tenant:
        return Tenant(
            id=row.id,
            name=row.name or "",
            telephony=TelephonyConfig.model_validate(row.telephony) if row.telephony else None,
            weekly_schedule=row.weekly_schedule or {},
        )

    @staticmethod
    def _row_to_call(row: CallHistoryRow) -> CallRecord:
        return CallRecord(
            id=row.id,
            tenant_id=row.tenant_id,
            started_at=_to_utc(row.started_at),
            duration_seconds=row.duration_seconds or 0,
            cost=row.cost or 0,
            ended_reason=row.ended_reason,
            success_evaluation=row.success_evaluation,
            summary=row.summary or "",
            transcript=row.transcript or "",
            recording_url=row.recording_url or "",
            call_type=row.call_type or "",
            phone_number=row.phone_number or "",
            customer_name=row.customer_name or "",
            customer_number=row.customer_number or "",
            assistant_id=row.assistant_id or "",
            assistant_name=row.assistant_name or "",
        )

    @staticmethod
    def _row_to_attempt(row: CallAttemptRow) -> CallAttemptRecord:
        return CallAttemptRecord(
            id=row.id,
            tenant_id=row.tenant_id,
            assistant_id=row.assistant_id,
            contact_name=row.contact_name,
            contact_number=row.contact_number,
            job_id=row.job_id,
            status=AttemptStatus(row.status),
            reason=row.reason,
            created_at=_to_utc(row.created_at),
            completed_at=_to_utc(row.completed_at),
        )
