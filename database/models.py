"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, SQLite.

  - JSON type instead of PostgreSQL-specific JSONB; SQLite stores it as TEXT.
  - String primary keys (uuid hex), no database-specific sequences.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, JSON, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ──────────────────────────────────────────────────────────────
#  Tenants
# ──────────────────────────────────────────────────────────────

class TenantRow(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    telephony: Mapped[Any] = mapped_column(JSON, nullable=True)
    weekly_schedule: Mapped[Any] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Call history
# ──────────────────────────────────────────────────────────────

class CallHistoryRow(Base):
    __tablename__ = "call_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0)
    ended_reason: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    success_evaluation: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    summary: Mapped[str] = mapped_column(Text, default="")
    transcript: Mapped[str] = mapped_column(Text, default="")
    recording_url: Mapped[str] = mapped_column(String(1024), default="")
    call_type: Mapped[str] = mapped_column(String(64), default="")
    phone_number: Mapped[str] = mapped_column(String(32), default="")
    customer_name: Mapped[str] = mapped_column(String(256), default="")
    customer_number: Mapped[str] = mapped_column(String(32), default="")
    assistant_id: Mapped[str] = mapped_column(String(64), default="")
    assistant_name: Mapped[str] = mapped_column(String(256), default="")

    __table_args__ = (
        Index("ix_call_history_tenant_started", "tenant_id", "started_at"),
    )


# ──────────────────────────────────────────────────────────────
#  Call attempts
# ──────────────────────────────────────────────────────────────

class CallAttemptRow(Base):
    __tablename__ = "call_attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assistant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contact_name: Mapped[str] = mapped_column(String(256), default="")
    contact_number: Mapped[str] = mapped_column(String(32), default="")
    job_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), default="pending_initiation")
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
