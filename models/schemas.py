"""
Core data models for the DialQueue system.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class AttemptStatus(str, Enum):
    PENDING_INITIATION = "pending_initiation"
    INITIATED = "initiated"
    FAILED = "failed"


class EmailJobType(str, Enum):
    DAILY_REPORT = "daily_report"
    WEEKLY_REPORT = "weekly_report"
    MONTHLY_REPORT = "monthly_report"
    NOTIFICATION = "notification"
    ALERT = "alert"


class SchedulerJobType(str, Enum):
    DAILY_REPORT = "daily_report"
    WEEKLY_REPORT = "weekly_report"
    MONTHLY_REPORT = "monthly_report"
    CLEANUP = "cleanup"
    HEALTH_CHECK = "health_check"


class DispatchOutcome(str, Enum):
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    DELAYED = "delayed"             # voice service busy, re-enqueued
    DUPLICATE = "duplicate"         # redelivered job already dialed


# ──────────────────────────────────────────────────────────────
#  Tenant configuration (read-only to the core)
# ──────────────────────────────────────────────────────────────

class ScheduleSlot(BaseModel):
    """One named window in a tenant's weekly schedule."""
    model_config = ConfigDict(populate_by_name=True)

    assistant_id: str = Field(alias="assistantId")
    call_time_start: str = Field(alias="callTimeStart")    # "HH:MM"
    call_time_end: str = Field(alias="callTimeEnd")        # "HH:MM"


# day name ("monday" .. "sunday") → slot name → slot
WeeklySchedule = dict[str, dict[str, ScheduleSlot]]


class TelephonyConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sid: str = ""
    auth_token: str = Field(default="", alias="authToken")
    phone_number: str = Field(default="", alias="phoneNumber")

    @property
    def is_complete(self) -> bool:
        return bool(self.sid and self.auth_token and self.phone_number)


class Tenant(BaseModel):
    """An account owning contacts, schedules and call history."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    telephony: Optional[TelephonyConfig] = Field(default=None, alias="twilioConfig")
    weekly_schedule: WeeklySchedule = Field(default_factory=dict, alias="weeklySchedule")


# ──────────────────────────────────────────────────────────────
#  Job payloads
# ──────────────────────────────────────────────────────────────

class CallContact(BaseModel):
    name: str
    number: str

    @field_validator("name", "number")
    @classmethod
    def _strip_non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be non-empty")
        return value


class CallJobMetadata(BaseModel):
    source: str = "api"
    queued_at: Optional[str] = None
    rescheduled_from: Optional[str] = None      # job id of the superseded job
    reschedule_reason: Optional[str] = None


class CallJobData(BaseModel):
    """One contact-dial request."""
    tenant_id: str
    assistant_id: str
    contact: CallContact
    priority: float = 1
    delay_ms: int = 0
    metadata: CallJobMetadata = Field(default_factory=CallJobMetadata)


class EmailAttachment(BaseModel):
    filename: str
    content: str                     # base64
    content_type: Optional[str] = None


class EmailJobMetadata(BaseModel):
    cleanup: bool = True
    report_date: Optional[str] = None
    tenant_id: Optional[str] = None
    total_calls: Optional[int] = None
    successful_calls: Optional[int] = None


class EmailJobData(BaseModel):
    type: EmailJobType
    to: list[str]
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    attachments: list[EmailAttachment] = []
    file_paths: list[str] = []
    metadata: EmailJobMetadata = Field(default_factory=EmailJobMetadata)


class SchedulerJobMetadata(BaseModel):
    tenant_id: Optional[str] = None
    scheduled_by: Optional[str] = None
    scheduled_at: Optional[str] = None


class SchedulerJobData(BaseModel):
    type: SchedulerJobType
    metadata: SchedulerJobMetadata = Field(default_factory=SchedulerJobMetadata)


# ──────────────────────────────────────────────────────────────
#  Durable records
# ──────────────────────────────────────────────────────────────

_ATTEMPT_TRANSITIONS: dict[AttemptStatus, set[AttemptStatus]] = {
    AttemptStatus.PENDING_INITIATION: {AttemptStatus.INITIATED, AttemptStatus.FAILED},
    AttemptStatus.INITIATED: set(),
    AttemptStatus.FAILED: set(),
}


class CallAttemptRecord(BaseModel):
    """Audit row written once per dispatch attempt."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:16])
    tenant_id: str
    assistant_id: str
    contact_name: str
    contact_number: str
    job_id: Optional[str] = None
    status: AttemptStatus = AttemptStatus.PENDING_INITIATION
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    reason: Optional[str] = None

    def can_transition_to(self, status: AttemptStatus) -> bool:
        return status in _ATTEMPT_TRANSITIONS[self.status]

    @property
    def is_terminal(self) -> bool:
        return not _ATTEMPT_TRANSITIONS[self.status]


class CallRecord(BaseModel):
    """Projected call-history row used by the reporting jobs."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:16])
    tenant_id: str
    started_at: datetime
    duration_seconds: float = 0
    cost: float = 0
    ended_reason: Optional[str] = None
    success_evaluation: Optional[bool] = None
    summary: str = ""
    transcript: str = ""
    recording_url: str = ""
    call_type: str = ""
    phone_number: str = ""
    customer_name: str = ""
    customer_number: str = ""
    assistant_id: str = ""
    assistant_name: str = ""


# ──────────────────────────────────────────────────────────────
#  Queue snapshots
# ──────────────────────────────────────────────────────────────

class QueueCounts(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False


class QueueStats(BaseModel):
    call_queue: QueueCounts = Field(default_factory=QueueCounts)
    email_queue: QueueCounts = Field(default_factory=QueueCounts)
    scheduler_queue: QueueCounts = Field(default_factory=QueueCounts)

    def as_dict(self) -> dict[str, Any]:
        return {
            "callQueue": self.call_queue.model_dump(),
            "emailQueue": self.email_queue.model_dump(),
            "schedulerQueue": self.scheduler_queue.model_dump(),
        }
