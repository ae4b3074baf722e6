"""Shared test fixtures for DialQueue."""
import pytest
from datetime import datetime, timezone
from typing import Any

from channels.email_sender import LoggingEmailSender
from channels.voice_service import VoiceService
from config.settings import Settings
from core.orchestrator import QueueOrchestrator
from database.store_memory import InMemoryCallStore
from models.schemas import CallContact, ScheduleSlot, TelephonyConfig, Tenant

# 2026-10-19 is a Monday
MONDAY_10AM = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeVoiceService(VoiceService):
    """Records placed calls; ``busy`` and ``fail_with`` drive the outcome."""

    def __init__(self):
        self.busy = False
        self.fail_with: Exception = None
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def is_busy(self) -> bool:
        return self.busy

    async def place_call(self, tenant: Tenant, contact: CallContact, assistant_id: str) -> dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        call = {"id": f"call_{len(self.calls) + 1}", "status": "queued",
                "tenant_id": tenant.id, "number": contact.number, "assistant_id": assistant_id}
        self.calls.append(call)
        return call

    async def close(self) -> None:
        self.closed = True


def slot(assistant_id: str, start: str, end: str) -> ScheduleSlot:
    return ScheduleSlot(assistantId=assistant_id, callTimeStart=start, callTimeEnd=end)


@pytest.fixture
def weekly_schedule():
    return {
        "monday": {
            "morning": slot("asst_1", "09:00", "12:00"),
            "afternoon": slot("asst_1", "14:00", "17:00"),
        },
        "wednesday": {
            "morning": slot("asst_1", "10:00", "11:00"),
        },
    }


@pytest.fixture
def tenant(weekly_schedule) -> Tenant:
    return Tenant(
        id="tenant_1",
        name="Acme Collections",
        telephony=TelephonyConfig(sid="AC123", authToken="secret", phoneNumber="+15550001111"),
        weekly_schedule=weekly_schedule,
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = Settings()
    s.queue.backend = "memory"
    s.queue.poll_interval = 0.01
    s.queue.shutdown_grace_seconds = 1.0
    s.database.store_backend = "memory"
    s.email.report_recipients = ["reports@example.com"]
    s.email.admin_recipients = ["admin@example.com"]
    s.scheduler.reports_dir = str(tmp_path / "reports")
    return s


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY_10AM)


@pytest.fixture
def voice() -> FakeVoiceService:
    return FakeVoiceService()


@pytest.fixture
def email_sender() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture
def store(tenant) -> InMemoryCallStore:
    s = InMemoryCallStore()
    s._tenants[tenant.id] = tenant
    return s


@pytest.fixture
def orchestrator(settings, store, voice, email_sender, clock) -> QueueOrchestrator:
    return QueueOrchestrator(settings, store=store, voice=voice,
                             email_sender=email_sender, clock=clock)
