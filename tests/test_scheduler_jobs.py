"""
Tests for the scheduler processor.

Covers:
  - Daily report: stats, artifacts, one queued email; no-activity email
  - Weekly/monthly reports with and without calls
  - Global report jobs fanning out per tenant
  - Failure alerts, cleanup, health checks
"""
import pytest
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

from job_queue.message_queue import JobState
from models.schemas import (
    CallRecord, EmailJobData, EmailJobType, QueueCounts, QueueStats,
    SchedulerJobData, SchedulerJobMetadata, SchedulerJobType, Tenant,
)
from tests.conftest import MONDAY_10AM


def call(hours_ago: float, duration: float, ended_reason: str, success: bool = True,
         tenant_id: str = "tenant_1", assistant: str = "Collector") -> CallRecord:
    return CallRecord(
        tenant_id=tenant_id,
        started_at=MONDAY_10AM - timedelta(hours=hours_ago),
        duration_seconds=duration,
        cost=0.25,
        ended_reason=ended_reason,
        success_evaluation=success,
        customer_name="Ravi",
        customer_number="+15551234567",
        assistant_id="asst_1",
        assistant_name=assistant,
    )


THREE_CALLS = [
    call(1, 45, "customer-ended-call"),
    call(2, 30, "voicemail"),
    call(3, 5, "customer-ended-call"),
]


async def queued_emails(orchestrator) -> list[EmailJobData]:
    jobs = await orchestrator.email_queue.get_jobs(JobState.WAITING)
    return [EmailJobData.model_validate(j.data) for j in jobs]


async def run_scheduler_job(orchestrator, data: SchedulerJobData):
    await orchestrator.add_scheduler_job(data)
    job = await orchestrator.scheduler_queue.next_job()
    return await orchestrator.scheduler_processor(job)


class TestDailyReport:
    @pytest.mark.asyncio
    async def test_three_call_scenario(self, orchestrator, store):
        await store.add_call_records(THREE_CALLS)

        result = await orchestrator.scheduler_processor.daily_report("tenant_1")

        assert result["total_calls"] == 3
        assert result["successful_calls"] == 1
        assert result["success_rate"] == 33.3
        assert result["reports_generated"] == 2

        emails = await queued_emails(orchestrator)
        assert len(emails) == 1
        email = emails[0]
        assert email.type == EmailJobType.DAILY_REPORT
        assert email.to == ["reports@example.com"]
        assert "33.33% Success Rate" in email.subject
        assert email.metadata.cleanup is True
        assert email.metadata.total_calls == 3
        assert len(email.file_paths) == 2
        assert all(Path(p).exists() for p in email.file_paths)

    @pytest.mark.asyncio
    async def test_only_calls_inside_last_24_hours(self, orchestrator, store):
        await store.add_call_records([call(1, 45, "customer-ended-call"), call(30, 45, "customer-ended-call")])

        result = await orchestrator.scheduler_processor.daily_report("tenant_1")

        assert result["total_calls"] == 1

    @pytest.mark.asyncio
    async def test_no_successful_calls_single_artifact(self, orchestrator, store):
        await store.add_call_records([call(1, 5, "customer-ended-call")])

        result = await orchestrator.scheduler_processor.daily_report("tenant_1")

        assert result["reports_generated"] == 1

    @pytest.mark.asyncio
    async def test_no_activity_email(self, orchestrator):
        result = await orchestrator.scheduler_processor.daily_report("tenant_1")

        assert result["total_calls"] == 0
        emails = await queued_emails(orchestrator)
        assert len(emails) == 1
        assert "No Calls" in emails[0].subject
        assert emails[0].file_paths == []
        assert emails[0].metadata.cleanup is False

    @pytest.mark.asyncio
    async def test_other_tenants_calls_excluded(self, orchestrator, store):
        await store.add_call_records([call(1, 45, "customer-ended-call", tenant_id="tenant_2")])
        result = await orchestrator.scheduler_processor.daily_report("tenant_1")
        assert result["total_calls"] == 0


class TestPeriodReports:
    @pytest.mark.asyncio
    async def test_weekly_report_with_calls(self, orchestrator, store):
        await store.add_call_records([
            call(24 * 2, 45, "customer-ended-call"),
            call(24 * 3, 20, "customer-ended-call", success=False),
            call(24 * 10, 60, "customer-ended-call"),
        ])

        result = await orchestrator.scheduler_processor.period_report("weekly", "tenant_1")

        assert result["total_calls"] == 2
        assert result["successful_calls"] == 1
        assert result["reports_generated"] == 2
        email = (await queued_emails(orchestrator))[0]
        assert email.type == EmailJobType.WEEKLY_REPORT
        assert email.subject.startswith("Weekly Call Report")
        assert "Daily Breakdown" in email.html

    @pytest.mark.asyncio
    async def test_monthly_report_without_calls_still_emails(self, orchestrator):
        result = await orchestrator.scheduler_processor.period_report("monthly", "tenant_1")

        assert result["total_calls"] == 0
        assert result["reports_generated"] == 0
        email = (await queued_emails(orchestrator))[0]
        assert email.type == EmailJobType.MONTHLY_REPORT
        assert email.file_paths == []
        assert email.metadata.cleanup is False

    @pytest.mark.asyncio
    async def test_monthly_report_groups_by_iso_week(self, orchestrator, store):
        await store.add_call_records([call(24 * 1, 45, "x"), call(24 * 9, 45, "x")])

        await orchestrator.scheduler_processor.period_report("monthly", "tenant_1")

        email = (await queued_emails(orchestrator))[0]
        assert "Weekly Breakdown" in email.html
        assert "2026-W42" in email.html
        assert "2026-W41" in email.html


class TestDispatchByType:
    @pytest.mark.asyncio
    async def test_global_report_fans_out_per_tenant(self, orchestrator, store):
        await store.upsert_tenant(Tenant(id="tenant_2"))

        result = await run_scheduler_job(orchestrator, SchedulerJobData(type=SchedulerJobType.DAILY_REPORT))

        assert result["tenants"] == 2
        waiting = await orchestrator.scheduler_queue.get_jobs(JobState.WAITING)
        tenants = sorted(j.data["metadata"]["tenant_id"] for j in waiting)
        assert tenants == ["tenant_1", "tenant_2"]
        assert await queued_emails(orchestrator) == []

    @pytest.mark.asyncio
    async def test_tenant_report_job(self, orchestrator, store):
        await store.add_call_records(THREE_CALLS)
        data = SchedulerJobData(type=SchedulerJobType.DAILY_REPORT,
                                metadata=SchedulerJobMetadata(tenant_id="tenant_1"))

        result = await run_scheduler_job(orchestrator, data)

        assert result["successful_calls"] == 1

    @pytest.mark.asyncio
    async def test_report_failure_queues_admin_alert(self, orchestrator, store, monkeypatch):
        monkeypatch.setattr(store, "fetch_call_history", AsyncMock(side_effect=RuntimeError("db timeout")))
        data = SchedulerJobData(type=SchedulerJobType.WEEKLY_REPORT,
                                metadata=SchedulerJobMetadata(tenant_id="tenant_1"))

        with pytest.raises(RuntimeError):
            await run_scheduler_job(orchestrator, data)

        emails = await queued_emails(orchestrator)
        assert len(emails) == 1
        assert emails[0].type == EmailJobType.ALERT
        assert emails[0].to == ["admin@example.com"]
        assert "db timeout" in emails[0].html


class TestCleanup:
    @pytest.mark.asyncio
    async def test_deletes_old_history_and_queue_entries(self, orchestrator, store):
        await store.add_call_records([call(24 * 40, 45, "x"), call(1, 45, "x")])
        await orchestrator.call_queue.add("make-call", {})
        job = await orchestrator.call_queue.next_job()
        await orchestrator.call_queue.complete(job)
        job.finished_at -= 25 * 60 * 60 * 1000

        result = await orchestrator.scheduler_processor.cleanup()

        assert result["records_deleted"] == 1
        assert result["queue_entries_removed"] == 1
        assert len(await store.fetch_call_history(
            "tenant_1", MONDAY_10AM - timedelta(days=60), MONDAY_10AM)) == 1


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy_sends_nothing(self, orchestrator):
        report = await orchestrator.scheduler_processor.health_check()

        assert report["alerts"] == []
        assert report["database"] == "connected"
        assert await queued_emails(orchestrator) == []

    @pytest.mark.asyncio
    async def test_thresholds_raise_one_alert_email(self, orchestrator, monkeypatch):
        stats = QueueStats(call_queue=QueueCounts(active=15, failed=60))
        monkeypatch.setattr(orchestrator, "stats", AsyncMock(return_value=stats))

        report = await orchestrator.scheduler_processor.health_check()

        assert report["alerts"] == [
            "High number of active jobs detected",
            "High number of failed call jobs",
        ]
        emails = await queued_emails(orchestrator)
        assert len(emails) == 1
        assert emails[0].subject == "System Health Alert"
        assert emails[0].type == EmailJobType.ALERT
        assert emails[0].metadata.cleanup is False

    @pytest.mark.asyncio
    async def test_thresholds_are_exclusive(self, orchestrator, monkeypatch):
        stats = QueueStats(call_queue=QueueCounts(active=10, failed=50))
        monkeypatch.setattr(orchestrator, "stats", AsyncMock(return_value=stats))

        report = await orchestrator.scheduler_processor.health_check()

        assert report["alerts"] == []

    @pytest.mark.asyncio
    async def test_database_down(self, orchestrator, store):
        store.available = False

        report = await orchestrator.scheduler_processor.health_check()

        assert report["database"] == "disconnected"
        assert report["alerts"] == ["Database connectivity issues"]
        assert len(await queued_emails(orchestrator)) == 1
