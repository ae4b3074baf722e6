"""
Scheduler Processor — recurring report and maintenance jobs.

Job types:
  daily_report / weekly_report / monthly_report
      query call history for the window → aggregate → write CSV artifacts →
      queue one report email. A job without a tenant id fans out one job per
      tenant so each tenant's report fails and retries on its own.
  cleanup
      sweep aged queue entries and delete call history past retention.
  health_check
      compare queue counts and store connectivity against thresholds and
      queue one alert email when anything is wrong.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from core.errors import ConfigError
from job_queue.message_queue import QueueJob
from models.schemas import (
    EmailJobData, EmailJobMetadata, EmailJobType, SchedulerJobData, SchedulerJobType,
)
from reports import content
from reports.stats import (
    date_range, flatten, generate_summary_stats, group_by_day, group_by_iso_week,
    is_successful_call, success_rate,
)
from reports.writer import write_advanced_report, write_call_sheet

logger = structlog.get_logger()

_REPORT_KINDS = {
    SchedulerJobType.DAILY_REPORT: ("daily", EmailJobType.DAILY_REPORT),
    SchedulerJobType.WEEKLY_REPORT: ("weekly", EmailJobType.WEEKLY_REPORT),
    SchedulerJobType.MONTHLY_REPORT: ("monthly", EmailJobType.MONTHLY_REPORT),
}


class SchedulerProcessor:

    def __init__(self, orchestrator, clock: Optional[Callable[[], datetime]] = None):
        # orchestrator: core.orchestrator.QueueOrchestrator
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def store(self):
        return self.orchestrator.store

    def now(self) -> datetime:
        return self._clock()

    async def __call__(self, job: QueueJob) -> dict[str, Any]:
        return await self.process(job)

    async def process(self, job: QueueJob) -> dict[str, Any]:
        data = SchedulerJobData.model_validate(job.data)
        logger.info("scheduler_job_processing", job_id=job.job_id, type=data.type.value,
                    tenant_id=data.metadata.tenant_id)
        try:
            if data.type in _REPORT_KINDS:
                return await self._report(job, data)
            if data.type == SchedulerJobType.CLEANUP:
                return await self.cleanup()
            if data.type == SchedulerJobType.HEALTH_CHECK:
                return await self.health_check()
            raise ConfigError(f"Unknown scheduler job type: {data.type}")
        except Exception as e:
            logger.error("scheduler_job_failed", job_id=job.job_id, type=data.type.value,
                         error=str(e))
            raise

    # ── Reports ───────────────────────────────────────────────

    async def _report(self, job: QueueJob, data: SchedulerJobData) -> dict[str, Any]:
        tenant_id = data.metadata.tenant_id
        if not tenant_id:
            return await self._fan_out(data)
        try:
            if data.type == SchedulerJobType.DAILY_REPORT:
                return await self.daily_report(tenant_id)
            kind, _ = _REPORT_KINDS[data.type]
            return await self.period_report(kind, tenant_id)
        except Exception as e:
            await self.queue_failure_alert(data.type.value, tenant_id, e)
            raise

    async def _fan_out(self, data: SchedulerJobData) -> dict[str, Any]:
        tenant_ids = await self.store.list_tenant_ids()
        for tenant_id in tenant_ids:
            per_tenant = data.model_copy(deep=True)
            per_tenant.metadata.tenant_id = tenant_id
            per_tenant.metadata.scheduled_by = "cron"
            await self.orchestrator.add_scheduler_job(per_tenant)
        logger.info("report_fanned_out", type=data.type.value, tenants=len(tenant_ids))
        return {"status": "completed", "type": data.type.value, "tenants": len(tenant_ids)}

    async def daily_report(self, tenant_id: str) -> dict[str, Any]:
        now = self.now()
        start, end = date_range("daily", now)
        calls = await self.store.fetch_call_history(tenant_id, start, end)
        recipients = self.settings.email.report_recipients

        if not calls:
            logger.info("daily_report_no_calls", tenant_id=tenant_id)
            subject, html = content.no_activity(tenant_id, now)
            await self.orchestrator.enqueue_email(EmailJobData(
                type=EmailJobType.DAILY_REPORT, to=recipients, subject=subject, html=html,
                metadata=EmailJobMetadata(cleanup=False, report_date=now.date().isoformat(),
                                          tenant_id=tenant_id, total_calls=0, successful_calls=0),
            ))
            return {"status": "completed", "tenant_id": tenant_id, "total_calls": 0,
                    "message": "No calls to report"}

        stats = generate_summary_stats(calls)
        successful = [c for c in calls if is_successful_call(c)]
        reports_dir = self.settings.scheduler.reports_dir
        file_paths = [write_advanced_report(calls, f"DailyReport_Comprehensive_{tenant_id}", reports_dir)]
        if successful:
            file_paths.append(write_advanced_report(
                successful, f"DailyReport_SuccessfulCalls_{tenant_id}", reports_dir))

        subject, html = content.daily_report(tenant_id, stats, now)
        await self.orchestrator.enqueue_email(EmailJobData(
            type=EmailJobType.DAILY_REPORT, to=recipients, subject=subject, html=html,
            file_paths=file_paths,
            metadata=EmailJobMetadata(cleanup=True, report_date=now.date().isoformat(),
                                      tenant_id=tenant_id, total_calls=stats.total_calls,
                                      successful_calls=stats.successful_calls),
        ))
        logger.info("daily_report_queued", tenant_id=tenant_id, total_calls=stats.total_calls,
                    successful_calls=stats.successful_calls)
        return {
            "status": "completed",
            "tenant_id": tenant_id,
            "total_calls": stats.total_calls,
            "successful_calls": stats.successful_calls,
            "success_rate": success_rate(stats.successful_calls, stats.total_calls, 1),
            "reports_generated": len(file_paths),
        }

    async def period_report(self, kind: str, tenant_id: str) -> dict[str, Any]:
        now = self.now()
        start, end = date_range(kind, now)
        calls = await self.store.fetch_call_history(tenant_id, start, end)
        groups = group_by_day(calls) if kind == "weekly" else group_by_iso_week(calls)
        all_calls = flatten(groups)
        stats = generate_summary_stats(all_calls)

        file_paths: list[str] = []
        if all_calls:
            reports_dir = self.settings.scheduler.reports_dir
            title = kind.capitalize()
            file_paths.append(write_call_sheet(all_calls, f"{title}Report_AllCalls_{tenant_id}", reports_dir))
            successful = [c for c in all_calls if is_successful_call(c)]
            if successful:
                file_paths.append(write_call_sheet(
                    successful, f"{title}Report_SuccessfulCalls_{tenant_id}", reports_dir))

        subject, html = content.period_report(kind, tenant_id, stats, groups, start, end)
        email_type = EmailJobType.WEEKLY_REPORT if kind == "weekly" else EmailJobType.MONTHLY_REPORT
        await self.orchestrator.enqueue_email(EmailJobData(
            type=email_type, to=self.settings.email.report_recipients,
            subject=subject, html=html, file_paths=file_paths,
            metadata=EmailJobMetadata(cleanup=bool(file_paths), report_date=now.date().isoformat(),
                                      tenant_id=tenant_id, total_calls=stats.total_calls,
                                      successful_calls=stats.successful_calls),
        ))
        logger.info("period_report_queued", kind=kind, tenant_id=tenant_id,
                    total_calls=stats.total_calls, groups=len(groups))
        return {
            "status": "completed",
            "tenant_id": tenant_id,
            "total_calls": stats.total_calls,
            "successful_calls": stats.successful_calls,
            "average_duration": stats.avg_duration_seconds,
            "total_cost": stats.total_cost,
            "reports_generated": len(file_paths),
        }

    async def queue_failure_alert(self, kind: str, tenant_id: Optional[str], error: Exception) -> None:
        try:
            subject, html = content.report_failure(kind, str(error), self.now(), tenant_id)
            await self.orchestrator.enqueue_email(EmailJobData(
                type=EmailJobType.ALERT, to=self.settings.email.admin_recipients,
                subject=subject, html=html,
                metadata=EmailJobMetadata(cleanup=False, tenant_id=tenant_id),
            ))
        except Exception as alert_error:
            logger.error("report_failure_alert_not_queued", kind=kind, tenant_id=tenant_id,
                         error=str(alert_error))

    # ── Maintenance ───────────────────────────────────────────

    async def cleanup(self) -> dict[str, Any]:
        swept = await self.orchestrator.cleanup()
        cutoff = self.now() - timedelta(days=self.settings.scheduler.retention_days)
        deleted = await self.store.delete_call_history_before(cutoff)
        logger.info("cleanup_completed", records_deleted=deleted, queue_entries_removed=swept)
        return {
            "status": "completed",
            "records_deleted": deleted,
            "queue_entries_removed": swept,
            "cutoff_date": cutoff.isoformat(),
        }

    async def health_check(self) -> dict[str, Any]:
        cfg = self.settings.scheduler
        stats = await self.orchestrator.stats()
        try:
            db_ok = await self.store.ping()
        except Exception as e:
            logger.warning("health_check_store_probe_failed", error=str(e))
            db_ok = False
        database = "connected" if db_ok else "disconnected"

        alerts: list[str] = []
        if stats.call_queue.active > cfg.stuck_active_threshold:
            alerts.append("High number of active jobs detected")
        if stats.call_queue.failed > cfg.failed_threshold:
            alerts.append("High number of failed call jobs")
        if not db_ok:
            alerts.append("Database connectivity issues")

        now = self.now()
        report = {
            "timestamp": now.isoformat(),
            "database": database,
            "queues": stats.as_dict(),
            "alerts": alerts,
        }
        logger.info("health_check_completed", database=database, alerts=alerts)

        if alerts:
            subject, html = content.health_alert(alerts, database, report["queues"], now)
            await self.orchestrator.enqueue_email(EmailJobData(
                type=EmailJobType.ALERT, to=self.settings.email.admin_recipients,
                subject=subject, html=html, metadata=EmailJobMetadata(cleanup=False),
            ))
        return report
