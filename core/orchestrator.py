"""
Queue Orchestrator — owns the three queues, their worker pools and lifecycle.

  call-queue       concurrency 1   CallProcessor
  email-queue      concurrency 5   EmailProcessor
  scheduler-queue  concurrency 2   SchedulerProcessor

One instance per process, constructed explicitly at startup and passed to
the HTTP layer. ``start()`` is idempotent; ``shutdown()`` runs its ordered
teardown once, logging and continuing past any step that fails.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError

from channels.email_sender import EmailSender, create_email_sender
from channels.voice_service import VoiceService, create_voice_service, validate_telephony_credentials
from config.settings import Settings, get_settings
from core.dispatch import CallProcessor
from core.email_jobs import EmailProcessor, discard_job_files
from core.errors import ConfigError, TenantNotFound
from core.scheduler_jobs import SchedulerProcessor
from database.store_base import BaseCallStore
from database.store_factory import create_store
from job_queue.consumer import QueueWorker
from job_queue.message_queue import (
    JobOptions, JobQueue, JobState, QueueJob, Queues,
    create_job_queue, create_redis_client, validate_cron,
)
from models.schemas import (
    CallContact, CallJobData, CallJobMetadata, EmailJobData, QueueCounts, QueueStats,
    SchedulerJobData, SchedulerJobMetadata, SchedulerJobType,
)

logger = structlog.get_logger()

_QUEUE_ALIASES = {
    "call": Queues.CALL, Queues.CALL: Queues.CALL,
    "email": Queues.EMAIL, Queues.EMAIL: Queues.EMAIL,
    "scheduler": Queues.SCHEDULER, Queues.SCHEDULER: Queues.SCHEDULER,
}

REPORT_TYPES = ("daily", "weekly", "monthly")

# one call in flight serializes window checks, busy probes and attempts for all tenants
CALL_CONCURRENCY = 1


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueueOrchestrator:

    def __init__(
        self,
        settings: Settings = None,
        store: BaseCallStore = None,
        voice: VoiceService = None,
        email_sender: EmailSender = None,
        redis=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        qcfg = self.settings.queue
        self.store = store or create_store(asdict(self.settings.database))
        self.voice = voice or create_voice_service(self.settings.voice)
        self.email_sender = email_sender or create_email_sender(self.settings.email)

        self._redis = redis
        if qcfg.backend == "redis" and self._redis is None:
            self._redis = create_redis_client(qcfg.redis_url)

        default_opts = JobOptions(attempts=qcfg.attempts, backoff_ms=qcfg.backoff_base_ms)
        self.call_queue = self._make_queue(Queues.CALL, default_opts)
        self.email_queue = self._make_queue(Queues.EMAIL, default_opts)
        self.scheduler_queue = self._make_queue(Queues.SCHEDULER, default_opts)

        self.call_processor = CallProcessor(
            store=self.store,
            voice=self.voice,
            requeue=self.enqueue_call,
            busy_retry_delay_ms=qcfg.busy_retry_delay_ms,
            timezone=self.settings.timezone,
            clock=clock,
        )
        self.email_processor = EmailProcessor(self.email_sender)
        self.scheduler_processor = SchedulerProcessor(self, clock=clock)

        self.workers: dict[str, QueueWorker] = {}
        self._started = False
        self._shutdown_started = False
        self._shutdown_task: Optional[asyncio.Task] = None
        self._start_lock = asyncio.Lock()

    def _make_queue(self, name: str, default_opts: JobOptions) -> JobQueue:
        return create_job_queue(
            name,
            {"backend": self.settings.queue.backend},
            redis=self._redis,
            default_opts=default_opts,
            tz=self.settings.timezone,
        )

    @property
    def queues(self) -> dict[str, JobQueue]:
        return {
            Queues.CALL: self.call_queue,
            Queues.EMAIL: self.email_queue,
            Queues.SCHEDULER: self.scheduler_queue,
        }

    def get_queue(self, name: str) -> JobQueue:
        try:
            return self.queues[_QUEUE_ALIASES[name]]
        except KeyError:
            raise KeyError(f"Unknown queue: {name}") from None

    @property
    def started(self) -> bool:
        return self._started

    # ══════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ══════════════════════════════════════════════════════════

    async def start(self, schedule_defaults: bool = True) -> None:
        """Start worker pools and register the default cron jobs. Safe to call twice."""
        async with self._start_lock:
            if self._started:
                return
            if self._shutdown_started:
                raise RuntimeError("Orchestrator has been shut down")

            await self.store.initialize()
            qcfg = self.settings.queue
            pools = [
                (self.call_queue, self.call_processor, CALL_CONCURRENCY),
                (self.email_queue, self.email_processor, qcfg.email_concurrency),
                (self.scheduler_queue, self.scheduler_processor, qcfg.scheduler_concurrency),
            ]
            for queue, processor, concurrency in pools:
                worker = QueueWorker(queue, processor, concurrency=concurrency,
                                     poll_interval=qcfg.poll_interval)
                worker.on_completed(self._log_completed)
                worker.on_failed(self._log_failed)
                self.workers[queue.name] = worker

            if schedule_defaults:
                await self.schedule_default_jobs()
            for worker in self.workers.values():
                await worker.start()
            self._started = True
            logger.info("orchestrator_started", backend=qcfg.backend,
                        queues=list(self.workers))

    def _log_completed(self, job: QueueJob, result: Any) -> None:
        status = result.get("status") if isinstance(result, dict) else None
        logger.info("queue_job_completed", queue=job.queue, job_id=job.job_id,
                    job_name=job.name, status=status)

    def _log_failed(self, job: QueueJob, error: Exception, state: JobState) -> None:
        logger.error("queue_job_failed", queue=job.queue, job_id=job.job_id,
                     job_name=job.name, error=str(error), attempts_made=job.attempts_made,
                     will_retry=state == JobState.DELAYED)

    async def shutdown(self) -> None:
        """Ordered teardown; runs once, every step attempted even if one fails."""
        if self._shutdown_started:
            return
        self._shutdown_started = True
        logger.info("orchestrator_shutting_down")
        grace = self.settings.queue.shutdown_grace_seconds

        async def stop_leasing():
            for worker in self.workers.values():
                worker.pause()

        async def close_workers():
            await asyncio.gather(*(w.close(grace) for w in self.workers.values()))

        async def close_observers():
            for worker in self.workers.values():
                worker.clear_hooks()

        async def close_queues():
            for queue in self.queues.values():
                await queue.close()

        async def close_broker():
            if self._redis is not None:
                await self._redis.aclose()

        steps = [
            ("stop_leasing", stop_leasing),
            ("close_workers", close_workers),
            ("close_observers", close_observers),
            ("close_queues", close_queues),
            ("close_broker", close_broker),
            ("close_voice", self.voice.close),
            ("close_email", self.email_sender.close),
            ("close_store", self.store.close),
        ]
        for name, step in steps:
            try:
                await step()
                logger.info("shutdown_step_done", step=name)
            except Exception as e:
                logger.error("shutdown_step_failed", step=name, error=str(e))
        self._started = False
        logger.info("orchestrator_shut_down")

    def install_loop_exception_handler(self, loop: asyncio.AbstractEventLoop) -> None:
        """Uncaught task errors trigger the same graceful shutdown as a stop signal."""

        def handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
            exc = context.get("exception")
            logger.error("unhandled_loop_exception", message=context.get("message"),
                         error=str(exc) if exc else None)
            if not self._shutdown_started and self._shutdown_task is None:
                self._shutdown_task = loop.create_task(self.shutdown())

        loop.set_exception_handler(handler)

    # ══════════════════════════════════════════════════════════
    #  ENQUEUE
    # ══════════════════════════════════════════════════════════

    async def enqueue_call(
        self, data: CallJobData, priority: Optional[float] = None, delay_ms: Optional[int] = None,
    ) -> QueueJob:
        if not data.metadata.queued_at:
            data.metadata.queued_at = _utcnow_iso()
        return await self.call_queue.add("make-call", data.model_dump(mode="json"), {
            "priority": data.priority if priority is None else priority,
            "delay_ms": data.delay_ms if delay_ms is None else delay_ms,
        })

    async def enqueue_calls_bulk(
        self,
        tenant_id: str,
        assistant_id: str,
        contacts: list[dict[str, Any]],
        priority: float = 1,
        delay_ms: int = 0,
        source: str = "api",
    ) -> tuple[list[QueueJob], int]:
        """
        Validate and enqueue a batch in submission order.

        Contact i gets priority + i*step and delay + i*stagger. Malformed
        contacts are skipped; returns (jobs, skipped_count).
        """
        if not assistant_id:
            raise ConfigError("assistantId is required")
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        validate_telephony_credentials(tenant)

        valid: list[CallContact] = []
        for raw in contacts:
            try:
                valid.append(CallContact.model_validate(raw))
            except (ValidationError, TypeError):
                logger.warning("bulk_contact_skipped", tenant_id=tenant_id, contact=str(raw)[:100])
        if not valid:
            raise ConfigError("No valid contacts provided")

        qcfg = self.settings.queue
        queued_at = _utcnow_iso()
        batch = []
        for i, contact in enumerate(valid):
            job_priority = round(priority + i * qcfg.bulk_priority_step, 6)
            job_delay = delay_ms + i * qcfg.bulk_stagger_ms
            data = CallJobData(
                tenant_id=tenant_id,
                assistant_id=assistant_id,
                contact=contact,
                priority=job_priority,
                delay_ms=job_delay,
                metadata=CallJobMetadata(source=source, queued_at=queued_at),
            )
            batch.append(("make-call", data.model_dump(mode="json"),
                          {"priority": job_priority, "delay_ms": job_delay}))

        jobs = await self.call_queue.add_bulk(batch)
        logger.info("calls_enqueued", tenant_id=tenant_id, assistant_id=assistant_id,
                    count=len(jobs), skipped=len(contacts) - len(valid))
        return jobs, len(contacts) - len(valid)

    async def enqueue_email(self, data: EmailJobData, delay_ms: int = 0) -> QueueJob:
        return await self.email_queue.add("send-email", data.model_dump(mode="json"),
                                          {"delay_ms": delay_ms})

    async def add_scheduler_job(self, data: SchedulerJobData, delay_ms: int = 0) -> QueueJob:
        """One-off scheduler job (per-tenant fan-out, manual runs)."""
        return await self.scheduler_queue.add(data.type.value, data.model_dump(mode="json"),
                                              {"delay_ms": delay_ms})

    async def enqueue_recurring(
        self, name: str, data: SchedulerJobData, cron: str, priority: float = 1,
    ) -> QueueJob:
        try:
            validate_cron(cron)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        return await self.scheduler_queue.add(name, data.model_dump(mode="json"),
                                              {"repeat_cron": cron, "priority": priority})

    async def schedule_default_jobs(self) -> list[QueueJob]:
        cfg = self.settings.scheduler
        defaults = [
            ("daily-report", SchedulerJobType.DAILY_REPORT, cfg.daily_report_cron, 1),
            ("weekly-report", SchedulerJobType.WEEKLY_REPORT, cfg.weekly_report_cron, 2),
            ("monthly-report", SchedulerJobType.MONTHLY_REPORT, cfg.monthly_report_cron, 3),
            ("daily-cleanup", SchedulerJobType.CLEANUP, cfg.cleanup_cron, 5),
            ("health-check", SchedulerJobType.HEALTH_CHECK, cfg.health_check_cron, 10),
        ]
        jobs = []
        for name, job_type, cron, priority in defaults:
            jobs.append(await self.enqueue_recurring(name, SchedulerJobData(type=job_type), cron, priority))
        logger.info("default_jobs_scheduled", count=len(jobs))
        return jobs

    async def schedule_report(self, tenant_id: str, report_type: str, cron: str) -> QueueJob:
        if report_type not in REPORT_TYPES:
            raise ConfigError(f"Unknown report type: {report_type}")
        if await self.store.get_tenant(tenant_id) is None:
            raise TenantNotFound(tenant_id)
        data = SchedulerJobData(
            type=SchedulerJobType(f"{report_type}_report"),
            metadata=SchedulerJobMetadata(tenant_id=tenant_id, scheduled_by=tenant_id,
                                          scheduled_at=_utcnow_iso()),
        )
        return await self.enqueue_recurring(f"{report_type}-report-{tenant_id}", data, cron)

    # ══════════════════════════════════════════════════════════
    #  STATS & ADMIN
    # ══════════════════════════════════════════════════════════

    async def _counts(self, queue: JobQueue) -> QueueCounts:
        counts = await queue.get_counts()
        return QueueCounts(**counts, paused=await queue.is_paused())

    async def stats(self) -> QueueStats:
        call, email, scheduler = await asyncio.gather(
            self._counts(self.call_queue),
            self._counts(self.email_queue),
            self._counts(self.scheduler_queue),
        )
        return QueueStats(call_queue=call, email_queue=email, scheduler_queue=scheduler)

    async def pause_call_queue(self) -> None:
        await self.call_queue.pause()
        logger.info("call_queue_paused")

    async def resume_call_queue(self) -> None:
        await self.call_queue.resume()
        logger.info("call_queue_resumed")

    async def pause_all(self) -> None:
        for queue in self.queues.values():
            await queue.pause()
        logger.info("all_queues_paused")

    async def resume_all(self) -> None:
        for queue in self.queues.values():
            await queue.resume()
        logger.info("all_queues_resumed")

    async def cleanup(self) -> int:
        """Remove completed/failed entries older than the grace period, capped per queue."""
        qcfg = self.settings.queue
        removed = 0
        for queue in self.queues.values():
            removed += len(await queue.clean(qcfg.clean_grace_ms, qcfg.clean_limit))
        logger.info("queue_cleanup_completed", removed=removed)
        return removed

    async def clear_failed(self, queue_names: tuple[str, ...] = (Queues.CALL, Queues.EMAIL)) -> int:
        cleared = 0
        for name in queue_names:
            cleared += len(await self.get_queue(name).clean(0, 0, JobState.FAILED))
        logger.info("failed_jobs_cleared", count=cleared, queues=list(queue_names))
        return cleared

    async def failed_jobs(self, limit: int = 50) -> list[dict[str, Any]]:
        jobs: list[dict[str, Any]] = []
        for queue in (self.call_queue, self.email_queue):
            for job in await queue.get_jobs(JobState.FAILED, 0, limit):
                jobs.append(job.summary())
        return jobs

    async def retry_job(self, queue_name: str, job_id: str) -> QueueJob:
        job = await self.get_queue(queue_name).retry(job_id)
        logger.info("job_retried", queue=job.queue, job_id=job_id)
        return job

    async def remove_job(self, queue_name: str, job_id: str) -> bool:
        queue = self.get_queue(queue_name)
        job = await queue.get_job(job_id)
        removed = await queue.remove(job_id)
        if removed and queue is self.email_queue:
            # a job removed before its final attempt still owns its attachments
            discard_job_files(job)
        logger.info("job_removed", queue=queue_name, job_id=job_id, removed=removed)
        return removed

    async def health(self) -> dict[str, Any]:
        stats = await self.stats()
        try:
            db_ok = await self.store.ping()
        except Exception as e:
            logger.warning("health_store_probe_failed", error=str(e))
            db_ok = False

        def queue_view(counts: QueueCounts) -> dict[str, Any]:
            return {"status": "processing" if counts.active > 0 else "idle", **counts.model_dump()}

        return {
            "status": "ok",
            "timestamp": _utcnow_iso(),
            "database": "connected" if db_ok else "disconnected",
            "queues": {
                "call": queue_view(stats.call_queue),
                "email": queue_view(stats.email_queue),
                "scheduler": queue_view(stats.scheduler_queue),
            },
        }
