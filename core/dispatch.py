"""
Call Dispatch — processes one call-queue job.

  queued ─▶ window-check ─▶ availability-check ─▶ attempting ─▶ completed
                │                   │                   │
                ▼                   ▼                   ├─▶ failed (retryable)
           rescheduled          delayed (busy)          └─▶ failed (permanent)

Rescheduled and delayed jobs are re-enqueued as new jobs and the current job
completes; neither writes an attempt record or consumes a retry. Attempts
write exactly one CallAttemptRecord, created before the external call and
resolved once afterwards.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from channels.voice_service import VoiceService, validate_telephony_credentials
from core.errors import PermanentFailure, TenantNotFound, Throttled, classify
from core.schedule import active_slot_for, next_slot_for
from database.store_base import BaseCallStore
from job_queue.message_queue import QueueJob
from models.schemas import (
    AttemptStatus, CallAttemptRecord, CallJobData, DispatchOutcome, Tenant,
)

logger = structlog.get_logger()

# (data, priority, delay_ms) → new job
Requeue = Callable[[CallJobData, float, int], Awaitable[QueueJob]]


class CallProcessor:
    """
    Runs on the call queue with concurrency 1, so every window check,
    busy probe and attempt is serialized across all tenants.
    """

    def __init__(
        self,
        store: BaseCallStore,
        voice: VoiceService,
        requeue: Requeue,
        busy_retry_delay_ms: int = 15000,
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.voice = voice
        self.requeue = requeue
        self.busy_retry_delay_ms = busy_retry_delay_ms
        self.tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))

    def now(self) -> datetime:
        # call windows are wall-clock times in the configured zone
        return self._clock().astimezone(self.tz)

    async def __call__(self, job: QueueJob) -> dict[str, Any]:
        return await self.process(job)

    async def process(self, job: QueueJob) -> dict[str, Any]:
        data = CallJobData.model_validate(job.data)
        log = logger.bind(job_id=job.job_id, tenant_id=data.tenant_id,
                          assistant_id=data.assistant_id, contact=data.contact.name)

        tenant = await self.store.get_tenant(data.tenant_id)
        if tenant is None:
            raise TenantNotFound(data.tenant_id)
        validate_telephony_credentials(tenant)

        previous = await self.store.find_initiated_attempt(job.job_id)
        if previous is not None:
            log.warning("call_redelivered_already_initiated", attempt_id=previous.id)
            return {"status": DispatchOutcome.DUPLICATE.value, "attempt_id": previous.id}

        now = self.now()
        try:
            if active_slot_for(tenant.weekly_schedule, data.assistant_id, now) is None:
                raise self._outside_window(job, data, tenant, now)
            if await self.voice.is_busy():
                raise Throttled("Voice service busy", delay_ms=self.busy_retry_delay_ms,
                                reason="voice_service_busy")
        except Throttled as throttled:
            return await self._requeue(job, data, throttled)

        return await self._attempt(job, data, tenant)

    def _outside_window(self, job: QueueJob, data: CallJobData, tenant: Tenant, now: datetime) -> Throttled:
        nxt = next_slot_for(tenant.weekly_schedule, data.assistant_id, now)
        if nxt is None:
            logger.warning("call_no_window", job_id=job.job_id, tenant_id=tenant.id,
                           assistant_id=data.assistant_id)
            raise PermanentFailure(f"No call window for assistant {data.assistant_id}")
        logger.info("call_outside_window", job_id=job.job_id, tenant_id=tenant.id,
                    next_day=nxt.day, next_slot=nxt.name)
        return Throttled(f"Outside call hours for assistant {data.assistant_id}",
                         delay_ms=nxt.delay_ms(now), reason="outside_call_hours",
                         next_slot=nxt.starts_at)

    async def _requeue(self, job: QueueJob, data: CallJobData, throttled: Throttled) -> dict[str, Any]:
        """A throttled job completes and continues as a new delayed job, costing no retry."""
        if throttled.next_slot is None:
            new_job = await self.requeue(data, job.priority, throttled.delay_ms)
            logger.info("call_delayed_voice_busy", job_id=job.job_id, new_job_id=new_job.job_id,
                        delay_ms=throttled.delay_ms)
            return {"status": DispatchOutcome.DELAYED.value, "reason": throttled.reason,
                    "new_job_id": new_job.job_id}

        rescheduled = data.model_copy(deep=True)
        rescheduled.metadata.rescheduled_from = job.job_id
        rescheduled.metadata.reschedule_reason = throttled.reason
        new_job = await self.requeue(rescheduled, job.priority, throttled.delay_ms)

        logger.info("call_rescheduled", job_id=job.job_id, new_job_id=new_job.job_id,
                    tenant_id=data.tenant_id, starts_at=throttled.next_slot.isoformat(),
                    delay_ms=throttled.delay_ms)
        return {
            "status": DispatchOutcome.RESCHEDULED.value,
            "reason": throttled.reason,
            "new_job_id": new_job.job_id,
            "delay_ms": throttled.delay_ms,
            "next_slot": throttled.next_slot.isoformat(),
        }

    async def _attempt(self, job: QueueJob, data: CallJobData, tenant: Tenant) -> dict[str, Any]:
        attempt = await self.store.create_attempt(CallAttemptRecord(
            tenant_id=data.tenant_id,
            assistant_id=data.assistant_id,
            contact_name=data.contact.name,
            contact_number=data.contact.number,
            job_id=job.job_id,
        ))

        try:
            call = await self.voice.place_call(tenant, data.contact, data.assistant_id)
        except Exception as e:
            error = classify(e)
            await self.store.update_attempt(attempt.id, AttemptStatus.FAILED, reason=str(e) or type(e).__name__)
            logger.error("call_attempt_failed", job_id=job.job_id, attempt_id=attempt.id,
                         error=str(e), retryable=error.retryable)
            if error is e:
                raise
            raise error from e

        await self.store.update_attempt(attempt.id, AttemptStatus.INITIATED)
        logger.info("call_initiated", job_id=job.job_id, attempt_id=attempt.id,
                    call_id=call.get("id"), contact=data.contact.name)
        return {
            "status": DispatchOutcome.COMPLETED.value,
            "attempt_id": attempt.id,
            "call_id": call.get("id"),
            "contact": data.contact.model_dump(),
        }
