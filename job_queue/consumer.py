"""
Queue Worker — Leases jobs from one named queue and runs a processor on them.

Runs as ``concurrency`` async tasks inside the application process. For
horizontal scaling, run more processes against the same Redis queue; the
lease (ZPOPMIN) hands each job to exactly one worker.

Topology:
  ┌──────────────┐      ┌─────────────────┐      ┌────────────┐
  │ API / cron   │─add─▶│ waiting (zset)   │─────▶│ Worker(s)  │
  └──────────────┘      └─────────────────┘      └─────┬──────┘
                                ▲ promote              │
                        ┌───────┴─────────┐            │
                        │ delayed (zset)   │◀─ retry ──┤
                        └─────────────────┘            │
                        ┌─────────────────┐            │
                        │ failed           │◀─ exhaust ┘
                        └─────────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional

from job_queue.message_queue import JobQueue, JobState, QueueJob, UnrecoverableError

logger = structlog.get_logger()

Processor = Callable[[QueueJob], Awaitable[Any]]
CompletedHook = Callable[[QueueJob, Any], Any]
FailedHook = Callable[[QueueJob, Exception, JobState], Any]


def is_retryable(exc: Exception) -> bool:
    """Errors opt out of retry by subclassing UnrecoverableError or setting retryable=False."""
    if isinstance(exc, UnrecoverableError):
        return False
    return bool(getattr(exc, "retryable", True))


class QueueWorker:
    """
    Consumes jobs from a single queue with bounded concurrency.

    Usage:
        worker = QueueWorker(queue, processor, concurrency=5)
        await worker.start()             # returns immediately, runs as tasks
        await worker.close(grace=30)     # waits for in-flight jobs
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        concurrency: int = 1,
        poll_interval: float = 0.5,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._paused = False
        self._in_flight = 0
        self._completed_hooks: list[CompletedHook] = []
        self._failed_hooks: list[FailedHook] = []

    @property
    def name(self) -> str:
        return self.queue.name

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def on_completed(self, hook: CompletedHook) -> None:
        self._completed_hooks.append(hook)

    def on_failed(self, hook: FailedHook) -> None:
        self._failed_hooks.append(hook)

    def clear_hooks(self) -> None:
        self._completed_hooks.clear()
        self._failed_hooks.clear()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._paused = False
        for i in range(self.concurrency):
            self._tasks.append(asyncio.create_task(self._run(i)))
        logger.info("queue_worker_started", queue=self.name, concurrency=self.concurrency)

    def pause(self) -> None:
        """Stop leasing new jobs; in-flight jobs finish normally."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    async def close(self, grace: float = 30.0) -> None:
        """Stop leasing, wait up to ``grace`` seconds for in-flight jobs, then cancel."""
        if not self._tasks:
            self._running = False
            return
        self._running = False
        done, pending = await asyncio.wait(self._tasks, timeout=grace)
        if pending:
            logger.warning("queue_worker_grace_expired", queue=self.name,
                           in_flight=self._in_flight)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        logger.info("queue_worker_stopped", queue=self.name)

    async def _run(self, slot: int) -> None:
        while self._running:
            if self._paused:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                job = await self.process_next()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("queue_worker_lease_error", queue=self.name,
                             slot=slot, error=str(e))
                job = None
            if job is None:
                await asyncio.sleep(self.poll_interval)

    async def process_next(self) -> Optional[QueueJob]:
        """Lease and process one job. Returns the job, or None when nothing was ready."""
        job = await self.queue.next_job()
        if job is None:
            return None
        await self.process(job)
        return job

    async def process(self, job: QueueJob) -> None:
        self._in_flight += 1
        logger.info("processing_job", queue=self.name, job_id=job.job_id,
                    job_name=job.name, attempt=job.attempts_made + 1)
        try:
            result = await self.processor(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            retryable = is_retryable(e)
            state = await self.queue.fail(job, str(e), retryable=retryable)
            logger.error("job_failed", queue=self.name, job_id=job.job_id,
                         error=str(e), error_type=type(e).__name__,
                         retryable=retryable, next_state=state.value,
                         attempts_made=job.attempts_made)
            await self._notify(self._failed_hooks, job, e, state)
        else:
            await self.queue.complete(job, result)
            logger.info("job_completed", queue=self.name, job_id=job.job_id)
            await self._notify(self._completed_hooks, job, result)
        finally:
            self._in_flight -= 1

    async def _notify(self, hooks: list, *args) -> None:
        for hook in hooks:
            try:
                outcome = hook(*args)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.error("queue_worker_hook_error", queue=self.name, error=str(e))
