"""
Job Queue — Abstract interface with Redis and in-memory backends.

Each JobQueue instance is one named, durable queue (call-queue, email-queue,
scheduler-queue). Jobs move through:

    add ──▶ delayed ──(ready)──▶ waiting ──lease──▶ active ──▶ completed
                ▲                                      │
                └────── retry with backoff ◀───────────┤
                                                       └──▶ failed

Dequeue order within waiting: priority (lower first), then readiness,
then insertion order.

Job Schema:
  {
      "job_id":        unique job identifier,
      "queue":         queue name,
      "name":          job name ("make-call", "send-email", "daily-report"),
      "data":          JSON payload,
      "opts":          priority / delay_ms / attempts / backoff_ms / repeat_cron,
      "state":         waiting|active|completed|failed|delayed,
      "attempts_made": failed attempts so far,
      "ready_at":      epoch ms when the job may be leased,
      "repeat_key":    set for occurrences of a repeatable job,
  }
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import json
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

logger = structlog.get_logger()


def _now_ms() -> float:
    return time.time() * 1000


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class UnrecoverableError(Exception):
    """Raised by a processor when the job must fail without retry."""


class JobStateError(Exception):
    """An operation is not allowed for the job's current state."""


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


@dataclass
class JobOptions:
    priority: float = 1
    delay_ms: int = 0
    attempts: int = 3
    backoff_ms: int = 5000
    repeat_cron: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class QueueJob:
    """A unit of work on a queue."""
    queue: str
    name: str
    data: dict[str, Any]
    opts: JobOptions = field(default_factory=JobOptions)
    job_id: str = ""
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    seq: int = 0
    created_at: float = 0
    ready_at: float = 0
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None
    failed_reason: Optional[str] = None
    return_value: Any = None
    repeat_key: Optional[str] = None

    def __post_init__(self):
        if not self.job_id:
            self.job_id = self.opts.job_id or uuid.uuid4().hex[:12]
        if not self.created_at:
            self.created_at = _now_ms()
        if not self.ready_at:
            self.ready_at = self.created_at + max(0, self.opts.delay_ms)

    @property
    def priority(self) -> float:
        return self.opts.priority

    def backoff_delay_ms(self) -> int:
        """Exponential backoff for the attempt that just failed."""
        return int(self.opts.backoff_ms * (2 ** max(0, self.attempts_made - 1)))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["state"] = self.state.value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueJob:
        data = dict(data)  # copy
        data["opts"] = JobOptions(**data.get("opts", {}))
        data["state"] = JobState(data.get("state", JobState.WAITING.value))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def summary(self) -> dict[str, Any]:
        """Admin-view projection."""
        return {
            "id": self.job_id,
            "queue": self.queue,
            "name": self.name,
            "state": self.state.value,
            "attempts": self.attempts_made,
            "failedAt": self.finished_at if self.state == JobState.FAILED else None,
            "error": self.failed_reason,
            "data": self.data,
        }


@dataclass
class RepeatSpec:
    key: str
    name: str
    cron: str
    data: dict[str, Any]
    opts: JobOptions

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> RepeatSpec:
        d = json.loads(raw)
        d["opts"] = JobOptions(**d["opts"])
        return cls(**d)


# ──────────────────────────────────────────────────────────────
#  Queue Names
# ──────────────────────────────────────────────────────────────

class Queues:
    CALL = "call-queue"
    EMAIL = "email-queue"
    SCHEDULER = "scheduler-queue"


def next_fire_ms(cron: str, after_ms: float, tz: str = "UTC") -> float:
    """Epoch ms of the first cron occurrence strictly after ``after_ms``."""
    start = datetime.fromtimestamp(after_ms / 1000, tz=ZoneInfo(tz))
    nxt = croniter(cron, start).get_next(datetime)
    return nxt.timestamp() * 1000


def validate_cron(cron: str) -> None:
    if not croniter.is_valid(cron):
        raise ValueError(f"Invalid cron expression: {cron!r}")


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class JobQueue(ABC):
    """Abstract named job queue."""

    def __init__(self, name: str, default_opts: JobOptions = None, tz: str = "UTC"):
        self.name = name
        self.default_opts = default_opts or JobOptions()
        self.tz = tz

    def _merge_opts(self, opts: Optional[dict[str, Any]]) -> JobOptions:
        merged = asdict(self.default_opts)
        for key, value in (opts or {}).items():
            if key in merged and value is not None:
                merged[key] = value
        return JobOptions(**merged)

    async def add(self, name: str, data: dict[str, Any], opts: dict[str, Any] = None) -> QueueJob:
        """Add a job; with ``repeat_cron`` set, registers a repeatable job instead."""
        job_opts = self._merge_opts(opts)
        if job_opts.repeat_cron:
            return await self._add_repeatable(name, data, job_opts)
        job = QueueJob(queue=self.name, name=name, data=data, opts=job_opts)
        await self._insert(job)
        logger.debug("job_added", queue=self.name, job_id=job.job_id,
                     priority=job.priority, delay_ms=job_opts.delay_ms)
        return job

    async def add_bulk(self, jobs: list[tuple[str, dict[str, Any], dict[str, Any]]]) -> list[QueueJob]:
        return [await self.add(name, data, opts) for name, data, opts in jobs]

    async def _add_repeatable(self, name: str, data: dict[str, Any], opts: JobOptions) -> QueueJob:
        validate_cron(opts.repeat_cron)
        key = f"{name}:{opts.repeat_cron}"
        spec = RepeatSpec(key=key, name=name, cron=opts.repeat_cron, data=data, opts=opts)
        await self._save_repeatable(spec)
        job = await self._schedule_occurrence(spec, _now_ms())
        logger.info("repeatable_job_registered", queue=self.name, key=key, cron=spec.cron)
        return job

    async def _schedule_occurrence(self, spec: RepeatSpec, after_ms: float) -> QueueJob:
        fire_ms = next_fire_ms(spec.cron, after_ms, self.tz)
        job_id = f"repeat:{spec.key}:{int(fire_ms)}"
        existing = await self.get_job(job_id)
        if existing:
            return existing
        opts = JobOptions(
            priority=spec.opts.priority,
            attempts=spec.opts.attempts,
            backoff_ms=spec.opts.backoff_ms,
            job_id=job_id,
        )
        job = QueueJob(
            queue=self.name, name=spec.name, data=spec.data, opts=opts,
            ready_at=fire_ms, repeat_key=spec.key,
        )
        await self._insert(job)
        return job

    async def _on_leased(self, job: QueueJob) -> None:
        """Chain the next occurrence of a repeatable job."""
        if not job.repeat_key:
            return
        spec = await self._get_repeatable(job.repeat_key)
        if spec:
            await self._schedule_occurrence(spec, max(job.ready_at, _now_ms()))

    # ── backend primitives ────────────────────────────────────

    @abstractmethod
    async def _insert(self, job: QueueJob) -> None:
        ...

    @abstractmethod
    async def _save_repeatable(self, spec: RepeatSpec) -> None:
        ...

    @abstractmethod
    async def _get_repeatable(self, key: str) -> Optional[RepeatSpec]:
        ...

    @abstractmethod
    async def list_repeatables(self) -> list[RepeatSpec]:
        ...

    @abstractmethod
    async def remove_repeatable(self, key: str) -> bool:
        ...

    @abstractmethod
    async def next_job(self) -> Optional[QueueJob]:
        """Lease the next ready job, or None if the queue is empty or paused."""
        ...

    @abstractmethod
    async def complete(self, job: QueueJob, result: Any = None) -> None:
        ...

    @abstractmethod
    async def fail(self, job: QueueJob, reason: str, retryable: bool = True) -> JobState:
        """Record a failed attempt; returns DELAYED when a retry was scheduled."""
        ...

    @abstractmethod
    async def get_counts(self) -> dict[str, int]:
        ...

    @abstractmethod
    async def get_jobs(self, state: JobState, start: int = 0, end: int = -1) -> list[QueueJob]:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        ...

    @abstractmethod
    async def remove(self, job_id: str) -> bool:
        """Remove a job that is not currently leased."""
        ...

    @abstractmethod
    async def retry(self, job_id: str) -> QueueJob:
        """Move a failed job back to waiting."""
        ...

    @abstractmethod
    async def clean(self, grace_ms: int, limit: int = 0, state: JobState = None) -> list[str]:
        """Remove finished jobs older than grace_ms; limit 0 means no cap."""
        ...

    @abstractmethod
    async def pause(self) -> None:
        ...

    @abstractmethod
    async def resume(self) -> None:
        ...

    @abstractmethod
    async def is_paused(self) -> bool:
        ...

    async def close(self) -> None:
        """Release backend resources owned by this queue handle."""


_FINISHED = (JobState.COMPLETED, JobState.FAILED)


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryJobQueue(JobQueue):
    """
    Development/test queue backed by heaps.
    Single-process only — no persistence.
    """

    def __init__(self, name: str, default_opts: JobOptions = None, tz: str = "UTC"):
        super().__init__(name, default_opts, tz)
        self._jobs: dict[str, QueueJob] = {}
        self._waiting: list[tuple[float, float, int, str]] = []   # (priority, ready_at, seq, id)
        self._delayed: list[tuple[float, int, str]] = []          # (ready_at, seq, id)
        self._repeatables: dict[str, RepeatSpec] = {}
        self._seq = itertools.count(1)
        self._paused = False
        self._lock = asyncio.Lock()

    async def _insert(self, job: QueueJob) -> None:
        job.seq = next(self._seq)
        self._jobs[job.job_id] = job
        if job.ready_at > _now_ms():
            self._push_delayed(job)
        else:
            self._push_waiting(job)

    def _push_waiting(self, job: QueueJob) -> None:
        job.state = JobState.WAITING
        heapq.heappush(self._waiting, (job.priority, job.ready_at, job.seq, job.job_id))

    def _push_delayed(self, job: QueueJob) -> None:
        job.state = JobState.DELAYED
        heapq.heappush(self._delayed, (job.ready_at, job.seq, job.job_id))

    def _promote_delayed(self) -> None:
        now = _now_ms()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, job_id = heapq.heappop(self._delayed)
            job = self._jobs.get(job_id)
            if job and job.state == JobState.DELAYED:
                self._push_waiting(job)

    async def _save_repeatable(self, spec: RepeatSpec) -> None:
        self._repeatables[spec.key] = spec

    async def _get_repeatable(self, key: str) -> Optional[RepeatSpec]:
        return self._repeatables.get(key)

    async def list_repeatables(self) -> list[RepeatSpec]:
        return list(self._repeatables.values())

    async def remove_repeatable(self, key: str) -> bool:
        spec = self._repeatables.pop(key, None)
        if spec is None:
            return False
        for job in list(self._jobs.values()):
            if job.repeat_key == key and job.state == JobState.DELAYED:
                del self._jobs[job.job_id]
        return True

    async def next_job(self) -> Optional[QueueJob]:
        async with self._lock:
            if self._paused:
                return None
            self._promote_delayed()
            while self._waiting:
                _, _, _, job_id = heapq.heappop(self._waiting)
                job = self._jobs.get(job_id)
                if job is None or job.state != JobState.WAITING:
                    continue  # removed or moved since it was pushed
                job.state = JobState.ACTIVE
                job.processed_at = _now_ms()
                await self._on_leased(job)
                return job
            return None

    async def complete(self, job: QueueJob, result: Any = None) -> None:
        job.state = JobState.COMPLETED
        job.finished_at = _now_ms()
        job.return_value = result

    async def fail(self, job: QueueJob, reason: str, retryable: bool = True) -> JobState:
        job.attempts_made += 1
        job.failed_reason = reason
        if retryable and job.attempts_made < job.opts.attempts:
            job.ready_at = _now_ms() + job.backoff_delay_ms()
            self._push_delayed(job)
            return JobState.DELAYED
        job.state = JobState.FAILED
        job.finished_at = _now_ms()
        return JobState.FAILED

    async def get_counts(self) -> dict[str, int]:
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state.value] += 1
        return counts

    async def get_jobs(self, state: JobState, start: int = 0, end: int = -1) -> list[QueueJob]:
        jobs = [j for j in self._jobs.values() if j.state == state]
        if state in _FINISHED:
            jobs.sort(key=lambda j: j.finished_at or 0, reverse=True)
        elif state == JobState.WAITING:
            jobs.sort(key=lambda j: (j.priority, j.ready_at, j.seq))
        else:
            jobs.sort(key=lambda j: (j.ready_at, j.seq))
        stop = None if end == -1 else end + 1
        return jobs[start:stop]

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        return self._jobs.get(job_id)

    async def remove(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if job.state == JobState.ACTIVE:
            raise JobStateError(f"Job {job_id} is active and cannot be removed")
        del self._jobs[job_id]
        return True

    async def retry(self, job_id: str) -> QueueJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.state != JobState.FAILED:
            raise JobStateError(f"Job {job_id} is {job.state.value}, only failed jobs can be retried")
        job.attempts_made = 0
        job.failed_reason = None
        job.finished_at = None
        job.ready_at = _now_ms()
        self._push_waiting(job)
        return job

    async def clean(self, grace_ms: int, limit: int = 0, state: JobState = None) -> list[str]:
        cutoff = _now_ms() - grace_ms
        states = (state,) if state else _FINISHED
        candidates = sorted(
            (j for j in self._jobs.values()
             if j.state in states and (j.finished_at or 0) <= cutoff),
            key=lambda j: j.finished_at or 0,
        )
        if limit:
            candidates = candidates[:limit]
        for job in candidates:
            del self._jobs[job.job_id]
        return [j.job_id for j in candidates]

    async def pause(self) -> None:
        self._paused = True

    async def resume(self) -> None:
        self._paused = False

    async def is_paused(self) -> bool:
        return self._paused


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisJobQueue(JobQueue):
    """
    Production queue backed by Redis sorted sets.

    Keys (prefix ``dq:{queue}:``):
      jobs       — hash job_id → job JSON
      wait       — zset score=priority, member="{seq:012d}|{job_id}"
      delayed    — zset score=ready_at ms, member=job_id
      active     — set of job_ids
      completed  — zset score=finished_at ms
      failed     — zset score=finished_at ms
      repeat     — hash repeat key → spec JSON
      paused     — flag
      seq        — insertion counter

    Lease uses ZPOPMIN so concurrent workers never receive the same job.
    The redis client is shared and owned by the caller.
    """

    def __init__(self, name: str, redis, default_opts: JobOptions = None, tz: str = "UTC"):
        super().__init__(name, default_opts, tz)
        self._redis = redis
        self._prefix = f"dq:{name}:"

    def _key(self, suffix: str) -> str:
        return self._prefix + suffix

    @staticmethod
    def _wait_member(job: QueueJob) -> str:
        return f"{job.seq:012d}|{job.job_id}"

    async def _save(self, job: QueueJob) -> None:
        await self._redis.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict()))

    async def _insert(self, job: QueueJob) -> None:
        job.seq = await self._redis.incr(self._key("seq"))
        if job.ready_at > _now_ms():
            job.state = JobState.DELAYED
            await self._save(job)
            await self._redis.zadd(self._key("delayed"), {job.job_id: job.ready_at})
        else:
            job.state = JobState.WAITING
            await self._save(job)
            await self._redis.zadd(self._key("wait"), {self._wait_member(job): job.priority})

    async def _promote_delayed(self) -> None:
        ready = await self._redis.zrangebyscore(self._key("delayed"), "-inf", _now_ms())
        for job_id in ready:
            # ZREM returns 1 for exactly one concurrent promoter
            if not await self._redis.zrem(self._key("delayed"), job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.seq = await self._redis.incr(self._key("seq"))
            job.state = JobState.WAITING
            await self._save(job)
            await self._redis.zadd(self._key("wait"), {self._wait_member(job): job.priority})

    async def _save_repeatable(self, spec: RepeatSpec) -> None:
        await self._redis.hset(self._key("repeat"), spec.key, spec.to_json())

    async def _get_repeatable(self, key: str) -> Optional[RepeatSpec]:
        raw = await self._redis.hget(self._key("repeat"), key)
        return RepeatSpec.from_json(raw) if raw else None

    async def list_repeatables(self) -> list[RepeatSpec]:
        raw = await self._redis.hvals(self._key("repeat"))
        return [RepeatSpec.from_json(r) for r in raw]

    async def remove_repeatable(self, key: str) -> bool:
        removed = await self._redis.hdel(self._key("repeat"), key)
        if removed:
            for job in await self.get_jobs(JobState.DELAYED):
                if job.repeat_key == key:
                    await self.remove(job.job_id)
        return bool(removed)

    async def next_job(self) -> Optional[QueueJob]:
        if await self.is_paused():
            return None
        await self._promote_delayed()
        popped = await self._redis.zpopmin(self._key("wait"), 1)
        if not popped:
            return None
        member, _score = popped[0]
        job_id = member.split("|", 1)[1]
        job = await self.get_job(job_id)
        if job is None:
            return None
        job.state = JobState.ACTIVE
        job.processed_at = _now_ms()
        await self._redis.sadd(self._key("active"), job_id)
        await self._save(job)
        await self._on_leased(job)
        return job

    async def complete(self, job: QueueJob, result: Any = None) -> None:
        job.state = JobState.COMPLETED
        job.finished_at = _now_ms()
        job.return_value = result
        await self._save(job)
        await self._redis.srem(self._key("active"), job.job_id)
        await self._redis.zadd(self._key("completed"), {job.job_id: job.finished_at})

    async def fail(self, job: QueueJob, reason: str, retryable: bool = True) -> JobState:
        job.attempts_made += 1
        job.failed_reason = reason
        await self._redis.srem(self._key("active"), job.job_id)
        if retryable and job.attempts_made < job.opts.attempts:
            job.ready_at = _now_ms() + job.backoff_delay_ms()
            job.state = JobState.DELAYED
            await self._save(job)
            await self._redis.zadd(self._key("delayed"), {job.job_id: job.ready_at})
            return JobState.DELAYED
        job.state = JobState.FAILED
        job.finished_at = _now_ms()
        await self._save(job)
        await self._redis.zadd(self._key("failed"), {job.job_id: job.finished_at})
        return JobState.FAILED

    async def get_counts(self) -> dict[str, int]:
        pipe = self._redis.pipeline()
        pipe.zcard(self._key("wait"))
        pipe.scard(self._key("active"))
        pipe.zcard(self._key("completed"))
        pipe.zcard(self._key("failed"))
        pipe.zcard(self._key("delayed"))
        waiting, active, completed, failed, delayed = await pipe.execute()
        return {
            "waiting": waiting, "active": active, "completed": completed,
            "failed": failed, "delayed": delayed,
        }

    async def _load_many(self, job_ids: list[str]) -> list[QueueJob]:
        if not job_ids:
            return []
        raw = await self._redis.hmget(self._key("jobs"), job_ids)
        return [QueueJob.from_dict(json.loads(r)) for r in raw if r]

    async def get_jobs(self, state: JobState, start: int = 0, end: int = -1) -> list[QueueJob]:
        if state == JobState.ACTIVE:
            ids = sorted(await self._redis.smembers(self._key("active")))
            stop = None if end == -1 else end + 1
            return await self._load_many(ids[start:stop])
        if state == JobState.WAITING:
            members = await self._redis.zrange(self._key("wait"), start, end)
            return await self._load_many([m.split("|", 1)[1] for m in members])
        if state == JobState.DELAYED:
            return await self._load_many(await self._redis.zrange(self._key("delayed"), start, end))
        key = self._key("completed" if state == JobState.COMPLETED else "failed")
        return await self._load_many(await self._redis.zrevrange(key, start, end))

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        raw = await self._redis.hget(self._key("jobs"), job_id)
        return QueueJob.from_dict(json.loads(raw)) if raw else None

    async def remove(self, job_id: str) -> bool:
        job = await self.get_job(job_id)
        if job is None:
            return False
        if job.state == JobState.ACTIVE:
            raise JobStateError(f"Job {job_id} is active and cannot be removed")
        pipe = self._redis.pipeline()
        pipe.zrem(self._key("wait"), self._wait_member(job))
        pipe.zrem(self._key("delayed"), job_id)
        pipe.zrem(self._key("completed"), job_id)
        pipe.zrem(self._key("failed"), job_id)
        pipe.hdel(self._key("jobs"), job_id)
        await pipe.execute()
        return True

    async def retry(self, job_id: str) -> QueueJob:
        job = await self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.state != JobState.FAILED:
            raise JobStateError(f"Job {job_id} is {job.state.value}, only failed jobs can be retried")
        await self._redis.zrem(self._key("failed"), job_id)
        job.attempts_made = 0
        job.failed_reason = None
        job.finished_at = None
        job.ready_at = _now_ms()
        job.seq = await self._redis.incr(self._key("seq"))
        job.state = JobState.WAITING
        await self._save(job)
        await self._redis.zadd(self._key("wait"), {self._wait_member(job): job.priority})
        return job

    async def clean(self, grace_ms: int, limit: int = 0, state: JobState = None) -> list[str]:
        cutoff = _now_ms() - grace_ms
        states = (state,) if state else _FINISHED
        removed: list[str] = []
        for st in states:
            key = self._key("completed" if st == JobState.COMPLETED else "failed")
            remaining = (limit - len(removed)) if limit else None
            if remaining is not None and remaining <= 0:
                break
            if remaining is None:
                ids = await self._redis.zrangebyscore(key, "-inf", cutoff)
            else:
                ids = await self._redis.zrangebyscore(key, "-inf", cutoff, start=0, num=remaining)
            if ids:
                await self._redis.zrem(key, *ids)
                await self._redis.hdel(self._key("jobs"), *ids)
                removed.extend(ids)
        return removed

    async def pause(self) -> None:
        await self._redis.set(self._key("paused"), "1")

    async def resume(self) -> None:
        await self._redis.delete(self._key("paused"))

    async def is_paused(self) -> bool:
        return bool(await self._redis.exists(self._key("paused")))


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_redis_client(redis_url: str):
    import redis.asyncio as aioredis
    return aioredis.from_url(redis_url, decode_responses=True, max_connections=20)


def create_job_queue(
    name: str,
    queue_config: dict[str, Any] = None,
    redis=None,
    default_opts: JobOptions = None,
    tz: str = "UTC",
) -> JobQueue:
    """Factory: create the appropriate queue backend for one named queue."""
    config = queue_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        if redis is None:
            redis = create_redis_client(config.get("redis_url", "redis://localhost:6379"))
        return RedisJobQueue(name, redis, default_opts=default_opts, tz=tz)
    return InMemoryJobQueue(name, default_opts=default_opts, tz=tz)
