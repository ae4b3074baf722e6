"""
FastAPI Application — campaign REST API + queue admin.

Provides:
- Campaign routes under /api: bulk call enqueue, pause/resume, stats,
  recurring report scheduling, failed-job clearing, health
- Admin routes under /admin: dashboard, stats, failed jobs, queue actions,
  per-job retry/remove
- Lifespan owning the QueueOrchestrator (start on boot, ordered shutdown)
"""
from __future__ import annotations

import asyncio
import time
import structlog
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

from dotenv import load_dotenv

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.errors import ConfigError, DialQueueError, TenantNotFound
from core.orchestrator import QueueOrchestrator
from job_queue.message_queue import JobState, JobStateError

logger = structlog.get_logger()

HEALTHY_FAILED_LIMIT = 10
HEALTHY_ACTIVE_LIMIT = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class QueueCallsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(alias="tenantId", min_length=1)
    assistant_id: str = Field(alias="assistantId", min_length=1)
    contacts: list[Any] = Field(min_length=1)
    priority: float = 1
    delay: int = Field(default=0, ge=0)


class TenantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(alias="tenantId", min_length=1)


class ScheduleReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(min_length=1)
    schedule: str = Field(min_length=1)
    tenant_id: str = Field(alias="tenantId", min_length=1)


def get_orchestrator(request: Request) -> QueueOrchestrator:
    return request.app.state.orchestrator


# ══════════════════════════════════════════════════════════════
#  CAMPAIGN API
# ══════════════════════════════════════════════════════════════

router = APIRouter(prefix="/api")


@router.post("/queue-calls")
async def queue_calls(body: QueueCallsRequest, orch: QueueOrchestrator = Depends(get_orchestrator)):
    jobs, skipped = await orch.enqueue_calls_bulk(
        tenant_id=body.tenant_id,
        assistant_id=body.assistant_id,
        contacts=body.contacts,
        priority=body.priority,
        delay_ms=body.delay,
    )
    return {
        "message": f"{len(jobs)} contacts queued successfully",
        "assistantId": body.assistant_id,
        "queuedJobs": len(jobs),
        "skippedContacts": skipped,
        "jobIds": [j.job_id for j in jobs],
        "estimatedStartTime": (_utcnow() + timedelta(milliseconds=body.delay)).isoformat(),
    }


async def _require_tenant(orch: QueueOrchestrator, tenant_id: str) -> None:
    if await orch.store.get_tenant(tenant_id) is None:
        raise TenantNotFound(tenant_id)


@router.post("/start-queue")
async def start_queue(body: TenantRequest, orch: QueueOrchestrator = Depends(get_orchestrator)):
    await _require_tenant(orch, body.tenant_id)
    await orch.resume_call_queue()
    stats = await orch.stats()
    return {
        "message": "Queue processing started",
        "userId": body.tenant_id,
        "queueStats": stats.call_queue.model_dump(),
        "status": "active",
    }


@router.post("/pause-queue")
async def pause_queue(body: TenantRequest, orch: QueueOrchestrator = Depends(get_orchestrator)):
    await _require_tenant(orch, body.tenant_id)
    await orch.pause_call_queue()
    stats = await orch.stats()
    return {
        "message": "Queue processing paused",
        "userId": body.tenant_id,
        "queueStats": stats.call_queue.model_dump(),
        "status": "paused",
    }


async def _tenant_queue_stats(orch: QueueOrchestrator, tenant_id: str) -> dict[str, Any]:
    counts = {}
    for state in (JobState.WAITING, JobState.DELAYED, JobState.ACTIVE, JobState.FAILED):
        jobs = await orch.call_queue.get_jobs(state)
        counts[state.value] = sum(1 for j in jobs if j.data.get("tenant_id") == tenant_id)
    return {"userId": tenant_id, **counts}


@router.get("/queue-stats")
async def queue_stats(
    tenant_id: Optional[str] = Query(default=None, alias="tenantId"),
    orch: QueueOrchestrator = Depends(get_orchestrator),
):
    stats = await orch.stats()
    user_stats = None
    if tenant_id and await orch.store.get_tenant(tenant_id) is not None:
        user_stats = await _tenant_queue_stats(orch, tenant_id)
    return {
        "timestamp": _utcnow().isoformat(),
        "globalStats": stats.as_dict(),
        "userStats": user_stats,
        "healthy": (stats.call_queue.failed < HEALTHY_FAILED_LIMIT
                    and stats.call_queue.active < HEALTHY_ACTIVE_LIMIT),
    }


@router.post("/schedule-report")
async def schedule_report(body: ScheduleReportRequest, orch: QueueOrchestrator = Depends(get_orchestrator)):
    job = await orch.schedule_report(body.tenant_id, body.type, body.schedule)
    return {
        "message": f"{body.type} report scheduled successfully",
        "jobId": job.job_id,
        "schedule": body.schedule,
        "nextRun": datetime.fromtimestamp(job.ready_at / 1000, tz=timezone.utc).isoformat(),
    }


@router.delete("/clear-failed-jobs")
async def clear_failed_jobs(orch: QueueOrchestrator = Depends(get_orchestrator)):
    cleared = await orch.clear_failed(("call",))
    return {
        "message": f"Cleared {cleared} failed jobs",
        "clearedCount": cleared,
        "timestamp": _utcnow().isoformat(),
    }


async def health(request: Request):
    orch: QueueOrchestrator = request.app.state.orchestrator
    try:
        report = await orch.health()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return JSONResponse(status_code=503, content={
            "status": "error",
            "timestamp": _utcnow().isoformat(),
            "error": str(e),
        })
    report["uptime"] = round(time.monotonic() - request.app.state.started_at, 3)
    return report


router.add_api_route("/health", health, methods=["GET"])


# ══════════════════════════════════════════════════════════════
#  ADMIN
# ══════════════════════════════════════════════════════════════

admin = APIRouter(prefix="/admin")

_DASHBOARD_HTML = """<!DOCTYPE html>
<html>
<head><title>DialQueue Admin</title>
<style>
body { font-family: sans-serif; margin: 2rem; }
table { border-collapse: collapse; }
td, th { border: 1px solid #ccc; padding: 4px 10px; }
</style>
</head>
<body>
<h1>DialQueue Queues</h1>
<table id="stats"><tr><th>Queue</th><th>Waiting</th><th>Active</th><th>Delayed</th>
<th>Completed</th><th>Failed</th><th>Paused</th></tr></table>
<p>
<button onclick="act('resume')">Resume</button>
<button onclick="act('pause')">Pause</button>
<button onclick="act('clear-failed')">Clear failed</button>
<button onclick="act('cleanup')">Cleanup</button>
</p>
<script>
async function load() {
  const res = await fetch('/admin/api/stats');
  const stats = await res.json();
  const table = document.getElementById('stats');
  while (table.rows.length > 1) table.deleteRow(1);
  for (const [name, c] of Object.entries(stats)) {
    const row = table.insertRow();
    for (const v of [name, c.waiting, c.active, c.delayed, c.completed, c.failed, c.paused]) {
      row.insertCell().textContent = v;
    }
  }
}
async function act(action) {
  await fetch('/admin/api/action/' + action, {method: 'POST'});
  load();
}
load();
setInterval(load, 5000);
</script>
</body>
</html>
"""


@admin.get("/queues", response_class=HTMLResponse)
async def dashboard():
    return _DASHBOARD_HTML


@admin.get("/api/stats")
async def admin_stats(orch: QueueOrchestrator = Depends(get_orchestrator)):
    return (await orch.stats()).as_dict()


@admin.get("/api/failed-jobs")
async def admin_failed_jobs(orch: QueueOrchestrator = Depends(get_orchestrator)):
    return await orch.failed_jobs(limit=50)


@admin.post("/api/action/{action}")
async def admin_action(action: str, orch: QueueOrchestrator = Depends(get_orchestrator)):
    if action == "resume":
        await orch.resume_all()
        return {"message": "All queues resumed"}
    if action == "pause":
        await orch.pause_all()
        return {"message": "All queues paused"}
    if action == "clear-failed":
        cleared = await orch.clear_failed()
        return {"message": f"Cleared {cleared} failed jobs", "clearedCount": cleared}
    if action == "cleanup":
        removed = await orch.cleanup()
        return {"message": "Queue cleanup completed", "removedCount": removed}
    raise ConfigError(f"Invalid action: {action}")


@admin.post("/api/retry/{queue}/{job_id}")
async def admin_retry(queue: str, job_id: str, orch: QueueOrchestrator = Depends(get_orchestrator)):
    await orch.retry_job(queue, job_id)
    return {"message": f"Job {job_id} retried successfully"}


@admin.delete("/api/remove/{queue}/{job_id}")
async def admin_remove(queue: str, job_id: str, orch: QueueOrchestrator = Depends(get_orchestrator)):
    if not await orch.remove_job(queue, job_id):
        raise KeyError(f"Job {job_id} not found")
    return {"message": f"Job {job_id} removed successfully"}


# ──────────────────────────────────────────────────────────────
#  Error mapping
# ──────────────────────────────────────────────────────────────

def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def _install_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        missing = [".".join(str(p) for p in e["loc"][1:]) for e in exc.errors()]
        return _error(400, f"Invalid or missing fields: {', '.join(missing)}")

    @app.exception_handler(TenantNotFound)
    async def tenant_not_found(request: Request, exc: TenantNotFound):
        return _error(404, str(exc))

    @app.exception_handler(ConfigError)
    async def config_error(request: Request, exc: ConfigError):
        return _error(400, str(exc))

    @app.exception_handler(KeyError)
    async def not_found(request: Request, exc: KeyError):
        return _error(404, str(exc.args[0]) if exc.args else "Not found")

    @app.exception_handler(JobStateError)
    async def job_state_error(request: Request, exc: JobStateError):
        return _error(409, str(exc))

    @app.exception_handler(DialQueueError)
    async def dialqueue_error(request: Request, exc: DialQueueError):
        logger.error("api_request_failed", path=request.url.path, error=str(exc))
        return _error(500, str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.error("api_unhandled_error", path=request.url.path, error=str(exc),
                     error_type=type(exc).__name__)
        return _error(500, "Internal Server Error")


# ══════════════════════════════════════════════════════════════
#  App
# ══════════════════════════════════════════════════════════════

def create_app(orchestrator: QueueOrchestrator = None, start_workers: bool = True) -> FastAPI:
    """Build the app; the orchestrator is constructed at startup unless injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        load_dotenv()
        orch = app.state.orchestrator
        if orch is None:
            orch = QueueOrchestrator()
            app.state.orchestrator = orch
        app.state.started_at = time.monotonic()
        if start_workers:
            orch.install_loop_exception_handler(asyncio.get_running_loop())
            await orch.start()
        else:
            await orch.store.initialize()
        logger.info("dialqueue_api_started", workers=start_workers,
                    queue_backend=orch.settings.queue.backend)
        yield
        await orch.shutdown()
        logger.info("dialqueue_api_stopped")

    app = FastAPI(
        title="DialQueue API",
        description="Multi-tenant outbound call campaign engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    app.include_router(router)
    app.include_router(admin)
    app.add_api_route("/health", health, methods=["GET"])
    return app


def main() -> None:
    import uvicorn
    from config.settings import get_settings

    settings = get_settings()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000,
                log_level="debug" if settings.debug else "info")


if __name__ == "__main__":
    main()
