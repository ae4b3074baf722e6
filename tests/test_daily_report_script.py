"""
Tests for the one-shot daily report script.
"""
import pytest
from unittest.mock import AsyncMock

from config import settings as settings_module
from scripts import daily_report
from scripts.daily_report import drain_email_queue, run_daily_report


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)
    path = tmp_path / "settings.yaml"
    path.write_text(
        "queue:\n  backend: memory\n"
        "database:\n  store_backend: memory\n"
        "email:\n  provider: log\n  report_recipients: reports@example.com\n"
        f"scheduler:\n  reports_dir: \"{tmp_path / 'reports'}\"\n"
    )
    return str(path)


@pytest.mark.asyncio
async def test_drain_sends_queued_emails(orchestrator, email_sender):
    await orchestrator.scheduler_processor.daily_report("tenant_1")

    assert await drain_email_queue(orchestrator) == 1
    assert len(email_sender.sent) == 1
    assert (await orchestrator.email_queue.get_counts())["completed"] == 1


@pytest.mark.asyncio
async def test_single_tenant_run(config_path):
    results = await run_daily_report(tenant_id="tenant_9", config_path=config_path)

    assert len(results) == 1
    assert results[0]["status"] == "completed"
    assert results[0]["tenant_id"] == "tenant_9"
    assert results[0]["total_calls"] == 0


@pytest.mark.asyncio
async def test_no_tenants_no_results(config_path):
    assert await run_daily_report(config_path=config_path) == []


@pytest.mark.asyncio
async def test_failure_is_reported_and_alerted(config_path, monkeypatch):
    alerts = []

    async def record_alert(self, kind, tenant_id, error):
        alerts.append((kind, tenant_id, str(error)))

    monkeypatch.setattr(
        "core.scheduler_jobs.SchedulerProcessor.daily_report",
        AsyncMock(side_effect=RuntimeError("history unavailable")),
    )
    monkeypatch.setattr("core.scheduler_jobs.SchedulerProcessor.queue_failure_alert", record_alert)

    results = await run_daily_report(tenant_id="tenant_9", config_path=config_path)

    assert results == [{"status": "failed", "tenant_id": "tenant_9", "error": "history unavailable"}]
    assert alerts == [("daily_report", "tenant_9", "history unavailable")]


def test_main_exits_nonzero_on_failure(monkeypatch):
    monkeypatch.setattr(daily_report, "run_daily_report",
                        AsyncMock(return_value=[{"status": "failed", "tenant_id": "t"}]))
    monkeypatch.setattr("sys.argv", ["daily_report.py", "--tenant", "t"])

    with pytest.raises(SystemExit) as exc_info:
        daily_report.main()
    assert exc_info.value.code == 1


def test_main_succeeds(monkeypatch, capsys):
    monkeypatch.setattr(daily_report, "run_daily_report",
                        AsyncMock(return_value=[{"status": "completed", "tenant_id": "t", "total_calls": 2}]))
    monkeypatch.setattr("sys.argv", ["daily_report.py"])

    daily_report.main()

    assert "t: completed (calls: 2)" in capsys.readouterr().out
