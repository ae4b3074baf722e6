#!/usr/bin/env python3
"""
Daily Report — Run the daily report pipeline once, outside the scheduler.

Usage:
    # Every tenant:
    python scripts/daily_report.py

    # One tenant, explicit config:
    python scripts/daily_report.py --tenant tenant_123 --config config/settings.yaml

The report email is queued on the email queue. With the in-memory queue
backend nothing else would ever deliver it, so the script drains the email
queue before exiting.
"""
import asyncio
import os
import sys
import argparse

import structlog
from dotenv import load_dotenv

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logger = structlog.get_logger()


async def drain_email_queue(orchestrator) -> int:
    from job_queue.consumer import QueueWorker

    worker = QueueWorker(orchestrator.email_queue, orchestrator.email_processor)
    processed = 0
    while await worker.process_next() is not None:
        processed += 1
    return processed


async def run_daily_report(tenant_id: str = None, config_path: str = None) -> list[dict]:
    from config.settings import load_settings
    from core.orchestrator import QueueOrchestrator

    settings = load_settings(config_path)
    orchestrator = QueueOrchestrator(settings)
    processor = orchestrator.scheduler_processor
    results: list[dict] = []
    try:
        await orchestrator.store.initialize()
        tenant_ids = [tenant_id] if tenant_id else await orchestrator.store.list_tenant_ids()
        for tid in tenant_ids:
            try:
                results.append(await processor.daily_report(tid))
            except Exception as e:
                logger.error("daily_report_script_failed", tenant_id=tid, error=str(e))
                await processor.queue_failure_alert("daily_report", tid, e)
                results.append({"status": "failed", "tenant_id": tid, "error": str(e)})

        if settings.queue.backend == "memory":
            sent = await drain_email_queue(orchestrator)
            logger.info("daily_report_emails_drained", count=sent)
    finally:
        await orchestrator.shutdown()
    return results


def main():
    parser = argparse.ArgumentParser(description="Run the daily call report once")
    parser.add_argument("--tenant", help="Only report on this tenant id")
    parser.add_argument("--config", help="Path to settings.yaml")
    args = parser.parse_args()

    load_dotenv()
    results = asyncio.run(run_daily_report(tenant_id=args.tenant, config_path=args.config))
    for result in results:
        print(f"{result.get('tenant_id')}: {result.get('status')} "
              f"(calls: {result.get('total_calls', 0)})")
    if any(r.get("status") == "failed" for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
