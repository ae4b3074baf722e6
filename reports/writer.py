"""
Report artifacts — CSV files attached to report emails.

Two layouts:
  call sheet      — one row per call
  advanced report — Summary, End Reasons, Assistant Performance and
                    Detailed Calls sections in one file, separated by a
                    blank row and a "# <section>" marker
"""
from __future__ import annotations

import csv
import structlog
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from models.schemas import CallRecord
from reports.stats import (
    format_currency, format_duration, generate_summary_stats,
    is_successful_call, success_rate, truncate,
)

logger = structlog.get_logger()

CALL_COLUMNS = [
    ("Phone Number", lambda c: c.phone_number or "N/A"),
    ("Customer Name", lambda c: c.customer_name or "Unknown"),
    ("Customer Number", lambda c: c.customer_number or "Unknown"),
    ("Duration", lambda c: format_duration(c.duration_seconds)),
    ("Call Type", lambda c: c.call_type or "N/A"),
    ("Cost", lambda c: format_currency(c.cost)),
    ("Assistant", lambda c: c.assistant_name or "N/A"),
    ("Started At", lambda c: c.started_at.isoformat()),
    ("Ended Reason", lambda c: c.ended_reason or "N/A"),
    ("Success Evaluation", lambda c: "N/A" if c.success_evaluation is None else c.success_evaluation),
    ("Recording URL", lambda c: c.recording_url or "N/A"),
    ("Analysis Summary", lambda c: c.summary or "N/A"),
    ("Transcript", lambda c: truncate(c.transcript, 1000) or "N/A"),
]


def _report_path(reports_dir: str, label: str) -> Path:
    folder = Path(reports_dir)
    if not folder.exists():
        folder.mkdir(parents=True, exist_ok=True)
        logger.info("reports_dir_created", path=str(folder))
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
    return folder / f"{label}_{stamp}.csv"


def _call_rows(calls: Iterable[CallRecord], columns=CALL_COLUMNS) -> list[list[Any]]:
    return [[getter(c) for _, getter in columns] for c in calls]


def write_call_sheet(calls: list[CallRecord], label: str, reports_dir: str) -> str:
    if not calls:
        raise ValueError("No calls to export")
    path = _report_path(reports_dir, label)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow([name for name, _ in CALL_COLUMNS])
        writer.writerows(_call_rows(calls))
    logger.info("report_written", label=label, path=str(path), rows=len(calls))
    return str(path)


def _assistant_rows(calls: list[CallRecord], breakdown: dict[str, int]) -> list[list[Any]]:
    rows = []
    for assistant, total in breakdown.items():
        subset = [c for c in calls if (c.assistant_name or "unknown") == assistant]
        successful = sum(1 for c in subset if is_successful_call(c))
        duration = sum(c.duration_seconds or 0 for c in subset)
        rows.append([
            assistant, total,
            f"{success_rate(successful, total)}%",
            format_duration(duration / total if total else 0),
            format_currency(sum(c.cost or 0 for c in subset)),
        ])
    return rows


def write_advanced_report(calls: list[CallRecord], label: str, reports_dir: str) -> str:
    if not calls:
        raise ValueError("No calls to export")
    stats = generate_summary_stats(calls)
    summary = stats.to_dict()
    detail_columns = CALL_COLUMNS[:11]

    sections: list[tuple[str, list[str], list[list[Any]]]] = [
        ("Summary", ["Metric", "Value"], [
            ["Total Calls", stats.total_calls],
            ["Successful Calls", stats.successful_calls],
            ["Success Rate", f"{stats.success_rate}%"],
            ["Total Duration", summary["totalDuration"]],
            ["Average Duration", summary["avgDuration"]],
            ["Total Cost", summary["totalCost"]],
            ["Average Cost", summary["avgCost"]],
        ]),
        ("End Reasons", ["End Reason", "Count", "Percentage"], [
            [reason, count, f"{success_rate(count, stats.total_calls)}%"]
            for reason, count in stats.end_reason_breakdown.items()
        ]),
        ("Assistant Performance",
         ["Assistant", "Total Calls", "Success Rate", "Avg Duration", "Total Cost"],
         _assistant_rows(calls, stats.assistant_breakdown)),
        ("Detailed Calls", [name for name, _ in detail_columns],
         _call_rows(calls, detail_columns)),
    ]

    path = _report_path(reports_dir, label)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        for i, (title, header, rows) in enumerate(sections):
            if i:
                writer.writerow([])
            writer.writerow([f"# {title}"])
            writer.writerow(header)
            writer.writerows(rows)
    logger.info("advanced_report_written", label=label, path=str(path), calls=len(calls))
    return str(path)
