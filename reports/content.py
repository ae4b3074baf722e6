"""
Email content for report, notification and alert jobs.

Each builder returns ``(subject, html)``.
"""
from __future__ import annotations

import json
from datetime import datetime
from html import escape
from typing import Any

from reports.stats import PeriodGroup, SummaryStats, format_currency


def _date(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def _breakdown_items(groups: list[PeriodGroup], label: str) -> str:
    items = []
    for g in groups:
        items.append(
            f"<li>{escape(label)}{escape(g.period)} ({escape(g.assistant_id or 'unknown')}): "
            f"{g.total_calls} calls ({g.successful_calls} successful)"
            f" - Avg Duration: {g.avg_duration:.1f}s"
            f" - Cost: {format_currency(g.total_cost)}</li>"
        )
    return "".join(items)


def daily_report(tenant_id: str, stats: SummaryStats, now: datetime) -> tuple[str, str]:
    summary = stats.to_dict()
    rate = f"{stats.successful_calls / stats.total_calls * 100:.1f}" if stats.total_calls else "0"
    reasons = "".join(
        f"<li><strong>{escape(reason)}:</strong> {count} calls "
        f"({count / stats.total_calls * 100:.1f}%)</li>"
        for reason, count in stats.end_reason_breakdown.items()
    )
    assistants = ""
    if len(stats.assistant_breakdown) > 1:
        assistants = "<h3>Assistant Performance</h3><ul>" + "".join(
            f"<li><strong>{escape(name)}:</strong> {count} calls</li>"
            for name, count in stats.assistant_breakdown.items()
        ) + "</ul>"
    attached = "<li>Comprehensive daily report</li>"
    if stats.successful_calls:
        attached += "<li>Successful calls report</li>"

    subject = f"Daily Call Report - {_date(now)} ({stats.success_rate}% Success Rate) (Tenant: {tenant_id})"
    html = (
        "<h2>Daily Call Report</h2>"
        f"<p>Tenant: {escape(tenant_id)}</p>"
        f"<p>Date: {_date(now)}</p>"
        "<h3>Summary Statistics</h3><ul>"
        f"<li>Total Calls: {stats.total_calls}</li>"
        f"<li>Successful Calls: {stats.successful_calls}</li>"
        f"<li>Success Rate: {rate}%</li>"
        f"<li>Total Cost: {summary['totalCost']}</li>"
        f"<li>Total Talk Time: {summary['totalDuration']}</li>"
        f"<li>Average Call Duration: {summary['avgDuration']}</li>"
        f"<li>Average Cost per Call: {summary['avgCost']}</li></ul>"
        f"<h3>Call Outcomes</h3><ul>{reasons}</ul>"
        f"{assistants}"
        f"<h3>Attached Reports</h3><ul>{attached}</ul>"
        f"<p>Report generated on {now.isoformat()}</p>"
    )
    return subject, html


def no_activity(tenant_id: str, now: datetime) -> tuple[str, str]:
    subject = f"Daily Call Report - {_date(now)} - No Calls (Tenant: {tenant_id})"
    html = (
        "<h2>Daily Call Report</h2>"
        f"<p>Tenant: {escape(tenant_id)}</p>"
        f"<p>Date: {_date(now)}</p>"
        "<p><strong>No calls were made in the last 24 hours.</strong></p>"
        "<p>This could be normal if it's outside business hours or a weekend.</p>"
    )
    return subject, html


def period_report(
    kind: str,
    tenant_id: str,
    stats: SummaryStats,
    groups: list[PeriodGroup],
    start: datetime,
    end: datetime,
) -> tuple[str, str]:
    """Weekly or monthly report; groups are per day or per ISO week."""
    title = kind.capitalize()
    label = "Week " if kind == "monthly" else ""
    heading = "Weekly Breakdown" if kind == "monthly" else "Daily Breakdown"
    rate = f"{stats.successful_calls / stats.total_calls * 100:.1f}" if stats.total_calls else "0"
    avg = f"{stats.avg_duration_seconds:.1f}"

    subject = f"{title} Call Report - {_date(start)} to {_date(end)} (Tenant: {tenant_id})"
    html = (
        f"<h2>{title} Call Report</h2>"
        f"<p>Tenant: {escape(tenant_id)}</p>"
        f"<p>Period: {_date(start)} to {_date(end)}</p>"
        f"<p>Total Calls: {stats.total_calls}</p>"
        f"<p>Successful Calls: {stats.successful_calls}</p>"
        f"<p>Success Rate: {rate}%</p>"
        f"<p>Average Call Duration: {avg} seconds</p>"
        f"<p>Total Cost: {format_currency(stats.total_cost)}</p>"
        f"<h3>{heading}:</h3><ul>{_breakdown_items(groups, label)}</ul>"
    )
    if stats.total_calls:
        html += "<p>Please find the detailed reports attached.</p>"
    return subject, html


def health_alert(alerts: list[str], database: str, queues: dict[str, Any], now: datetime) -> tuple[str, str]:
    items = "".join(f"<li>{escape(a)}</li>" for a in alerts)
    html = (
        "<h2>System Health Alert</h2>"
        f"<p>Timestamp: {now.isoformat()}</p>"
        f"<p>Database Status: {escape(database)}</p>"
        f"<h3>Alerts:</h3><ul>{items}</ul>"
        f"<h3>Queue Statistics:</h3><pre>{escape(json.dumps(queues, indent=2))}</pre>"
    )
    return "System Health Alert", html


def report_failure(kind: str, error: str, now: datetime, tenant_id: str = None) -> tuple[str, str]:
    title = kind.replace("_", " ").title()
    scope = f" (Tenant: {tenant_id})" if tenant_id else ""
    html = (
        f"<h2>{escape(title)} Generation Error</h2>"
        f"<p>The {escape(title.lower())} generation failed{escape(scope)} with the following error:</p>"
        f"<pre>{escape(error)}</pre>"
        f"<p>Timestamp: {now.isoformat()}</p>"
        "<p>Please check the application logs for more details.</p>"
    )
    return f"{title} Generation Failed{scope}", html
