"""
Call statistics — pure aggregation over call-history records.

A call counts as successful when the success evaluation is true, it lasted
more than ten seconds, and it did not end in voicemail.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from models.schemas import CallRecord

MIN_SUCCESS_DURATION_SECONDS = 10

REPORT_WINDOWS = {
    "daily": timedelta(hours=24),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}


def is_successful_call(call: CallRecord) -> bool:
    return (
        call.success_evaluation is True
        and (call.duration_seconds or 0) > MIN_SUCCESS_DURATION_SECONDS
        and (call.ended_reason or "").lower() != "voicemail"
    )


def success_rate(successful: int, total: int, digits: int = 2) -> float:
    return round(successful / total * 100, digits) if total else 0.0


def date_range(kind: str, now: datetime) -> tuple[datetime, datetime]:
    """(start, end) for a daily/weekly/monthly report ending now."""
    return now - REPORT_WINDOWS[kind], now


# ──────────────────────────────────────────────────────────────
#  Formatting helpers
# ──────────────────────────────────────────────────────────────

def format_currency(amount: Optional[float]) -> str:
    return f"${(amount or 0):.2f}"


def format_duration(seconds: Optional[float]) -> str:
    if not seconds or seconds <= 0:
        return "0s"
    minutes, remainder = divmod(int(seconds), 60)
    return f"{minutes}m {remainder}s" if minutes else f"{remainder}s"


def truncate(text: Optional[str], limit: int = 500) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."


# ──────────────────────────────────────────────────────────────
#  Summary
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SummaryStats:
    total_calls: int
    successful_calls: int
    success_rate: float
    total_duration_seconds: float
    avg_duration_seconds: float
    total_cost: float
    avg_cost: float
    end_reason_breakdown: dict[str, int] = field(default_factory=dict)
    assistant_breakdown: dict[str, int] = field(default_factory=dict)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCalls": self.total_calls,
            "successfulCalls": self.successful_calls,
            "successRate": self.success_rate,
            "totalDuration": format_duration(self.total_duration_seconds),
            "avgDuration": format_duration(self.avg_duration_seconds),
            "totalCost": format_currency(self.total_cost),
            "avgCost": format_currency(self.avg_cost),
            "endReasonBreakdown": dict(self.end_reason_breakdown),
            "assistantBreakdown": dict(self.assistant_breakdown),
            "period": {
                "start": self.period_start.isoformat() if self.period_start else None,
                "end": self.period_end.isoformat() if self.period_end else None,
            },
        }


def generate_summary_stats(calls: list[CallRecord]) -> SummaryStats:
    total = len(calls)
    successful = sum(1 for c in calls if is_successful_call(c))
    total_duration = sum(c.duration_seconds or 0 for c in calls)
    total_cost = sum(c.cost or 0 for c in calls)
    return SummaryStats(
        total_calls=total,
        successful_calls=successful,
        success_rate=success_rate(successful, total),
        total_duration_seconds=total_duration,
        avg_duration_seconds=total_duration / total if total else 0,
        total_cost=total_cost,
        avg_cost=total_cost / total if total else 0,
        end_reason_breakdown=dict(Counter(c.ended_reason or "unknown" for c in calls)),
        assistant_breakdown=dict(Counter(c.assistant_name or "unknown" for c in calls)),
        period_start=calls[0].started_at if calls else None,
        period_end=calls[-1].started_at if calls else None,
    )


# ──────────────────────────────────────────────────────────────
#  Period grouping (weekly / monthly narratives)
# ──────────────────────────────────────────────────────────────

@dataclass
class PeriodGroup:
    period: str
    assistant_id: str
    calls: list[CallRecord] = field(default_factory=list)

    @property
    def total_calls(self) -> int:
        return len(self.calls)

    @property
    def successful_calls(self) -> int:
        return sum(1 for c in self.calls if is_successful_call(c))

    @property
    def total_duration(self) -> float:
        return sum(c.duration_seconds or 0 for c in self.calls)

    @property
    def total_cost(self) -> float:
        return sum(c.cost or 0 for c in self.calls)

    @property
    def avg_duration(self) -> float:
        return self.total_duration / self.total_calls if self.calls else 0


def _group(calls: Iterable[CallRecord], key: Callable[[CallRecord], str]) -> list[PeriodGroup]:
    groups: dict[tuple[str, str], PeriodGroup] = {}
    for call in calls:
        k = (key(call), call.assistant_id)
        if k not in groups:
            groups[k] = PeriodGroup(period=k[0], assistant_id=k[1])
        groups[k].calls.append(call)
    return [groups[k] for k in sorted(groups)]


def group_by_day(calls: Iterable[CallRecord]) -> list[PeriodGroup]:
    return _group(calls, lambda c: c.started_at.strftime("%Y-%m-%d"))


def group_by_iso_week(calls: Iterable[CallRecord]) -> list[PeriodGroup]:
    def week(c: CallRecord) -> str:
        year, number, _ = c.started_at.isocalendar()
        return f"{year}-W{number:02d}"
    return _group(calls, week)


def flatten(groups: list[PeriodGroup]) -> list[CallRecord]:
    return [call for group in groups for call in group.calls]
