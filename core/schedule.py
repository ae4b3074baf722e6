"""
Schedule Resolver — pure functions over a tenant's weekly call-hour windows.

A weekly schedule maps a lowercase day name to named slots:

    {"monday": {"morning": {"assistantId": "a1", "callTimeStart": "09:00",
                            "callTimeEnd": "12:00"}}}

Windows are half-open: ``start <= now < end``. A window whose end is not
after its start never admits a call. Overlapping slots for one assistant are
tolerated; the first matching slot wins.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any, Mapping, Optional

from models.schemas import ScheduleSlot

logger = structlog.get_logger()

DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


@dataclass(frozen=True)
class NextSlot:
    day_offset: int
    day: str
    name: str
    slot: ScheduleSlot
    starts_at: datetime

    def delay_ms(self, now: datetime) -> int:
        return delay_until(now, self.starts_at)


def day_name(now: datetime) -> str:
    return DAYS[now.weekday()]


def parse_time(value: str) -> Optional[time]:
    """Parse "HH:MM" (or "HH:MM:SS"); None when malformed."""
    try:
        parts = [int(p) for p in value.strip().split(":")]
        return time(*parts[:3])
    except (AttributeError, TypeError, ValueError):
        return None


def is_within_window(now: datetime | time, window_start: str, window_end: str) -> bool:
    start, end = parse_time(window_start), parse_time(window_end)
    if start is None or end is None or end <= start:
        return False
    current = now.time() if isinstance(now, datetime) else now
    return start <= current < end


def delay_until(now: datetime, target: datetime) -> int:
    """Milliseconds from now until target, never negative."""
    return max(0, int((_utc(target) - _utc(now)).total_seconds() * 1000))


def _utc(value: datetime) -> datetime:
    # same-zone arithmetic is wall-clock and ignores a DST shift in between
    return value.astimezone(timezone.utc)


def _coerce_slot(raw: Any) -> Optional[ScheduleSlot]:
    if isinstance(raw, ScheduleSlot):
        return raw
    if isinstance(raw, Mapping):
        try:
            return ScheduleSlot.model_validate(raw)
        except ValueError:
            return None
    return None


def _matching_slots(schedule: Mapping, day: str, assistant_id: str) -> list[tuple[str, ScheduleSlot]]:
    day_schedule = (schedule or {}).get(day) or {}
    matches = []
    for name, raw in day_schedule.items():
        slot = _coerce_slot(raw)
        if slot is None:
            logger.warning("schedule_slot_malformed", day=day, slot=name)
            continue
        if slot.assistant_id == assistant_id:
            matches.append((name, slot))
    return matches


def current_slot_for(schedule: Mapping, assistant_id: str, now: datetime) -> Optional[ScheduleSlot]:
    """First slot today assigned to the assistant, whether or not now is inside it."""
    matches = _matching_slots(schedule, day_name(now), assistant_id)
    return matches[0][1] if matches else None


def active_slot_for(schedule: Mapping, assistant_id: str, now: datetime) -> Optional[ScheduleSlot]:
    """First slot today assigned to the assistant whose window contains now."""
    for _, slot in _matching_slots(schedule, day_name(now), assistant_id):
        if is_within_window(now, slot.call_time_start, slot.call_time_end):
            return slot
    return None


def next_slot_for(schedule: Mapping, assistant_id: str, now: datetime) -> Optional[NextSlot]:
    """
    Earliest window start strictly after now within the coming week.

    Later slots today are considered first (offset 0), then the next seven
    days in order. Empty or malformed windows are skipped.
    """
    today = now.weekday()
    for offset in range(0, 8):
        day = DAYS[(today + offset) % 7]
        date = (now + timedelta(days=offset)).date()
        best: Optional[NextSlot] = None
        for name, slot in _matching_slots(schedule, day, assistant_id):
            start, end = parse_time(slot.call_time_start), parse_time(slot.call_time_end)
            if start is None or end is None or end <= start:
                continue
            starts_at = datetime.combine(date, start, tzinfo=now.tzinfo)
            if _utc(starts_at) <= _utc(now):
                continue
            if best is None or _utc(starts_at) < _utc(best.starts_at):
                best = NextSlot(offset, day, name, slot, starts_at)
        if best is not None:
            return best
    return None
