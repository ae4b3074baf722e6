"""
Tests for the schedule resolver.

Covers:
  - Half-open window boundaries
  - Active slot lookup with multiple slots per day
  - Next slot search: same day later, following days, a full week ahead
  - Malformed and empty windows
  - Delays across daylight saving changes
"""
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from core.schedule import (
    active_slot_for, current_slot_for, day_name, delay_until,
    is_within_window, next_slot_for, parse_time,
)
from tests.conftest import MONDAY_10AM, slot


def at(day_offset: int, hour: int, minute: int = 0) -> datetime:
    """Time on the test week, counted from Monday 2026-10-19."""
    base = MONDAY_10AM.replace(hour=hour, minute=minute)
    return base + timedelta(days=day_offset)


class TestWindowBoundaries:
    def test_start_is_inside(self):
        assert is_within_window(time(9, 0), "09:00", "17:00")

    def test_end_is_outside(self):
        assert not is_within_window(time(17, 0), "09:00", "17:00")

    def test_minute_before_end_is_inside(self):
        assert is_within_window(time(16, 59), "09:00", "17:00")

    def test_accepts_datetime(self):
        assert is_within_window(at(0, 10), "09:00", "12:00")

    def test_end_not_after_start_is_empty(self):
        assert not is_within_window(time(10, 0), "12:00", "09:00")
        assert not is_within_window(time(9, 0), "09:00", "09:00")

    def test_malformed_window_is_empty(self):
        assert not is_within_window(time(10, 0), "nine", "17:00")
        assert parse_time("25:99") is None
        assert parse_time("08:30") == time(8, 30)


class TestActiveSlot:
    def test_inside_morning_slot(self, weekly_schedule):
        found = active_slot_for(weekly_schedule, "asst_1", at(0, 10))
        assert found is not None
        assert found.call_time_start == "09:00"

    def test_inside_second_slot_of_day(self, weekly_schedule):
        found = active_slot_for(weekly_schedule, "asst_1", at(0, 15))
        assert found is not None
        assert found.call_time_start == "14:00"

    def test_gap_between_slots(self, weekly_schedule):
        assert active_slot_for(weekly_schedule, "asst_1", at(0, 12, 30)) is None
        # the day still has a slot for the assistant
        assert current_slot_for(weekly_schedule, "asst_1", at(0, 12, 30)) is not None

    def test_other_assistant_has_no_slot(self, weekly_schedule):
        assert active_slot_for(weekly_schedule, "asst_2", at(0, 10)) is None

    def test_day_without_schedule(self, weekly_schedule):
        assert day_name(at(1, 10)) == "tuesday"
        assert active_slot_for(weekly_schedule, "asst_1", at(1, 10)) is None

    def test_raw_dict_slots_are_accepted(self):
        schedule = {"monday": {"m": {"assistantId": "a", "callTimeStart": "09:00", "callTimeEnd": "10:30"}}}
        assert active_slot_for(schedule, "a", at(0, 10)) is not None

    def test_malformed_slot_is_skipped(self):
        schedule = {"monday": {"bad": {"assistantId": "a"},
                               "good": {"assistantId": "a", "callTimeStart": "09:00", "callTimeEnd": "11:00"}}}
        assert active_slot_for(schedule, "a", at(0, 10)) is not None


class TestNextSlot:
    def test_later_slot_same_day(self, weekly_schedule):
        nxt = next_slot_for(weekly_schedule, "asst_1", at(0, 12, 30))
        assert nxt.day_offset == 0
        assert nxt.name == "afternoon"
        assert nxt.starts_at == at(0, 14)
        assert nxt.delay_ms(at(0, 12, 30)) == 90 * 60 * 1000

    def test_skips_to_following_scheduled_day(self, weekly_schedule):
        nxt = next_slot_for(weekly_schedule, "asst_1", at(0, 17, 30))
        assert nxt.day == "wednesday"
        assert nxt.day_offset == 2
        assert nxt.starts_at == at(2, 10)

    def test_wraps_around_the_week(self, weekly_schedule):
        nxt = next_slot_for(weekly_schedule, "asst_1", at(2, 11, 30))
        assert nxt.day == "monday"
        assert nxt.day_offset == 5
        assert nxt.starts_at == at(7, 9)

    def test_start_strictly_after_now(self, weekly_schedule):
        # exactly at a window start, the next start is the following window
        nxt = next_slot_for(weekly_schedule, "asst_1", at(0, 9))
        assert nxt.starts_at == at(0, 14)

    def test_single_weekly_slot_already_passed_is_a_week_out(self):
        schedule = {"monday": {"only": slot("a", "08:00", "09:00")}}
        nxt = next_slot_for(schedule, "a", at(0, 10))
        assert nxt.day_offset == 7
        assert nxt.starts_at == at(7, 8)

    def test_earliest_slot_within_a_day_wins(self):
        schedule = {"tuesday": {"late": slot("a", "15:00", "16:00"),
                                "early": slot("a", "08:00", "09:00")}}
        nxt = next_slot_for(schedule, "a", at(0, 10))
        assert nxt.name == "early"

    def test_no_slot_in_week(self, weekly_schedule):
        assert next_slot_for(weekly_schedule, "asst_ghost", at(0, 10)) is None

    def test_empty_windows_are_ignored(self):
        schedule = {"tuesday": {"broken": slot("a", "12:00", "09:00")}}
        assert next_slot_for(schedule, "a", at(0, 10)) is None

    def test_keeps_timezone_of_now(self, weekly_schedule):
        nxt = next_slot_for(weekly_schedule, "asst_1", at(0, 12, 30))
        assert nxt.starts_at.tzinfo == timezone.utc


def test_delay_until_never_negative():
    assert delay_until(at(0, 10), at(0, 9)) == 0
    assert delay_until(at(0, 10), at(0, 10, 1)) == 60_000


class TestDaylightSaving:
    NEW_YORK = ZoneInfo("America/New_York")

    def fire_time(self, now: datetime, delay_ms: int) -> datetime:
        return (now.astimezone(timezone.utc) + timedelta(milliseconds=delay_ms)).astimezone(self.NEW_YORK)

    def test_delay_spans_spring_forward(self):
        # clocks go forward on Sunday 2026-03-08
        schedule = {"monday": {"early": slot("a", "09:00", "09:30")}}
        now = datetime(2026, 3, 7, 10, 0, tzinfo=self.NEW_YORK)

        nxt = next_slot_for(schedule, "a", now)
        delay_ms = nxt.delay_ms(now)

        assert delay_ms == 46 * 60 * 60 * 1000
        fire = self.fire_time(now, delay_ms)
        assert (fire.date(), fire.hour, fire.minute) == (datetime(2026, 3, 9).date(), 9, 0)
        assert is_within_window(fire, "09:00", "09:30")

    def test_delay_spans_fall_back(self):
        # clocks go back on Sunday 2026-11-01
        schedule = {"monday": {"early": slot("a", "09:00", "09:30")}}
        now = datetime(2026, 10, 31, 10, 0, tzinfo=self.NEW_YORK)

        delay_ms = next_slot_for(schedule, "a", now).delay_ms(now)

        assert delay_ms == 48 * 60 * 60 * 1000
        assert is_within_window(self.fire_time(now, delay_ms), "09:00", "09:30")

    def test_delay_until_compares_absolute_time(self):
        before = datetime(2026, 3, 8, 1, 30, tzinfo=self.NEW_YORK)
        after = datetime(2026, 3, 8, 3, 30, tzinfo=self.NEW_YORK)
        assert delay_until(before, after) == 60 * 60 * 1000
