"""
NUDGE Recurrence Engine

Pure functions that answer "when does this schedule fire next?".

Rules:
- Deterministic: same inputs, same output. Nothing here reads the clock.
- Calendar maths happens in the timezone of the anchor datetime, so the
  caller controls local-day boundaries by passing a localized anchor.
- None means the schedule is exhausted (the reminder becomes done).
"""

from datetime import datetime, timedelta
from typing import Optional

from nudge.memory.reminder_models import (
    Frequency,
    IntervalSchedule,
    OnceSchedule,
    RecurrenceRule,
    RecurringSchedule,
    Schedule,
    WindowedRecurringSchedule,
)
from nudge.errors import ScheduleError

DEFAULT_MIN_INTERVAL = timedelta(seconds=60)

# Two weeks always covers a full week of candidate days
WEEKLY_SEARCH_DAYS = 14


def _at_time(day: datetime, rule: RecurrenceRule) -> datetime:
    return day.replace(hour=rule.hour, minute=rule.minute, second=0, microsecond=0)


def _next_calendar(rule: RecurrenceRule, ref: datetime) -> Optional[datetime]:
    if rule.freq is Frequency.DAILY:
        candidate = _at_time(ref, rule)
        if candidate < ref:
            candidate = _at_time(ref + timedelta(days=1), rule)
        return candidate

    if rule.freq is Frequency.WEEKLY:
        days = rule.weekdays or frozenset(range(7))
        for offset in range(WEEKLY_SEARCH_DAYS):
            day = ref + timedelta(days=offset)
            if day.weekday() not in days:
                continue
            candidate = _at_time(day, rule)
            if candidate >= ref:
                return candidate
        return None

    raise ScheduleError(f"Unsupported frequency: {rule.freq}")


def compute_next(
    schedule: Schedule,
    anchor: datetime,
    last_fired_at: Optional[datetime] = None,
    fire_count: int = 0,
    min_interval: timedelta = DEFAULT_MIN_INTERVAL
) -> Optional[datetime]:
    """
    Compute the occurrence after `anchor`.

    Args:
        schedule: Schedule to evaluate
        anchor: Reference time (usually "now" of the tick that just fired)
        last_fired_at: When the reminder last fired, if ever
        fire_count: Occurrences already delivered
        min_interval: Floor applied to interval schedules

    Returns:
        Next fire time, or None when no further occurrence exists
    """
    if anchor.tzinfo is None:
        raise ValueError("anchor must be timezone-aware")

    if isinstance(schedule, OnceSchedule):
        return None

    end = schedule.end
    if end is not None and anchor > end:
        return None

    if isinstance(schedule, IntervalSchedule):
        step = max(schedule.every, min_interval)
        base = last_fired_at if last_fired_at is not None else anchor
        candidate = base + step
        if schedule.start is not None and candidate < schedule.start:
            candidate = schedule.start
        if end is not None and candidate > end:
            return None
        return candidate

    if isinstance(schedule, RecurringSchedule):
        if isinstance(schedule, WindowedRecurringSchedule):
            if fire_count > 0 or last_fired_at is not None:
                return None
        if schedule.count is not None and fire_count >= schedule.count:
            return None

        # Never re-fire the minute that was just processed
        ref = (anchor + timedelta(minutes=1)).replace(second=0, microsecond=0)
        if schedule.start is not None and ref < schedule.start:
            # Rules are minute-granular, so is start
            ref = schedule.start.astimezone(anchor.tzinfo).replace(second=0, microsecond=0)

        candidate = _next_calendar(schedule.rule, ref)
        if candidate is None:
            return None
        if end is not None and candidate > end:
            return None
        return candidate

    raise ScheduleError(f"Unsupported schedule: {schedule!r}")


def first_fire_time(
    schedule: Schedule,
    now: datetime,
    fire_count: int = 0,
    min_interval: timedelta = DEFAULT_MIN_INTERVAL
) -> Optional[datetime]:
    """
    Bootstrap the first (or resumed) fire time from `now`.

    Used on create, on resume and by the tick for active reminders that have
    no next_fire_at. History is ignored on purpose: a resumed interval starts
    counting from now rather than catching up.
    """
    if isinstance(schedule, OnceSchedule):
        return schedule.at if fire_count == 0 else None

    if isinstance(schedule, IntervalSchedule):
        if schedule.end is not None and now > schedule.end:
            return None
        if schedule.start is not None and schedule.start > now:
            return schedule.start
        return compute_next(schedule, now, min_interval=min_interval)

    return compute_next(schedule, now, fire_count=fire_count, min_interval=min_interval)
