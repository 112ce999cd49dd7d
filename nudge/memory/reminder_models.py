"""
NUDGE Reminder Models

Data structures for the reminder scheduler.

- Schedule is a closed tagged union: OnceSchedule, IntervalSchedule,
  RecurringSchedule and WindowedRecurringSchedule, told apart by `kind`.
- Reminder is the persisted record. Attribute names are snake_case; the
  JSON document uses the camelCase keys shared with the messaging layer.
- All datetimes are timezone-aware.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Union

from nudge.errors import ScheduleError


class ReminderStatus(Enum):
    """Reminder lifecycle states"""
    ACTIVE = "active"    # Scheduled; next_fire_at is set (or bootstrapped next tick)
    PAUSED = "paused"    # Suspended by a caller or auto-paused; next_fire_at is None
    DONE = "done"        # No occurrences left; terminal


class ScheduleKind(Enum):
    ONCE = "once"
    INTERVAL = "interval"
    RECURRING = "recurring"
    WINDOWED_RECURRING = "windowed_recurring"


class Frequency(Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


# Python weekday numbering: Monday == 0
WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp.

    Naive values are taken as UTC so a hand-edited file still loads.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise ScheduleError(f"Invalid timestamp: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _require_aware(name: str, value: Optional[datetime]):
    if value is not None and value.tzinfo is None:
        raise ScheduleError(f"{name} must be timezone-aware")


def weekday_from_code(code: str) -> int:
    try:
        return WEEKDAY_CODES.index(str(code).strip().upper()[:2])
    except ValueError:
        raise ScheduleError(f"Unknown weekday: {code!r}") from None


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Simplified calendar recurrence: DAILY or WEEKLY at hour:minute.

    An empty weekday set on a WEEKLY rule means every day.
    """
    freq: Frequency
    hour: int = 7
    minute: int = 0
    weekdays: FrozenSet[int] = frozenset()

    def __post_init__(self):
        if not isinstance(self.freq, Frequency):
            raise ScheduleError(f"freq must be Frequency, got {self.freq!r}")
        if not 0 <= int(self.hour) <= 23:
            raise ScheduleError(f"hour out of range: {self.hour}")
        if not 0 <= int(self.minute) <= 59:
            raise ScheduleError(f"minute out of range: {self.minute}")
        days = frozenset(int(d) for d in self.weekdays)
        if any(d < 0 or d > 6 for d in days):
            raise ScheduleError(f"weekday out of range: {sorted(days)}")
        object.__setattr__(self, "weekdays", days)

    @classmethod
    def daily(cls, hour: int, minute: int = 0) -> "RecurrenceRule":
        return cls(Frequency.DAILY, hour, minute)

    @classmethod
    def weekly(cls, weekdays: Iterable[Union[int, str]], hour: int, minute: int = 0) -> "RecurrenceRule":
        days = [weekday_from_code(d) if isinstance(d, str) else int(d) for d in weekdays]
        return cls(Frequency.WEEKLY, hour, minute, frozenset(days))

    @classmethod
    def parse(cls, rrule: str) -> "RecurrenceRule":
        """
        Parse "FREQ=WEEKLY;BYDAY=MO,WE;BYHOUR=16;BYMINUTE=0".

        Only FREQ, BYDAY, BYHOUR and BYMINUTE are understood; other parts
        are ignored. Missing BYHOUR/BYMINUTE default to 07:00.
        """
        parts: Dict[str, str] = {}
        for chunk in str(rrule or "").split(";"):
            if "=" in chunk:
                key, value = chunk.split("=", 1)
                parts[key.strip().upper()] = value.strip()

        try:
            freq = Frequency(parts.get("FREQ", "").upper())
        except ValueError:
            raise ScheduleError(f"Unsupported FREQ in rrule: {rrule!r}") from None

        try:
            hour = int(parts["BYHOUR"]) if "BYHOUR" in parts else 7
            minute = int(parts["BYMINUTE"]) if "BYMINUTE" in parts else 0
        except ValueError:
            raise ScheduleError(f"Invalid BYHOUR/BYMINUTE in rrule: {rrule!r}") from None

        days = frozenset()
        if parts.get("BYDAY"):
            days = frozenset(weekday_from_code(d) for d in parts["BYDAY"].split(",") if d.strip())
        return cls(freq, hour, minute, days)

    def to_rrule(self) -> str:
        text = f"FREQ={self.freq.value}"
        if self.freq is Frequency.WEEKLY and self.weekdays:
            text += ";BYDAY=" + ",".join(WEEKDAY_CODES[d] for d in sorted(self.weekdays))
        return text + f";BYHOUR={self.hour};BYMINUTE={self.minute}"

    def to_dict(self) -> dict:
        return {
            "freq": self.freq.value,
            "hour": self.hour,
            "minute": self.minute,
            "weekdays": [WEEKDAY_CODES[d] for d in sorted(self.weekdays)],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecurrenceRule":
        try:
            freq = Frequency(str(data.get("freq", "")).upper())
        except ValueError:
            raise ScheduleError(f"Unsupported freq: {data.get('freq')!r}") from None
        days = frozenset(weekday_from_code(d) for d in data.get("weekdays") or [])
        return cls(freq, int(data.get("hour", 7)), int(data.get("minute", 0)), days)


@dataclass(frozen=True)
class OnceSchedule:
    """Fires once at `at`, then terminates."""
    at: datetime
    kind: ClassVar[ScheduleKind] = ScheduleKind.ONCE

    def __post_init__(self):
        if not isinstance(self.at, datetime):
            raise ScheduleError("OnceSchedule.at must be datetime")
        _require_aware("at", self.at)


@dataclass(frozen=True)
class IntervalSchedule:
    """Fires every `every`, optionally bounded by start/end."""
    every: timedelta
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    kind: ClassVar[ScheduleKind] = ScheduleKind.INTERVAL

    def __post_init__(self):
        if not isinstance(self.every, timedelta) or self.every <= timedelta(0):
            raise ScheduleError("IntervalSchedule.every must be a positive timedelta")
        _require_aware("start", self.start)
        _require_aware("end", self.end)


@dataclass(frozen=True)
class RecurringSchedule:
    """Calendar recurrence, optionally bounded by start/end/count."""
    rule: RecurrenceRule
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    count: Optional[int] = None
    kind: ClassVar[ScheduleKind] = ScheduleKind.RECURRING

    def __post_init__(self):
        if not isinstance(self.rule, RecurrenceRule):
            raise ScheduleError("rule must be RecurrenceRule")
        if self.count is not None and int(self.count) < 1:
            raise ScheduleError("count must be at least 1")
        _require_aware("start", self.start)
        _require_aware("end", self.end)


@dataclass(frozen=True)
class WindowedRecurringSchedule(RecurringSchedule):
    """Recurring rule restricted to its next matching occurrence only."""
    kind: ClassVar[ScheduleKind] = ScheduleKind.WINDOWED_RECURRING


Schedule = Union[OnceSchedule, IntervalSchedule, RecurringSchedule, WindowedRecurringSchedule]
SCHEDULE_TYPES = (OnceSchedule, IntervalSchedule, RecurringSchedule)


def schedule_to_dict(schedule: Schedule) -> dict:
    """Persisted shape of a schedule."""
    if isinstance(schedule, OnceSchedule):
        return {"kind": schedule.kind.value, "at": format_datetime(schedule.at)}
    if isinstance(schedule, IntervalSchedule):
        return {
            "kind": schedule.kind.value,
            "everyDuration": schedule.every.total_seconds(),
            "start": format_datetime(schedule.start),
            "end": format_datetime(schedule.end),
        }
    if isinstance(schedule, RecurringSchedule):
        return {
            "kind": schedule.kind.value,
            "rule": schedule.rule.to_dict(),
            "start": format_datetime(schedule.start),
            "end": format_datetime(schedule.end),
            "count": schedule.count,
        }
    raise ScheduleError(f"Not a schedule: {schedule!r}")


def schedule_from_dict(data: dict) -> Schedule:
    """Inverse of schedule_to_dict; accepts an "rrule" string in place of "rule"."""
    if not isinstance(data, dict):
        raise ScheduleError(f"Schedule must be an object, got {type(data).__name__}")

    try:
        kind = ScheduleKind(data.get("kind"))
    except ValueError:
        raise ScheduleError(f"Unknown schedule kind: {data.get('kind')!r}") from None

    start = parse_datetime(data.get("start"))
    end = parse_datetime(data.get("end"))

    if kind is ScheduleKind.ONCE:
        at = parse_datetime(data.get("at"))
        if at is None:
            raise ScheduleError("once schedule requires 'at'")
        return OnceSchedule(at=at)

    if kind is ScheduleKind.INTERVAL:
        try:
            seconds = float(data["everyDuration"])
        except (KeyError, TypeError, ValueError):
            raise ScheduleError("interval schedule requires numeric 'everyDuration'") from None
        return IntervalSchedule(every=timedelta(seconds=seconds), start=start, end=end)

    if isinstance(data.get("rule"), dict):
        rule = RecurrenceRule.from_dict(data["rule"])
    elif data.get("rrule"):
        rule = RecurrenceRule.parse(data["rrule"])
    else:
        raise ScheduleError(f"{kind.value} schedule requires 'rule'")

    count = data.get("count")
    cls = WindowedRecurringSchedule if kind is ScheduleKind.WINDOWED_RECURRING else RecurringSchedule
    return cls(rule=rule, start=start, end=end, count=int(count) if count is not None else None)


@dataclass
class Reminder:
    """
    A single user-defined reminder.

    Scheduler-owned fields (last_fired_at, next_fire_at, fire_count) are
    only changed by the scheduler loop and snooze. use_broadcast_mention,
    tags and due_hint are opaque metadata carried through untouched.
    """
    id: str
    destination: Optional[str]
    text: str
    schedule: Schedule
    created_at: datetime
    created_by: Optional[str] = None
    status: ReminderStatus = ReminderStatus.ACTIVE
    last_fired_at: Optional[datetime] = None
    next_fire_at: Optional[datetime] = None
    fire_count: int = 0
    use_broadcast_mention: Optional[bool] = None
    tags: List[str] = field(default_factory=list)
    due_hint: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate reminder data"""
        if not self.id:
            raise ValueError("Reminder ID cannot be empty")
        if not self.text or not str(self.text).strip():
            raise ValueError("Reminder text cannot be empty")
        if not isinstance(self.schedule, SCHEDULE_TYPES):
            raise TypeError("schedule must be a Schedule")
        if not isinstance(self.status, ReminderStatus):
            raise TypeError("status must be ReminderStatus")
        if not isinstance(self.created_at, datetime):
            raise TypeError("created_at must be datetime")
        if self.fire_count < 0:
            raise ValueError("fire_count cannot be negative")

    @property
    def is_active(self) -> bool:
        return self.status == ReminderStatus.ACTIVE

    def has_valid_destination(self) -> bool:
        return isinstance(self.destination, str) and bool(self.destination.strip())

    def is_due(self, now: datetime) -> bool:
        """
        Due means active with next_fire_at at or before now (inclusive).
        """
        return self.is_active and self.next_fire_at is not None and self.next_fire_at <= now

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted JSON shape"""
        return {
            "id": self.id,
            "destination": self.destination,
            "createdBy": self.created_by,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
            "text": self.text,
            "schedule": schedule_to_dict(self.schedule),
            "status": self.status.value,
            "lastFiredAt": format_datetime(self.last_fired_at),
            "nextFireAt": format_datetime(self.next_fire_at),
            "fireCount": self.fire_count,
            "useBroadcastMention": self.use_broadcast_mention,
            "tags": list(self.tags),
            "dueHint": self.due_hint,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reminder":
        """Create Reminder from its persisted JSON shape"""
        return cls(
            id=data["id"],
            destination=data.get("destination"),
            created_by=data.get("createdBy"),
            created_at=parse_datetime(data["createdAt"]),
            updated_at=parse_datetime(data.get("updatedAt")),
            text=data["text"],
            schedule=schedule_from_dict(data["schedule"]),
            status=ReminderStatus(data.get("status", ReminderStatus.ACTIVE.value)),
            last_fired_at=parse_datetime(data.get("lastFiredAt")),
            next_fire_at=parse_datetime(data.get("nextFireAt")),
            fire_count=int(data.get("fireCount", 0)),
            use_broadcast_mention=data.get("useBroadcastMention"),
            tags=list(data.get("tags") or []),
            due_hint=data.get("dueHint"),
        )


def new_reminder_id() -> str:
    return str(uuid.uuid4())


def create_reminder(
    text: str,
    destination: str,
    schedule: Schedule,
    now: datetime,
    created_by: Optional[str] = None,
    next_fire_at: Optional[datetime] = None,
    tags: Optional[List[str]] = None,
    due_hint: Optional[str] = None,
    use_broadcast_mention: Optional[bool] = None
) -> Reminder:
    """
    Factory function to create a new active reminder.

    Args:
        text: Payload rendered verbatim at delivery time
        destination: Opaque channel handle
        schedule: When to fire
        now: Creation time (injected, never read from the system)
        created_by: Requester handle
        next_fire_at: Precomputed first fire time (None = bootstrap next tick)
        tags: Opaque tags
        due_hint: Opaque due-date hint
        use_broadcast_mention: Opaque delivery flag

    Returns:
        New Reminder in ACTIVE status
    """
    return Reminder(
        id=new_reminder_id(),
        destination=destination,
        text=text,
        schedule=schedule,
        created_at=now,
        created_by=created_by,
        status=ReminderStatus.ACTIVE,
        next_fire_at=next_fire_at,
        tags=list(tags or []),
        due_hint=due_hint,
        use_broadcast_mention=use_broadcast_mention,
    )
