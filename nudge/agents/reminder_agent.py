"""
NUDGE Reminder Agent - Tool-Facing Reminder Service

Responsibilities:
- Create reminders from loosely shaped tool arguments
- Patch, pause, resume, delete, list and snooze reminders
- Keep the status/next_fire_at invariant on every mutation
- Return structured results ({"ok": ...}) instead of raising for
  not-found or state conflicts

Every operation is a single ReminderStore.update() transaction.

This is NOT a scheduler: it never delivers anything.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from nudge.config import SchedulerConfig
from nudge.core.clock import Clock
from nudge.core.recurrence import first_fire_time
from nudge.errors import NudgeError, ScheduleError
from nudge.memory.reminder_models import (
    IntervalSchedule,
    OnceSchedule,
    RecurrenceRule,
    RecurringSchedule,
    Reminder,
    ReminderStatus,
    Schedule,
    SCHEDULE_TYPES,
    WindowedRecurringSchedule,
    create_reminder,
    format_datetime,
    schedule_from_dict,
)
from nudge.memory.reminder_store import ReminderStore

logger = logging.getLogger(__name__)

EVERY_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}

LIST_SCOPES = ("all", "destination", "creator")


def _not_found() -> dict:
    return {"ok": False, "error": "not_found"}


def _find(reminders: List[Reminder], reminder_id: str) -> Optional[Reminder]:
    for reminder in reminders:
        if reminder.id == reminder_id:
            return reminder
    return None


class ReminderAgent:
    """
    Service exposing reminder operations to an intent/tool layer.

    Design principles:
    - One store transaction per operation
    - Structured results; exceptions only for malformed input
    - Scheduler-owned fields (last_fired_at, fire_count) are never patched
    """

    PATCHABLE_FIELDS = frozenset({
        "text", "destination", "schedule", "status",
        "tags", "due_hint", "use_broadcast_mention",
    })

    def __init__(self, store: ReminderStore, clock: Clock, config: Optional[SchedulerConfig] = None):
        """
        Args:
            store: ReminderStore instance for persistence
            clock: Time source for creation/bootstrap
            config: Defaults (list limit, default time, interval floor)
        """
        self.store = store
        self.clock = clock
        self.config = config or SchedulerConfig()
        logger.info("ReminderAgent initialized")

    # ------------------------------------------------------------------
    # Argument coercion
    # ------------------------------------------------------------------

    def _datetime(self, value: Union[str, datetime, None], name: str) -> Optional[datetime]:
        """ISO string or datetime; naive values are local to the configured timezone."""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            dt = value
        else:
            try:
                dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
            except ValueError:
                raise ScheduleError(f"Invalid {name}: {value!r}") from None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=self.config.tz)
        return dt

    def _every(self, every: Any) -> timedelta:
        if isinstance(every, timedelta):
            delta = every
        elif isinstance(every, dict):
            unit = str(every.get("unit", "")).lower()
            if unit not in EVERY_UNITS:
                raise ScheduleError(f"Unknown interval unit: {every.get('unit')!r}")
            try:
                delta = EVERY_UNITS[unit] * float(every.get("value"))
            except (TypeError, ValueError):
                raise ScheduleError(f"Invalid interval value: {every.get('value')!r}") from None
        elif isinstance(every, (int, float)):
            delta = timedelta(seconds=every)
        else:
            raise ScheduleError(f"Invalid interval: {every!r}")

        if delta <= timedelta(0):
            raise ScheduleError("Interval must be positive")
        return max(delta, self.config.min_interval_delta)

    def _time_of_day(self, value: Any) -> tuple:
        if value is None:
            return self.config.default_hour, self.config.default_minute
        if isinstance(value, time):
            return value.hour, value.minute
        if isinstance(value, dict):
            return (
                int(value.get("hour", self.config.default_hour)),
                int(value.get("minute", self.config.default_minute)),
            )
        if isinstance(value, str) and ":" in value:
            hour, minute = value.split(":", 1)
            return int(hour), int(minute)
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return int(value[0]), int(value[1])
        raise ScheduleError(f"Invalid time of day: {value!r}")

    def build_schedule(
        self,
        now: datetime,
        at=None,
        every=None,
        rrule: Optional[str] = None,
        weekdays: Optional[Iterable[Union[str, int]]] = None,
        time_of_day=None,
        start=None,
        end=None,
        count: Optional[int] = None,
        only_next_occurrence: bool = False
    ) -> Schedule:
        """
        Resolve tool arguments into a Schedule.

        Precedence: at -> every -> rrule/weekdays/time -> once in
        default_once_delay seconds.
        """
        start_dt = self._datetime(start, "start")
        end_dt = self._datetime(end, "end")

        if at:
            return OnceSchedule(at=self._datetime(at, "at"))

        if every:
            return IntervalSchedule(every=self._every(every), start=start_dt, end=end_dt)

        if rrule or weekdays or time_of_day is not None:
            if rrule:
                rule = RecurrenceRule.parse(rrule)
            else:
                hour, minute = self._time_of_day(time_of_day)
                days = list(weekdays or [])
                rule = RecurrenceRule.weekly(days, hour, minute) if days else RecurrenceRule.daily(hour, minute)
            cls = WindowedRecurringSchedule if only_next_occurrence else RecurringSchedule
            return cls(
                rule=rule,
                start=start_dt,
                end=end_dt,
                count=int(count) if count is not None else None,
            )

        return OnceSchedule(at=now + timedelta(seconds=self.config.default_once_delay))

    def _coerce_patch(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - self.PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch fields: {', '.join(sorted(unknown))}")

        patch = dict(fields)
        if "text" in patch:
            text = str(patch["text"] or "").strip()
            if not text:
                raise ValueError("Reminder text cannot be empty")
            patch["text"] = text
        if "status" in patch and not isinstance(patch["status"], ReminderStatus):
            try:
                patch["status"] = ReminderStatus(str(patch["status"]).lower())
            except ValueError:
                raise ValueError(f"Invalid status: {patch['status']!r}") from None
        if "schedule" in patch and not isinstance(patch["schedule"], SCHEDULE_TYPES):
            patch["schedule"] = schedule_from_dict(patch["schedule"])
        if "tags" in patch:
            patch["tags"] = list(patch["tags"] or [])
        return patch

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        text: str,
        destination: str,
        created_by: Optional[str] = None,
        *,
        at=None,
        every=None,
        rrule: Optional[str] = None,
        weekdays: Optional[Iterable[Union[str, int]]] = None,
        time_of_day=None,
        start=None,
        end=None,
        count: Optional[int] = None,
        only_next_occurrence: bool = False,
        due_hint: Optional[str] = None,
        tags: Optional[List[str]] = None,
        use_broadcast_mention: Optional[bool] = None
    ) -> dict:
        """
        Create a reminder.

        Args:
            text: Payload delivered verbatim
            destination: Channel handle
            created_by: Requester handle
            at: One-shot fire time
            every: Interval (timedelta, seconds, or {"unit", "value"})
            rrule: Simplified RRULE text
            weekdays: Weekday codes or numbers (weekly rule)
            time_of_day: Fire time for daily/weekly rules
            start, end, count: Bounds for interval/recurring schedules
            only_next_occurrence: Recurring rule fires only once
            due_hint, tags, use_broadcast_mention: Opaque metadata

        Returns:
            {"ok": True, "id": ..., "preview": {"nextFireAt": ..., "kind": ...}}

        Raises:
            ValueError: Empty text
            ScheduleError: Malformed schedule or no future occurrence
        """
        text = str(text or "").strip()
        if not text:
            raise ValueError("Reminder text cannot be empty")

        now = self.clock.now()
        schedule = self.build_schedule(
            now, at=at, every=every, rrule=rrule, weekdays=weekdays,
            time_of_day=time_of_day, start=start, end=end, count=count,
            only_next_occurrence=only_next_occurrence,
        )
        next_fire_at = first_fire_time(schedule, now, 0, self.config.min_interval_delta)
        if next_fire_at is None:
            raise ScheduleError("Schedule has no upcoming occurrence")

        reminder = create_reminder(
            text=text,
            destination=destination,
            schedule=schedule,
            now=now,
            created_by=created_by,
            next_fire_at=next_fire_at,
            tags=tags,
            due_hint=due_hint,
            use_broadcast_mention=use_broadcast_mention,
        )

        self.store.update(lambda reminders: (reminders + [reminder], None))

        logger.info(f"Created reminder {reminder.id} ({schedule.kind.value}, next: {next_fire_at.isoformat()})")
        return {
            "ok": True,
            "id": reminder.id,
            "preview": {
                "nextFireAt": format_datetime(next_fire_at),
                "kind": schedule.kind.value,
            },
        }

    def patch(self, reminder_id: str, fields: Dict[str, Any]) -> dict:
        """
        Apply a partial update.

        Status rules:
        - active -> paused clears next_fire_at
        - paused -> active re-bootstraps next_fire_at from now
        - done is terminal (invalid_transition)
        - a schedule change on an active reminder re-bootstraps too

        Returns:
            {"ok": True} or {"ok": False, "error": "not_found"|"invalid_transition"}
        """
        patch = self._coerce_patch(fields)

        def mutate(reminders: List[Reminder]):
            reminder = _find(reminders, reminder_id)
            if reminder is None:
                return None, _not_found()

            now = self.clock.now()
            old_status = reminder.status
            new_status = patch.get("status", old_status)

            if old_status == ReminderStatus.DONE and new_status != ReminderStatus.DONE:
                return None, {"ok": False, "error": "invalid_transition"}

            for name in ("text", "destination", "tags", "due_hint", "use_broadcast_mention", "schedule"):
                if name in patch:
                    setattr(reminder, name, patch[name])
            reminder.status = new_status

            if new_status != ReminderStatus.ACTIVE:
                reminder.next_fire_at = None
            elif old_status != ReminderStatus.ACTIVE or "schedule" in patch:
                reminder.next_fire_at = first_fire_time(
                    reminder.schedule, now, reminder.fire_count, self.config.min_interval_delta
                )
                if reminder.next_fire_at is None:
                    reminder.status = ReminderStatus.DONE
                    logger.info(f"Reminder {reminder_id} has no occurrences left, marking done")

            reminder.updated_at = now
            return reminders, {"ok": True}

        result = self.store.update(mutate)
        if result["ok"]:
            logger.info(f"Patched reminder {reminder_id}: {sorted(patch)}")
        else:
            logger.warning(f"Patch of reminder {reminder_id} failed: {result['error']}")
        return result

    def pause(self, reminder_id: str) -> dict:
        return self.patch(reminder_id, {"status": ReminderStatus.PAUSED})

    def resume(self, reminder_id: str) -> dict:
        return self.patch(reminder_id, {"status": ReminderStatus.ACTIVE})

    def delete(self, reminder_id: str) -> dict:
        """
        Permanently delete a reminder. Deleting an unknown id is not an error.
        """
        def mutate(reminders: List[Reminder]):
            remaining = [r for r in reminders if r.id != reminder_id]
            if len(remaining) == len(reminders):
                return None, False
            return remaining, True

        if self.store.update(mutate):
            logger.info(f"Deleted reminder {reminder_id}")
        else:
            logger.debug(f"Delete: reminder {reminder_id} not found")
        return {"ok": True}

    def list(
        self,
        scope: str = "all",
        destination: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> dict:
        """
        List reminders.

        Args:
            scope: "all", "destination" or "creator"
            destination: Required for scope="destination"
            created_by: Required for scope="creator"

        Returns:
            {"ok": True, "reminders": [...]} with at most list_limit entries
        """
        if scope not in LIST_SCOPES:
            raise ValueError(f"Unknown list scope: {scope!r}")
        if scope == "destination" and not destination:
            raise ValueError("scope='destination' needs a destination")
        if scope == "creator" and not created_by:
            raise ValueError("scope='creator' needs created_by")

        def select(reminders: List[Reminder]):
            rows = reminders
            if scope == "destination":
                rows = [r for r in rows if r.destination == destination]
            elif scope == "creator":
                rows = [r for r in rows if r.created_by == created_by]
            return None, rows[:self.config.list_limit]

        rows = self.store.update(select)
        logger.debug(f"Listed {len(rows)} reminders (scope={scope})")
        return {"ok": True, "reminders": [r.to_dict() for r in rows]}

    def snooze(self, reminder_id: str, minutes: float) -> dict:
        """
        Push next_fire_at back by max(1 minute, `minutes`).

        Returns:
            {"ok": True, "nextFireAt": ...} or {"ok": False, "error": "not_found"|"not_active"}
        """
        try:
            seconds = max(60.0, float(minutes) * 60.0)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid snooze minutes: {minutes!r}") from None

        def mutate(reminders: List[Reminder]):
            reminder = _find(reminders, reminder_id)
            if reminder is None:
                return None, _not_found()
            if not reminder.is_active:
                return None, {"ok": False, "error": "not_active"}

            now = self.clock.now()
            base = reminder.next_fire_at or now
            reminder.next_fire_at = base + timedelta(seconds=seconds)
            reminder.updated_at = now
            return reminders, {"ok": True, "nextFireAt": format_datetime(reminder.next_fire_at)}

        result = self.store.update(mutate)
        if result["ok"]:
            logger.info(f"Snoozed reminder {reminder_id} until {result['nextFireAt']}")
        return result

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    def handle(self, name: str, args: Optional[Dict[str, Any]] = None) -> dict:
        """
        Dispatch a tool call by name.

        `args` may carry `_requester` and `_destination`, filled in by the
        messaging layer from the incoming message.

        Returns:
            The operation's result, {"ok": False, "error": "unknown_tool"},
            or {"ok": False, "error": <message>} for malformed arguments
        """
        args = dict(args or {})
        handlers = {
            "createReminder": self._tool_create,
            "updateReminder": lambda a: self.patch(self._require(a, "id"), self._patch_args(a)),
            "pauseReminder": lambda a: self.pause(self._require(a, "id")),
            "resumeReminder": lambda a: self.resume(self._require(a, "id")),
            "deleteReminder": lambda a: self.delete(self._require(a, "id")),
            "listReminders": self._tool_list,
            "snoozeReminder": lambda a: self.snooze(self._require(a, "id"), self._require(a, "minutes")),
        }
        handler = handlers.get(name)
        if handler is None:
            return {"ok": False, "error": "unknown_tool"}

        try:
            return handler(args)
        except (ValueError, NudgeError) as e:
            logger.warning(f"Tool {name} rejected: {e}")
            return {"ok": False, "error": str(e)}

    @staticmethod
    def _require(args: Dict[str, Any], key: str) -> Any:
        if args.get(key) in (None, ""):
            raise ValueError(f"{key} is required")
        return args[key]

    @staticmethod
    def _patch_args(args: Dict[str, Any]) -> Dict[str, Any]:
        renames = {"dueHint": "due_hint", "useBroadcastMention": "use_broadcast_mention"}
        patch = args.get("patch")
        if not isinstance(patch, dict):
            raise ValueError("patch must be an object")
        return {renames.get(k, k): v for k, v in patch.items()}

    def _tool_create(self, args: Dict[str, Any]) -> dict:
        return self.create(
            text=args.get("text"),
            destination=args.get("_destination") or args.get("destination"),
            created_by=args.get("_requester") or args.get("createdBy"),
            at=args.get("atISO") or args.get("at"),
            every=args.get("every"),
            rrule=args.get("rrule"),
            weekdays=args.get("weekdays"),
            time_of_day=args.get("time"),
            start=args.get("startISO") or args.get("start"),
            end=args.get("endISO") or args.get("end"),
            count=args.get("count"),
            only_next_occurrence=bool(args.get("onlyNextOccurrence") or args.get("onlyNextWeekSameDay")),
            due_hint=args.get("dueHint") or args.get("dueAtISO"),
            tags=args.get("tags") if isinstance(args.get("tags"), list) else None,
            use_broadcast_mention=args.get("useBroadcastMention"),
        )

    def _tool_list(self, args: Dict[str, Any]) -> dict:
        scope = args.get("scope", "all")
        # Scope names used by the chat layer
        scope = {"chat": "destination", "mine": "creator"}.get(scope, scope)
        return self.list(
            scope=scope,
            destination=args.get("_destination") or args.get("destination"),
            created_by=args.get("_requester") or args.get("createdBy"),
        )

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def format_reminder(self, reminder: Union[Reminder, dict]) -> str:
        """
        One-line summary for list replies.

        Args:
            reminder: Reminder or its to_dict() form
        """
        if isinstance(reminder, dict):
            reminder = Reminder.from_dict(reminder)

        line = f"[{reminder.status.value}] {reminder.text}"
        if reminder.next_fire_at is not None:
            local = reminder.next_fire_at.astimezone(self.config.tz)
            line += f" (next: {local.strftime('%a %d %b %H:%M')})"
        if reminder.fire_count:
            line += f" x{reminder.fire_count}"
        return line
