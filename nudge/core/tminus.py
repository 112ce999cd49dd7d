"""
NUDGE T-Minus Watcher - Notifications Before Fixed Daily Events

Polls once a minute and, for every daily event (a class, a standup), sends
one notification `minutes_before` ahead of its start. The poll matches on
the minute, so the same minute can be seen twice, and a late poll replays
the minutes it skipped (up to MAX_CATCHUP_MINUTES). The FireGuard ledger
makes sure each (day, destination, subject, start) is delivered once.

Events file (JSON array):
    [{"destination": "group-1", "subject": "Algorithms", "start": "08:00",
      "end": "09:40", "weekdays": ["MO", "WE"], "text": null}]
An empty weekdays list means every day.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, List, Optional

from nudge.config import SchedulerConfig
from nudge.delivery.notifiers import Notification, Notifier
from nudge.memory.atomic_file import AtomicFileStore
from nudge.memory.fire_guard import FireGuard
from nudge.memory.reminder_models import weekday_from_code
from .clock import Clock
from .periodic import PeriodicRunner

logger = logging.getLogger(__name__)

# Skipped minutes older than this are not replayed
MAX_CATCHUP_MINUTES = 5


def _parse_hhmm(value: str) -> time:
    try:
        hour, minute = str(value).strip().split(":")
        return time(int(hour), int(minute))
    except (ValueError, TypeError):
        raise ValueError(f"Expected HH:MM, got {value!r}") from None


@dataclass(frozen=True)
class DailyEvent:
    """A fixed-time event that repeats on some (or all) weekdays."""
    destination: str
    subject: str
    start: str
    end: Optional[str] = None
    weekdays: FrozenSet[int] = frozenset()
    text: Optional[str] = None

    def __post_init__(self):
        if not self.destination or not self.subject:
            raise ValueError("DailyEvent needs a destination and a subject")
        _parse_hhmm(self.start)
        if self.end is not None:
            _parse_hhmm(self.end)
        days = frozenset(
            weekday_from_code(d) if isinstance(d, str) else int(d) for d in self.weekdays
        )
        object.__setattr__(self, "weekdays", days)

    def occurs_on(self, day: date) -> bool:
        return not self.weekdays or day.weekday() in self.weekdays

    def start_at(self, day: date, tz: tzinfo) -> datetime:
        return datetime.combine(day, _parse_hhmm(self.start), tzinfo=tz)

    @classmethod
    def from_dict(cls, data: dict) -> "DailyEvent":
        return cls(
            destination=data["destination"],
            subject=data["subject"],
            start=data["start"],
            end=data.get("end"),
            weekdays=frozenset(data.get("weekdays") or []),
            text=data.get("text"),
        )


def load_daily_events(path: Path) -> List[DailyEvent]:
    """
    Read daily events from a JSON array. Invalid entries are skipped.
    """
    data = AtomicFileStore(Path(path), default=list).load()
    if not isinstance(data, list):
        logger.warning(f"Events file {path} is not a JSON array, ignoring it")
        return []

    events = []
    for entry in data:
        try:
            events.append(DailyEvent.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid daily event {entry!r}: {e}")
    return events


class TMinusWatcher:
    """
    One-minute poll for T-minus notifications, deduplicated by FireGuard.

    Usage:
        watcher = TMinusWatcher(lambda: load_daily_events(path), guard, notifier, clock, config)
        watcher.start()
    """

    def __init__(
        self,
        events_provider: Callable[[], Iterable[DailyEvent]],
        fire_guard: FireGuard,
        notifier: Notifier,
        clock: Clock,
        config: Optional[SchedulerConfig] = None
    ):
        self.config = config or SchedulerConfig()
        self.events_provider = events_provider
        self.fire_guard = fire_guard
        self.notifier = notifier
        self.clock = clock
        self.minutes_before = self.config.tminus_minutes
        self.max_catchup_minutes = MAX_CATCHUP_MINUTES
        # Last minute evaluated by check(), None before the first check
        self._last_minute: Optional[datetime] = None
        self._runner = PeriodicRunner("tminus", self.config.tminus_poll_interval, self.check)

    @property
    def is_running(self) -> bool:
        return self._runner.is_running

    def start(self) -> bool:
        return self._runner.start()

    def stop(self, timeout: Optional[float] = 5.0):
        self._runner.stop(timeout=timeout)

    def render(self, event: DailyEvent) -> str:
        if event.text:
            return event.text
        span = f"{event.start}–{event.end}" if event.end else event.start
        return f"⏰ {self.minutes_before} minutes to go!\n{event.subject}\nTime: {span}"

    def _minutes_to_check(self, this_minute: datetime) -> List[datetime]:
        """
        This minute plus any minutes skipped since the previous check, so a
        late poll still evaluates the minute it slipped past. At most
        max_catchup_minutes are replayed. The first check, or one after the
        clock moved backwards, sees only this minute.
        """
        last = self._last_minute
        self._last_minute = this_minute
        if last is None or last >= this_minute:
            return [this_minute]

        step = timedelta(minutes=1)
        minute = max(last + step, this_minute - step * self.max_catchup_minutes)
        minutes = []
        while minute <= this_minute:
            minutes.append(minute)
            minute += step
        return minutes

    def check(self) -> List[str]:
        """
        Evaluate every event against the current minute and any minutes
        missed since the previous check.

        Returns:
            Signatures delivered during this check
        """
        tz = self.clock.tz
        now = self.clock.now().astimezone(tz)
        minutes = set(self._minutes_to_check(now.replace(second=0, microsecond=0)))
        # Next day too: an event at 00:05 is announced at 23:50 the day before
        days = sorted({m.date() + timedelta(days=offset) for m in minutes for offset in (0, 1)})
        lead = timedelta(minutes=self.minutes_before)
        delivered = []

        for event in self.events_provider():
            for day in days:
                if not event.occurs_on(day):
                    continue
                if event.start_at(day, tz) - lead not in minutes:
                    continue

                signature = FireGuard.signature(
                    day.isoformat(), event.destination, event.subject, event.start
                )
                try:
                    if self.fire_guard.has_fired(signature):
                        continue
                    self.notifier.deliver(Notification(
                        destination=event.destination,
                        text=self.render(event),
                        metadata={"signature": signature, "subject": event.subject},
                    ))
                    self.fire_guard.mark_fired(signature)
                except Exception as e:
                    logger.error(f"T-minus notification failed for {signature}: {e}", exc_info=True)
                    continue

                delivered.append(signature)
                logger.info(f"T-{self.minutes_before} notification sent: {signature}")

        return delivered
