"""
NUDGE Scheduler Loop - Periodic Reminder Delivery

Responsibilities:
- Wake every poll_interval seconds (30s by default)
- Bootstrap next_fire_at for active reminders that lack one
- Deliver due reminders through the Notifier, once per occurrence
- Advance run counters and next_fire_at via the recurrence engine
- Persist all changes of a tick in ONE store transaction
- Never run two ticks at once (an overlapping tick is skipped)

Failure policy:
- A reminder with no usable destination is auto-paused, never retried
- A delivery failure is logged; next_fire_at is left as-is so the
  occurrence is attempted again on a later tick
- Nothing a single reminder does can stop the tick, and nothing a tick
  does can stop the loop

Architecture position:
    ReminderStore -> SchedulerLoop -> RecurrenceEngine
                          |
                          +-> Notifier (external)
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from nudge.config import SchedulerConfig
from nudge.delivery.notifiers import Notification, Notifier
from nudge.memory.reminder_models import Reminder, ReminderStatus
from nudge.memory.reminder_store import ReminderStore
from .clock import Clock
from .periodic import PeriodicRunner
from .recurrence import compute_next, first_fire_time

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What one tick did, by reminder id."""
    at: datetime
    bootstrapped: List[str] = field(default_factory=list)
    fired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    paused: List[str] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)
    persisted: bool = False
    skipped: bool = False


# Persisted fields that decide when a reminder fires next
_SCHEDULING_KEYS = ("status", "schedule", "nextFireAt")


def render_text(reminder: Reminder) -> str:
    """Reminder payload is delivered verbatim."""
    return reminder.text


class SchedulerLoop:
    """
    Owned scheduler instance: its own timer thread and its own re-fire
    suppression map. Nothing is module-global.

    Usage:
        loop = SchedulerLoop(store, notifier, clock, config)
        loop.start()
        ...
        loop.stop()

    Tests drive it directly with loop.tick().
    """

    def __init__(
        self,
        store: ReminderStore,
        notifier: Notifier,
        clock: Clock,
        config: Optional[SchedulerConfig] = None
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.config = config or SchedulerConfig()

        # reminder id -> wall-clock time of its last successful delivery
        self._recently_fired: Dict[str, datetime] = {}
        self._suppression_lock = threading.Lock()
        # Held for the whole tick; an overlapping tick is skipped, not queued
        self._tick_lock = threading.Lock()

        self._runner = PeriodicRunner("reminders", self.config.poll_interval, self.tick)
        self.last_report: Optional[TickReport] = None

        logger.info(
            "SchedulerLoop initialized (poll=%gs, suppression=%gs)",
            self.config.poll_interval, self.config.refire_suppression
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._runner.is_running

    def start(self) -> bool:
        return self._runner.start()

    def stop(self, timeout: Optional[float] = 5.0):
        self._runner.stop(timeout=timeout)

    # ------------------------------------------------------------------
    # Re-fire suppression
    # ------------------------------------------------------------------

    def _is_suppressed(self, reminder_id: str, now: datetime) -> bool:
        with self._suppression_lock:
            last = self._recently_fired.get(reminder_id)
        if last is None:
            return False
        return now - last < self.config.refire_suppression_delta

    def _remember_fire(self, reminder_id: str, now: datetime):
        with self._suppression_lock:
            self._recently_fired[reminder_id] = now

    def _prune_suppression(self, now: datetime):
        window = self.config.refire_suppression_delta
        with self._suppression_lock:
            stale = [rid for rid, at in self._recently_fired.items() if now - at >= window]
            for rid in stale:
                del self._recently_fired[rid]

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> TickReport:
        """
        Run one evaluation cycle.

        Returns:
            TickReport describing what happened
        """
        now = self.clock.now()
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous tick still running, skipping this one")
            return TickReport(at=now, skipped=True)
        try:
            return self._tick(now)
        finally:
            self._tick_lock.release()

    def _tick(self, now: datetime) -> TickReport:
        report = TickReport(at=now)
        min_interval = self.config.min_interval_delta

        reminders = self.store.snapshot()
        originals = {r.id: r.to_dict() for r in reminders}
        changed: Dict[str, Reminder] = {}

        # Bootstrap active reminders that have no computed next time
        for reminder in reminders:
            if not reminder.is_active or reminder.next_fire_at is not None:
                continue
            try:
                reminder.next_fire_at = first_fire_time(
                    reminder.schedule, now, reminder.fire_count, min_interval
                )
            except Exception as e:
                logger.error(f"Bootstrap failed for reminder {reminder.id}: {e}", exc_info=True)
                continue
            if reminder.next_fire_at is None:
                reminder.status = ReminderStatus.DONE
                report.completed.append(reminder.id)
            report.bootstrapped.append(reminder.id)
            changed[reminder.id] = reminder
            logger.debug(f"Bootstrapped reminder {reminder.id}: next={reminder.next_fire_at}")

        for reminder in reminders:
            if not reminder.is_due(now):
                continue

            if self._is_suppressed(reminder.id, now):
                logger.debug(f"Reminder {reminder.id} fired moments ago, skipping")
                report.suppressed.append(reminder.id)
                continue

            if not reminder.has_valid_destination():
                logger.warning(
                    f"Reminder {reminder.id} has no valid destination "
                    f"({reminder.destination!r}), pausing it"
                )
                reminder.status = ReminderStatus.PAUSED
                reminder.next_fire_at = None
                report.paused.append(reminder.id)
                changed[reminder.id] = reminder
                continue

            try:
                self._fire(reminder, now, min_interval)
            except Exception as e:
                logger.error(f"Failed to deliver reminder {reminder.id}: {e}", exc_info=True)
                report.failed.append(reminder.id)
                continue

            report.fired.append(reminder.id)
            if reminder.status == ReminderStatus.DONE:
                report.completed.append(reminder.id)
            changed[reminder.id] = reminder

        if changed:
            self._persist(changed, originals)
            report.persisted = True

        self._prune_suppression(now)
        self.last_report = report

        if report.fired or report.failed or report.paused:
            logger.info(
                "Tick at %s: fired=%d failed=%d paused=%d completed=%d",
                now.isoformat(), len(report.fired), len(report.failed),
                len(report.paused), len(report.completed)
            )
        return report

    def _fire(self, reminder: Reminder, now: datetime, min_interval):
        """Deliver one occurrence, then advance the reminder's run state."""
        notification = Notification(
            destination=reminder.destination,
            text=render_text(reminder),
            reminder_id=reminder.id,
            use_broadcast_mention=bool(reminder.use_broadcast_mention),
            metadata={"tags": list(reminder.tags), "dueHint": reminder.due_hint},
        )
        self.notifier.deliver(notification)
        self._remember_fire(reminder.id, now)

        reminder.last_fired_at = now
        reminder.fire_count += 1
        reminder.next_fire_at = compute_next(
            reminder.schedule,
            now,
            last_fired_at=reminder.last_fired_at,
            fire_count=reminder.fire_count,
            min_interval=min_interval,
        )
        if reminder.next_fire_at is None:
            reminder.status = ReminderStatus.DONE
            logger.info(f"Reminder {reminder.id} delivered (final occurrence)")
        else:
            logger.info(f"Reminder {reminder.id} delivered, next at {reminder.next_fire_at.isoformat()}")

    def _persist(self, changed: Dict[str, Reminder], originals: Dict[str, dict]):
        """
        Write the tick's changes in one transaction, merged by id into the
        collection as it is NOW, so edits made by callers while the tick ran
        are not overwritten.

        A record identical to the tick's snapshot is replaced by the tick's
        version. Otherwise the caller's record is kept and the tick's run
        state is applied on top of it: the delivery (fire_count,
        last_fired_at) always, the computed status/next_fire_at only if the
        caller left the scheduling fields alone.
        """
        def merge(current: List[Reminder]):
            merged = []
            for stored in current:
                ours = changed.get(stored.id)
                if ours is None:
                    merged.append(stored)
                    continue

                base = originals[stored.id]
                now_stored = stored.to_dict()
                if now_stored == base:
                    merged.append(ours)
                    continue

                delivered = ours.fire_count - base["fireCount"]
                if delivered > 0:
                    stored.fire_count += delivered
                    stored.last_fired_at = ours.last_fired_at

                if all(now_stored[key] == base[key] for key in _SCHEDULING_KEYS):
                    auto_paused = ours.status == ReminderStatus.PAUSED and base["status"] != ours.status.value
                    # A destination fixed mid-tick cancels the auto-pause
                    if not (auto_paused and stored.has_valid_destination()):
                        stored.status = ours.status
                        stored.next_fire_at = ours.next_fire_at

                logger.info(f"Reminder {stored.id} was modified during the tick, merged with caller's changes")
                merged.append(stored)
            return merged, None

        self.store.update(merge)
