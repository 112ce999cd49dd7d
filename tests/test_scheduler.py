"""
Tests for the NUDGE Scheduler Loop

Tests:
- End-to-end one-shot reminder: fires exactly once, then done
- Recurring advance after delivery
- Re-fire suppression window
- Invalid destination auto-pause
- Delivery failure isolation and retry
- Bootstrap of missing next_fire_at
- Merge-on-persist keeps edits made while a tick runs
- Overlapping ticks are skipped
- Background thread lifecycle
"""

import sys
import logging
import tempfile
import threading
from pathlib import Path
from datetime import datetime, timedelta
from typing import List
from zoneinfo import ZoneInfo

sys.path.insert(0, str(Path(__file__).parent.parent))

from nudge.agents.reminder_agent import ReminderAgent
from nudge.config import SchedulerConfig
from nudge.core.clock import ManualClock
from nudge.core.path_lock import PathLock
from nudge.core.scheduler import SchedulerLoop
from nudge.delivery.notifiers import Notification, Notifier
from nudge.errors import DeliveryError
from nudge.memory.reminder_models import (
    OnceSchedule,
    RecurrenceRule,
    RecurringSchedule,
    ReminderStatus,
    create_reminder,
)
from nudge.memory.reminder_store import ReminderStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

TZ = ZoneInfo("Asia/Jakarta")
START = datetime(2025, 8, 27, 8, 0, tzinfo=TZ)


class RecordingNotifier(Notifier):
    """Keeps every notification; fails for destinations listed in fail_for."""

    def __init__(self, fail_for=()):
        self.sent: List[Notification] = []
        self.fail_for = set(fail_for)
        self.on_deliver = None

    def deliver(self, notification: Notification) -> None:
        if notification.destination in self.fail_for:
            raise DeliveryError(f"transport down for {notification.destination}")
        if self.on_deliver:
            self.on_deliver(notification)
        self.sent.append(notification)


def make_env(tmpdir: str, notifier: Notifier = None, start: datetime = START):
    config = SchedulerConfig(data_dir=Path(tmpdir), timezone="Asia/Jakarta")
    clock = ManualClock(start)
    store = ReminderStore(config.reminders_path, lock=PathLock())
    notifier = notifier or RecordingNotifier()
    loop = SchedulerLoop(store, notifier, clock, config)
    agent = ReminderAgent(store, clock, config)
    return loop, agent, store, clock, notifier


def test_one_shot_end_to_end():
    """Once at now+5min fires exactly once and ends done with fireCount 1"""
    print("\n" + "="*70)
    print("TEST 1: One-shot Reminder End-to-End")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir)

        result = agent.create("Submit the report", "group-1", "user-1")
        assert result["ok"]
        assert result["preview"]["kind"] == "once"
        assert result["preview"]["nextFireAt"] == (START + timedelta(minutes=5)).isoformat()
        print(f"✓ Created {result['id']} for {result['preview']['nextFireAt']}")

        clock.advance(minutes=4)
        report = loop.tick()
        assert report.fired == []
        assert notifier.sent == []
        print("✓ Nothing delivered before due time")

        clock.advance(minutes=1)
        report = loop.tick()
        assert report.fired == [result["id"]]
        assert report.completed == [result["id"]]
        assert len(notifier.sent) == 1
        assert notifier.sent[0].text == "Submit the report"
        assert notifier.sent[0].destination == "group-1"
        assert notifier.sent[0].reminder_id == result["id"]
        print("✓ Delivered at due time")

        reminder = store.get_reminder(result["id"])
        assert reminder.status == ReminderStatus.DONE
        assert reminder.fire_count == 1
        assert reminder.next_fire_at is None
        assert reminder.last_fired_at == clock.now()
        print("✓ Reminder done with fireCount 1")

        for _ in range(3):
            clock.advance(minutes=1)
            loop.tick()
        assert len(notifier.sent) == 1
        print("✓ Never delivered again")


def test_recurring_advances():
    print("\n" + "="*70)
    print("TEST 2: Recurring Advance")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir, start=START.replace(hour=15, minute=59))

        result = agent.create("Stand-up", "group-1", time_of_day="16:00")
        assert result["preview"]["kind"] == "recurring"
        assert result["preview"]["nextFireAt"] == START.replace(hour=16, minute=0).isoformat()

        clock.set(START.replace(hour=16, minute=0))
        loop.tick()
        reminder = store.get_reminder(result["id"])
        assert reminder.status == ReminderStatus.ACTIVE
        assert reminder.fire_count == 1
        assert reminder.next_fire_at == START.replace(hour=16) + timedelta(days=1)
        print(f"✓ Next occurrence: {reminder.next_fire_at.isoformat()}")

        # Ticking again in the same minute does nothing
        clock.advance(seconds=30)
        assert loop.tick().fired == []
        assert len(notifier.sent) == 1
        print("✓ Same minute never re-fired")


def test_refire_suppression():
    print("\n" + "="*70)
    print("TEST 3: Re-fire Suppression")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir)
        result = agent.create("Drink water", "group-1", every={"unit": "minute", "value": 1})
        reminder_id = result["id"]

        clock.advance(minutes=1)
        assert loop.tick().fired == [reminder_id]

        # Force it due again a few seconds later
        def make_due(reminders):
            for r in reminders:
                r.next_fire_at = clock.now()
            return reminders, None

        clock.advance(seconds=5)
        store.update(make_due)
        report = loop.tick()
        assert report.suppressed == [reminder_id]
        assert len(notifier.sent) == 1
        print("✓ Suppressed within 20 seconds of the last delivery")

        clock.advance(seconds=20)
        assert loop.tick().fired == [reminder_id]
        assert len(notifier.sent) == 2
        print("✓ Delivered once the window passed")


def test_invalid_destination_paused():
    print("\n" + "="*70)
    print("TEST 4: Invalid Destination")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir)
        orphan = create_reminder(
            text="Nowhere to go",
            destination="   ",
            schedule=OnceSchedule(at=START),
            now=START,
            next_fire_at=START,
        )
        store.update(lambda reminders: (reminders + [orphan], None))

        report = loop.tick()
        assert report.paused == [orphan.id]
        assert notifier.sent == []

        reminder = store.get_reminder(orphan.id)
        assert reminder.status == ReminderStatus.PAUSED
        assert reminder.next_fire_at is None
        assert reminder.fire_count == 0
        print("✓ Auto-paused without delivery")


def test_failure_isolated_and_retried():
    print("\n" + "="*70)
    print("TEST 5: Delivery Failure")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        notifier = RecordingNotifier(fail_for={"broken"})
        loop, agent, store, clock, _ = make_env(tmpdir, notifier)

        bad = agent.create("Will fail", "broken", at=START)["id"]
        good = agent.create("Will arrive", "group-1", at=START)["id"]

        report = loop.tick()
        assert report.failed == [bad]
        assert report.fired == [good]
        assert [n.text for n in notifier.sent] == ["Will arrive"]
        print("✓ One failure does not block the other reminder")

        failed = store.get_reminder(bad)
        assert failed.status == ReminderStatus.ACTIVE
        assert failed.fire_count == 0
        assert failed.next_fire_at == START
        print("✓ Failed occurrence not advanced")

        notifier.fail_for.clear()
        clock.advance(seconds=30)
        assert loop.tick().fired == [bad]
        assert store.get_reminder(bad).status == ReminderStatus.DONE
        print("✓ Retried on the next tick")


def test_bootstrap():
    print("\n" + "="*70)
    print("TEST 6: Bootstrap")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir)

        recurring = create_reminder(
            text="Weekly review",
            destination="group-1",
            schedule=RecurringSchedule(rule=RecurrenceRule.weekly(["FR"], 17, 0)),
            now=START,
        )
        spent = create_reminder(
            text="Already delivered",
            destination="group-1",
            schedule=OnceSchedule(at=START - timedelta(days=1)),
            now=START,
        )
        spent.fire_count = 1
        store.update(lambda reminders: (reminders + [recurring, spent], None))

        report = loop.tick()
        assert set(report.bootstrapped) == {recurring.id, spent.id}
        assert report.completed == [spent.id]
        assert notifier.sent == []

        friday = START.replace(hour=17) + timedelta(days=2)
        assert store.get_reminder(recurring.id).next_fire_at == friday
        assert store.get_reminder(spent.id).status == ReminderStatus.DONE
        print("✓ next_fire_at computed; exhausted schedule marked done")


def test_merge_keeps_concurrent_edits():
    """A pause, delete or field edit issued while delivery is in flight wins"""
    print("\n" + "="*70)
    print("TEST 7: Merge-on-Persist")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir)

        paused_id = agent.create("Pause me", "group-1", every=120)["id"]
        deleted_id = agent.create("Delete me", "group-2", every=120)["id"]
        untouched_id = agent.create("Leave me", "group-3", every=120)["id"]
        edited_id = agent.create("Old text", "group-4", every=120)["id"]

        def edit_during_delivery(notification: Notification):
            if notification.reminder_id == paused_id:
                assert agent.pause(paused_id)["ok"]
            elif notification.reminder_id == deleted_id:
                assert agent.delete(deleted_id)["ok"]
            elif notification.reminder_id == edited_id:
                assert agent.patch(edited_id, {"text": "New text", "destination": "group-5"})["ok"]

        notifier.on_deliver = edit_during_delivery

        clock.advance(minutes=2)
        report = loop.tick()
        assert set(report.fired) == {paused_id, deleted_id, untouched_id, edited_id}

        paused = store.get_reminder(paused_id)
        assert paused.status == ReminderStatus.PAUSED
        assert paused.next_fire_at is None
        assert paused.fire_count == 1
        assert paused.last_fired_at == clock.now()
        print("✓ Pause made mid-tick kept; delivery still counted")

        assert store.get_reminder(deleted_id) is None
        print("✓ Delete made mid-tick kept")

        untouched = store.get_reminder(untouched_id)
        assert untouched.fire_count == 1
        assert untouched.next_fire_at == clock.now() + timedelta(minutes=2)
        print("✓ Unedited reminder advanced normally")

        edited = store.get_reminder(edited_id)
        assert edited.text == "New text"
        assert edited.destination == "group-5"
        assert edited.status == ReminderStatus.ACTIVE
        assert edited.fire_count == 1
        assert edited.next_fire_at == clock.now() + timedelta(minutes=2)
        print("✓ Text and destination edited mid-tick kept; schedule still advanced")


def test_overlapping_tick_skipped():
    """A tick started while another is delivering does nothing"""
    print("\n" + "="*70)
    print("TEST 8: Overlapping Ticks")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        loop, agent, store, clock, notifier = make_env(tmpdir)
        reminder_id = agent.create("Once only", "group-1", at=START)["id"]

        nested = []
        notifier.on_deliver = lambda n: nested.append(loop.tick())

        report = loop.tick()
        assert report.fired == [reminder_id]
        assert not report.skipped
        assert len(nested) == 1 and nested[0].skipped
        assert nested[0].fired == []
        assert len(notifier.sent) == 1
        print("✓ Nested tick skipped, reminder delivered once")

        notifier.on_deliver = None
        assert not loop.tick().skipped
        print("✓ Lock released after the tick")


def test_background_loop():
    print("\n" + "="*70)
    print("TEST 9: Background Loop")
    print("="*70)

    with tempfile.TemporaryDirectory() as tmpdir:
        delivered = threading.Event()
        notifier = RecordingNotifier()
        notifier.on_deliver = lambda n: delivered.set()

        config = SchedulerConfig(data_dir=Path(tmpdir), poll_interval=0.05)
        clock = ManualClock(START)
        store = ReminderStore(config.reminders_path, lock=PathLock())
        loop = SchedulerLoop(store, notifier, clock, config)
        ReminderAgent(store, clock, config).create("Ping", "group-1", at=START)

        assert loop.start()
        assert not loop.start()
        try:
            assert delivered.wait(5.0), "Loop should deliver the due reminder"
        finally:
            loop.stop()

        assert not loop.is_running
        assert loop.last_report is not None
        print("✓ Loop started, delivered and stopped")


if __name__ == "__main__":
    test_one_shot_end_to_end()
    test_recurring_advances()
    test_refire_suppression()
    test_invalid_destination_paused()
    test_failure_isolated_and_retried()
    test_bootstrap()
    test_merge_keeps_concurrent_edits()
    test_overlapping_tick_skipped()
    test_background_loop()
    print("\n✅ ALL SCHEDULER TESTS PASSED")
