"""
NUDGE Memory - Reminder Persistence

Reminder records, the atomic JSON document store, the locked reminder
store and the daily fire-guard ledger.
"""

from .reminder_models import (
    Reminder,
    ReminderStatus,
    ScheduleKind,
    Frequency,
    RecurrenceRule,
    OnceSchedule,
    IntervalSchedule,
    RecurringSchedule,
    WindowedRecurringSchedule,
    create_reminder,
)
from .atomic_file import AtomicFileStore
from .reminder_store import ReminderStore
from .fire_guard import FireGuard

__all__ = [
    'Reminder',
    'ReminderStatus',
    'ScheduleKind',
    'Frequency',
    'RecurrenceRule',
    'OnceSchedule',
    'IntervalSchedule',
    'RecurringSchedule',
    'WindowedRecurringSchedule',
    'create_reminder',
    'AtomicFileStore',
    'ReminderStore',
    'FireGuard',
]
