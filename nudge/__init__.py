"""
NUDGE - Background Reminder Scheduler

Stores user-defined reminders, works out when they are due and hands each
occurrence to a Notifier exactly once.
"""

__version__ = "0.3.0"
