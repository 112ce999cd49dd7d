"""
NUDGE Agents - Tool-Facing Services

Services an intent/tool layer calls to manage reminders.
"""

from .reminder_agent import ReminderAgent

__all__ = [
    'ReminderAgent',
]
