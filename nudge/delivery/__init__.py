"""
NUDGE Delivery - Notifier Capability

Everything the scheduler needs to hand a due notification to a channel.
"""

from .notifiers import Notification, Notifier, LogNotifier, WebhookNotifier

__all__ = [
    'Notification',
    'Notifier',
    'LogNotifier',
    'WebhookNotifier',
]
