"""
NUDGE Errors

Exception hierarchy shared across the scheduler packages.
"""


class NudgeError(Exception):
    """Base exception for all nudge errors"""
    pass


class ScheduleError(NudgeError, ValueError):
    """Raised when a schedule definition is malformed"""
    pass


class ReminderStoreError(NudgeError):
    """Raised when reminder storage cannot be read or written"""
    pass


class AtomicWriteError(ReminderStoreError):
    """Raised when an atomic file replace fails"""
    pass


class DeliveryError(NudgeError):
    """Raised by a Notifier when a notification could not be delivered"""
    pass
