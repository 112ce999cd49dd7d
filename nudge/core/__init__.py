"""
NUDGE Core Runtime

Clock, locking and the recurrence engine. The scheduler loop and the
T-minus watcher depend on the memory layer and are imported from their
modules directly:

    from nudge.core.scheduler import SchedulerLoop
    from nudge.core.tminus import TMinusWatcher
"""

from .clock import Clock, SystemClock, ManualClock
from .path_lock import PathLock, default_lock
from .recurrence import compute_next, first_fire_time
from .periodic import PeriodicRunner

__all__ = [
    'Clock',
    'SystemClock',
    'ManualClock',
    'PathLock',
    'default_lock',
    'compute_next',
    'first_fire_time',
    'PeriodicRunner',
]
