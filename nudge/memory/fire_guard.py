"""
NUDGE Fire Guard - Daily Idempotency Ledger

Keeps the set of calendar-anchored notifications already delivered today,
so a one-minute poll that matches the same minute twice does not notify
twice.

Ledger file: {"date": "YYYY-MM-DD", "firedSignatures": [...]}

Rules:
- Signatures are only valid for the ledger's date. Whenever the clock's
  date (in its timezone) differs from the stored date, the ledger is
  replaced by an empty one for today.
- The rollover check and every read/write happen inside the same PathLock
  acquisition, so two evaluators can never both roll over and clobber
  each other's first mark.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from nudge.core.clock import Clock
from nudge.core.path_lock import PathLock, default_lock
from .atomic_file import AtomicFileStore

logger = logging.getLogger(__name__)


class FireGuard:
    """
    Day-scoped set of fired signatures, persisted atomically.

    Usage:
        guard = FireGuard(path, clock)
        sig = FireGuard.signature(today, destination, "Algorithms", "08:00")
        if not guard.has_fired(sig):
            notify(...)
            guard.mark_fired(sig)
    """

    def __init__(self, path: Path, clock: Clock, lock: Optional[PathLock] = None):
        self.path = Path(path)
        self.clock = clock
        self._file = AtomicFileStore(self.path, default=dict)
        self._lock = lock or default_lock

    @staticmethod
    def signature(
        date: str,
        destination: str,
        subject: str,
        clock_time: str,
        prefix: str = "T15"
    ) -> str:
        """
        Deterministic id for one calendar-anchored occurrence.

        Args:
            date: Calendar day, YYYY-MM-DD
            destination: Channel handle the notification goes to
            subject: What the event is about (e.g. course name)
            clock_time: Scheduled local time, HH:MM
            prefix: Notification family

        Returns:
            "<prefix>:<date>:<destination>:<subject>:<clock_time>"
        """
        return f"{prefix}:{date}:{destination}:{subject}:{clock_time}"

    def today(self) -> str:
        return self.clock.today()

    def _read(self) -> Tuple[str, List[str]]:
        """Load the ledger, rolling it over if the date moved. Lock must be held."""
        today = self.today()
        data = self._file.load()

        if not isinstance(data, dict) or not isinstance(data.get("date"), str):
            if self._file.exists():
                logger.warning(f"Invalid fire-guard ledger at {self.path}, starting fresh")
            self._write(today, [])
            return today, []

        if data["date"] != today:
            logger.info(f"FireGuard daily reset: {data['date']} -> {today}")
            self._write(today, [])
            return today, []

        fired = data.get("firedSignatures") or []
        return today, [s for s in fired if isinstance(s, str)]

    def _write(self, date: str, fired: List[str]):
        self._file.save({"date": date, "firedSignatures": fired})

    def has_fired(self, signature: str) -> bool:
        """Whether signature was marked today."""
        with self._lock.hold(self.path):
            _, fired = self._read()
            return signature in fired

    def mark_fired(self, signature: str):
        """Record signature for today. Marking twice is a no-op."""
        with self._lock.hold(self.path):
            date, fired = self._read()
            if signature in fired:
                return
            fired.append(signature)
            self._write(date, fired)
            logger.debug(f"FireGuard marked: {signature}")

    def fired_signatures(self) -> List[str]:
        with self._lock.hold(self.path):
            return list(self._read()[1])

    def reset(self):
        """Drop every signature (ledger restarts for today)."""
        with self._lock.hold(self.path):
            self._write(self.today(), [])
            logger.info("FireGuard reset")

    def set_date(self, date: str):
        """
        Overwrite the ledger date, keeping its signatures.

        Setting a past date makes the next access roll the ledger over,
        which is how tests exercise the daily reset.
        """
        with self._lock.hold(self.path):
            _, fired = self._read()
            self._write(date, fired)
