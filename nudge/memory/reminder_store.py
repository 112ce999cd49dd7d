"""
NUDGE Reminder Store - Locked, Atomic JSON Storage

Handles reading and writing reminders to ~/.nudge/reminders.json

Design:
- The document is an ordered JSON array of reminder records
- Every access is a read-modify-write transaction through update(),
  executed under one PathLock acquisition keyed by the storage path, so
  concurrent callers in this process queue instead of losing updates
- Saves are atomic (temp file + replace)
- A missing or corrupt file reads as an empty collection; corrupt files are
  quarantined first. Reminders are convenience data: availability wins
  over durability here, so back the file up if it matters.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypeVar

from nudge.core.path_lock import PathLock, default_lock
from nudge.errors import ReminderStoreError
from .atomic_file import AtomicFileStore
from .reminder_models import Reminder, ReminderStatus

logger = logging.getLogger(__name__)

R = TypeVar("R")
Mutator = Callable[[List[Reminder]], Tuple[Optional[List[Reminder]], R]]


class ReminderStore:
    """
    File-based reminder storage using JSON.

    Storage location: ~/.nudge/reminders.json (overridable)

    All mutation goes through update(mutator). The mutator receives the
    freshly loaded list and returns (new_list, result); new_list of None
    means "nothing to write".
    """

    DEFAULT_STORAGE_DIR = Path.home() / ".nudge"
    DEFAULT_STORAGE_FILE = "reminders.json"

    def __init__(self, storage_path: Optional[Path] = None, lock: Optional[PathLock] = None):
        """
        Initialize reminder store.

        Args:
            storage_path: Custom storage file path (default: ~/.nudge/reminders.json)
            lock: PathLock to serialize on (default: the process-wide lock)
        """
        if storage_path:
            self.storage_path = Path(storage_path)
        else:
            self.storage_path = self.DEFAULT_STORAGE_DIR / self.DEFAULT_STORAGE_FILE

        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = AtomicFileStore(self.storage_path, default=list)
        self._lock = lock or default_lock

        logger.info(f"ReminderStore initialized: {self.storage_path}")

    @property
    def lock(self) -> PathLock:
        return self._lock

    def _load_reminders(self) -> List[Reminder]:
        """Parse the document; invalid records are skipped with a warning."""
        data = self._file.load()

        if not isinstance(data, list):
            logger.warning(
                f"Reminder storage is not a JSON array ({type(data).__name__}), treating as empty"
            )
            self._file.quarantine()
            return []

        reminders = []
        for record in data:
            try:
                reminders.append(Reminder.from_dict(record))
            except Exception as e:
                logger.warning(f"Skipping invalid reminder: {e}")
        return reminders

    def _save_reminders(self, reminders: List[Reminder]):
        self._file.save([r.to_dict() for r in reminders])
        logger.debug(f"Saved {len(reminders)} reminders")

    @staticmethod
    def _check_unique(reminders: List[Reminder]):
        seen = set()
        for reminder in reminders:
            if reminder.id in seen:
                raise ReminderStoreError(f"Duplicate reminder id: {reminder.id}")
            seen.add(reminder.id)

    def update(self, mutator: Mutator) -> R:
        """
        Run one read-modify-write transaction.

        Args:
            mutator: Called with the current reminders; returns
                     (new_reminders_or_None, result)

        Returns:
            The mutator's result

        Raises:
            ReminderStoreError: Bad mutator output or the write failed;
                                the stored file is unchanged
        """
        def transaction():
            reminders = self._load_reminders()
            outcome = mutator(reminders)
            try:
                new_reminders, result = outcome
            except (TypeError, ValueError):
                raise ReminderStoreError(
                    "Mutator must return a (reminders, result) tuple"
                ) from None

            if new_reminders is not None:
                new_reminders = list(new_reminders)
                self._check_unique(new_reminders)
                self._save_reminders(new_reminders)
            return result

        return self._lock.with_lock(self.storage_path, transaction)

    def snapshot(self) -> List[Reminder]:
        """Consistent copy of the whole collection (read under the lock)."""
        return self.update(lambda reminders: (None, reminders))

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        """
        Get a specific reminder by ID.

        Returns:
            Reminder if found, None otherwise
        """
        for reminder in self.snapshot():
            if reminder.id == reminder_id:
                return reminder
        return None

    def get_stats(self) -> dict:
        """
        Get storage statistics.

        Returns:
            Dict with reminder counts by status
        """
        reminders = self.snapshot()
        stats = {'total': len(reminders)}
        for status in ReminderStatus:
            stats[status.value] = sum(1 for r in reminders if r.status == status)
        return stats
