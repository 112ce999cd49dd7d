"""
NUDGE Atomic File Store - Crash-Safe JSON Documents

Design:
- Writes go to a temporary sibling, are fsync'd, then os.replace'd onto
  the real path. Readers never observe a half-written file and a crash
  mid-write leaves the previous version intact.
- Reads never raise for a missing or corrupt file. A corrupt file is moved
  aside under a quarantine name and the default document is returned.
- No locking here; callers hold a PathLock around read-modify-write.
"""

import json
import logging
import os
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from nudge.errors import AtomicWriteError

logger = logging.getLogger(__name__)


class AtomicFileStore:
    """
    One JSON document at a fixed path.

    Usage:
        store = AtomicFileStore(path, default=list)
        data = store.load()
        store.save(data)
    """

    def __init__(self, path: Path, default: Callable[[], Any] = list):
        """
        Args:
            path: Document location (parent directories are created on save)
            default: Factory for the document returned when the file is
                     missing or unreadable
        """
        self.path = Path(path)
        self._default = default

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Any:
        """
        Read and parse the document.

        Returns:
            Parsed JSON, or default() when missing or corrupt
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return self._default()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Corrupted JSON in {self.path}: {e}")
            self.quarantine()
            return self._default()
        except OSError as e:
            logger.warning(f"Cannot read {self.path}, using empty document: {e}")
            return self._default()

    def save(self, data: Any):
        """
        Atomically replace the document.

        Raises:
            AtomicWriteError: If the document cannot be written; the previous
                              file content is left untouched
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(f"{self.path.name}.tmp.{secrets.token_hex(8)}")

        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logger.warning(f"Could not remove temp file {temp_path}: {cleanup_error}")
            logger.error(f"Failed to write {self.path}: {e}", exc_info=True)
            raise AtomicWriteError(f"Cannot write {self.path}: {e}") from e

    def quarantine(self) -> Optional[Path]:
        """
        Move a corrupt document aside so it can be inspected later.

        Returns:
            Quarantine path, or None if nothing was moved
        """
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            if not self.path.exists():
                return None
            os.replace(self.path, target)
            logger.warning(f"Quarantined corrupted file to: {target}")
            return target
        except OSError as e:
            logger.error(f"Failed to quarantine {self.path}: {e}", exc_info=True)
            return None
