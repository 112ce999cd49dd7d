"""
NUDGE Configuration

All tunables for the scheduler live in one dataclass. The core never reads
the environment itself: start.py builds a SchedulerConfig (usually via
from_env) and passes it down explicitly.

Environment variables (all optional, read by from_env):
    NUDGE_DATA_DIR              - Storage directory (default: ~/.nudge)
    NUDGE_TIMEZONE              - IANA timezone for calendar maths (default: Asia/Jakarta)
    NUDGE_POLL_INTERVAL         - Reminder loop period in seconds (default: 30)
    NUDGE_TMINUS_POLL_INTERVAL  - T-minus watcher period in seconds (default: 60)
    NUDGE_MIN_INTERVAL          - Floor for interval schedules in seconds (default: 60)
    NUDGE_REFIRE_SUPPRESSION    - Re-fire suppression window in seconds (default: 20)
    NUDGE_TMINUS_MINUTES        - Minutes before a daily event to notify (default: 15)
    NUDGE_WEBHOOK_URL           - Deliver notifications to this URL (default: log only)
    NUDGE_WEBHOOK_TIMEOUT       - Per-delivery HTTP timeout in seconds (default: 10)
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "NUDGE_"


@dataclass
class SchedulerConfig:
    """Explicit configuration for every scheduler component."""
    data_dir: Path = field(default_factory=lambda: Path.home() / ".nudge")
    timezone: str = "Asia/Jakarta"

    poll_interval: float = 30.0
    tminus_poll_interval: float = 60.0
    min_interval: float = 60.0
    refire_suppression: float = 20.0

    reminders_file: str = "reminders.json"
    ledger_file: str = "cron.state.json"
    events_file: str = "events.json"

    list_limit: int = 50
    default_once_delay: float = 300.0
    default_hour: int = 7
    default_minute: int = 0
    tminus_minutes: int = 15

    webhook_url: Optional[str] = None
    webhook_timeout: float = 10.0

    def __post_init__(self):
        self.data_dir = Path(self.data_dir).expanduser()
        if self.poll_interval <= 0 or self.tminus_poll_interval <= 0:
            raise ValueError("poll intervals must be positive")
        if self.min_interval < 0 or self.refire_suppression < 0:
            raise ValueError("min_interval and refire_suppression cannot be negative")
        if not 0 <= self.default_hour <= 23 or not 0 <= self.default_minute <= 59:
            raise ValueError("default_hour/default_minute out of range")
        # Fails fast on an unknown zone name
        ZoneInfo(self.timezone)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def reminders_path(self) -> Path:
        return self.data_dir / self.reminders_file

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / self.ledger_file

    @property
    def events_path(self) -> Path:
        return self.data_dir / self.events_file

    @property
    def min_interval_delta(self) -> timedelta:
        return timedelta(seconds=self.min_interval)

    @property
    def refire_suppression_delta(self) -> timedelta:
        return timedelta(seconds=self.refire_suppression)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> "SchedulerConfig":
        """
        Build a config from NUDGE_* environment variables.

        Args:
            env_file: Optional .env file loaded into os.environ first
                      (existing variables win)
            environ: Mapping to read instead of os.environ (for tests)

        Returns:
            SchedulerConfig with defaults for anything unset
        """
        if env_file is not None and Path(env_file).exists():
            load_dotenv(env_file)
            logger.debug(f"Loaded environment from {env_file}")

        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value and value.strip() else None

        kwargs = {}
        if get("DATA_DIR"):
            kwargs["data_dir"] = Path(get("DATA_DIR"))
        if get("TIMEZONE"):
            kwargs["timezone"] = get("TIMEZONE")
        if get("WEBHOOK_URL"):
            kwargs["webhook_url"] = get("WEBHOOK_URL")

        float_fields = {
            "POLL_INTERVAL": "poll_interval",
            "TMINUS_POLL_INTERVAL": "tminus_poll_interval",
            "MIN_INTERVAL": "min_interval",
            "REFIRE_SUPPRESSION": "refire_suppression",
            "WEBHOOK_TIMEOUT": "webhook_timeout",
        }
        for env_name, attr in float_fields.items():
            raw = get(env_name)
            if raw is not None:
                try:
                    kwargs[attr] = float(raw)
                except ValueError as e:
                    raise ValueError(f"{ENV_PREFIX}{env_name} must be a number, got {raw!r}") from e

        raw = get("TMINUS_MINUTES")
        if raw is not None:
            try:
                kwargs["tminus_minutes"] = int(raw)
            except ValueError as e:
                raise ValueError(f"{ENV_PREFIX}TMINUS_MINUTES must be an integer, got {raw!r}") from e

        return cls(**kwargs)
