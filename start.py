"""
NUDGE Start - Main Entry Point

Runs the reminder daemon:
- SchedulerLoop: delivers due reminders every poll_interval seconds
- TMinusWatcher: notifies ahead of fixed daily events, once per day

Configuration comes from NUDGE_* environment variables (and a .env file in
the working directory, if present). See nudge/config.py.
"""

import logging
import signal
import threading
from pathlib import Path

from nudge.config import SchedulerConfig
from nudge.core.clock import SystemClock
from nudge.core.scheduler import SchedulerLoop
from nudge.core.tminus import TMinusWatcher, load_daily_events
from nudge.delivery.notifiers import LogNotifier, Notifier, WebhookNotifier
from nudge.memory.fire_guard import FireGuard
from nudge.memory.reminder_store import ReminderStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_notifier(config: SchedulerConfig) -> Notifier:
    """Webhook delivery when a URL is configured, log-only otherwise."""
    if config.webhook_url:
        return WebhookNotifier(config.webhook_url, timeout=config.webhook_timeout)
    logger.warning("NUDGE_WEBHOOK_URL not set, notifications will only be logged")
    return LogNotifier()


def main():
    """Main entry point"""
    print("=" * 70)
    print("NUDGE - Reminder Scheduler")
    print("=" * 70)
    print()

    try:
        config = SchedulerConfig.from_env(Path(".env"))
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        print(f"\nConfiguration error: {e}\n")
        return 1

    clock = SystemClock(config.tz)
    store = ReminderStore(config.reminders_path)
    fire_guard = FireGuard(config.ledger_path, clock)
    notifier = build_notifier(config)

    scheduler = SchedulerLoop(store, notifier, clock, config)
    watcher = TMinusWatcher(
        lambda: load_daily_events(config.events_path),
        fire_guard,
        notifier,
        clock,
        config,
    )

    stats = store.get_stats()
    print(f"✓ Data directory : {config.data_dir}")
    print(f"✓ Timezone       : {config.timezone}")
    print(f"✓ Reminders      : {stats['total']} total, {stats['active']} active, {stats['paused']} paused")
    print(f"✓ Delivery       : {'webhook' if config.webhook_url else 'log only'}")
    print()

    shutdown = threading.Event()

    def _on_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGTERM, _on_signal)

    scheduler.start()
    watcher.start()
    print("Running. Press Ctrl+C to stop.\n")

    try:
        while not shutdown.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("\n\nInterrupted. Goodbye!")

    # =========================================================================
    # Clean shutdown
    # =========================================================================
    watcher.stop()
    scheduler.stop()
    if isinstance(notifier, WebhookNotifier):
        notifier.close()

    return 0


if __name__ == "__main__":
    exit(main())
