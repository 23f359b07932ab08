"""Automatic synchronization triggers.

The scheduler owns the periodic timer and the sync-on-open / sync-on-save
options. It guarantees that at most one attempt runs at a time: the timer
is stopped before an attempt starts and re-armed only once its result is
known, because two concurrent attempts would race on the ``.bak`` rename.
"""

import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Optional

from ..config import SyncSettings
from .reporter import SyncReporter
from .result import SyncResultCode

logger = logging.getLogger(__name__)

# Auto-sync intervals offered to the user, in minutes (0 = off)
INTERVAL_CHOICES: tuple[int, ...] = (0, 30, 60, 120, 240, 360, 720, 1440)

TimerFactory = Callable[[float, Callable[[], None]], Any]


def format_interval(minutes: int) -> str:
    """Format an auto-sync interval.

    Examples:
        >>> format_interval(0)
        'Off'
        >>> format_interval(30)
        '30m'
        >>> format_interval(120)
        '2h'
    """
    if minutes <= 0:
        return "Off"
    hours, rest = divmod(minutes, 60)
    if hours == 0:
        return f"{rest}m"
    if rest == 0:
        return f"{hours}h"
    return f"{hours}h{rest:02d}"


def format_countdown(remaining: timedelta) -> str:
    """Format the time left until the next automatic sync.

    Examples:
        >>> format_countdown(timedelta(hours=1, minutes=5))
        '1h05'
        >>> format_countdown(timedelta(minutes=12, seconds=30))
        '0h12'
        >>> format_countdown(timedelta(seconds=42))
        '42s'
    """
    total = max(remaining.total_seconds(), 0)
    hours = int(total // 3600)
    minutes = int((total % 3600) // 60)
    if hours > 0 or minutes > 0:
        return f"{hours}h{minutes:02d}"
    return f"{int(total)}s"


def _default_timer(interval: float, function: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


class AutoSyncScheduler:
    """Runs synchronization attempts on database events and on a timer."""

    def __init__(
        self,
        run_attempt: Callable[[bool], SyncResultCode],
        settings: SyncSettings,
        reporter: Optional[SyncReporter] = None,
        timer_factory: TimerFactory = _default_timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize scheduler.

        Args:
            run_attempt: Runs one attempt; receives the attended flag
            settings: Sync options (timer interval, sync on open/save)
            reporter: Reporter for results and status lines
            timer_factory: Creates a startable/cancellable timer
                ``factory(seconds, callback)``
            clock: Monotonic clock in seconds
        """
        self.run_attempt = run_attempt
        self.settings = settings
        self.reporter = reporter or SyncReporter()
        self.timer_factory = timer_factory
        self.clock = clock

        self._attempt_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._timer: Optional[Any] = None
        self._next_sync: Optional[float] = None
        self._database_open = False

    @property
    def database_open(self) -> bool:
        return self._database_open

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def next_sync_in(self) -> Optional[timedelta]:
        """Time left until the timer fires, or None if it is not armed."""
        with self._state_lock:
            if self._timer is None or self._next_sync is None:
                return None
            return timedelta(seconds=max(self._next_sync - self.clock(), 0))

    def countdown_status(self) -> Optional[str]:
        remaining = self.next_sync_in()
        if remaining is None:
            return None
        return f"Auto-sync: {format_countdown(remaining)}"

    # ------------------------------------------------------------------
    # Lifecycle hooks called by the host application
    # ------------------------------------------------------------------

    def on_database_opened(self) -> Optional[SyncResultCode]:
        """Arm the timer and synchronize if sync-on-open is enabled."""
        self._database_open = True
        self._arm_timer()
        if self.settings.sync_on_open:
            return self.sync_now(attended=True)
        return None

    def on_database_saved(self, attended: bool) -> Optional[SyncResultCode]:
        """Synchronize after a save if sync-on-save is enabled.

        Args:
            attended: False when the host window is hidden, minimized or
                blocked, so the attempt must not prompt
        """
        if not self.settings.sync_on_save or not self._database_open:
            return None
        return self.sync_now(attended=attended)

    def on_database_closed(self) -> None:
        """Stop automatic synchronization for the closed database.

        Blocks until an attempt in flight has finished, so the caller may
        close the database afterwards. Must not be called from inside
        ``run_attempt``.
        """
        self._database_open = False
        with self._attempt_lock:
            self._cancel_timer()

    def set_interval(self, minutes: int) -> None:
        """Change the auto-sync interval and re-arm the timer."""
        self.settings.timer_minutes = max(minutes, 0)
        self._cancel_timer()
        if self.settings.timer_minutes == 0:
            self.reporter.status("Auto-sync disabled")
            return
        self._arm_timer()

    def stop(self) -> None:
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def sync_now(self, attended: bool = True) -> Optional[SyncResultCode]:
        """Run one attempt unless another one is in flight.

        Returns:
            The result code, or None if an attempt was already running
        """
        if not self._attempt_lock.acquire(blocking=False):
            logger.info("A synchronization is already running, skipping")
            return None

        try:
            self._cancel_timer()
            self.reporter.status("Synchronizing...")
            code = self.run_attempt(attended)
            self.reporter.report(code, attended)
        finally:
            self._attempt_lock.release()

        # Re-arm only once the terminal result is known
        if self._database_open:
            self._arm_timer()
        return code

    def _on_timer(self) -> None:
        with self._state_lock:
            self._timer = None
            self._next_sync = None
        if self._database_open:
            self.sync_now(attended=False)

    def _arm_timer(self) -> None:
        with self._state_lock:
            self._cancel_timer()
            minutes = self.settings.timer_minutes
            if minutes <= 0 or not self._database_open:
                return
            seconds = minutes * 60.0
            self._next_sync = self.clock() + seconds
            self._timer = self.timer_factory(seconds, self._on_timer)
            self._timer.start()
            logger.debug("Auto-sync armed for %s", format_interval(minutes))

    def _cancel_timer(self) -> None:
        with self._state_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._next_sync = None
