"""
Daily trigger for the sweep.

A single background thread sleeps until the next local trigger time and runs
the callback on that thread, so two runs never overlap. A run that overshoots
the next trigger simply delays it.
"""

import logging
import threading
from datetime import datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from ..lifecycle.schema import utc_now

logger = logging.getLogger(__name__)


class DailyScheduler:
    """
    Usage:
        scheduler = DailyScheduler(sweeper.run_daily_sweep, hour=2, minute=0, tz="Africa/Tunis")
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        callback: Callable[[], object],
        hour: int = 2,
        minute: int = 0,
        tz: str = "Africa/Tunis",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.callback = callback
        self.trigger = time(hour=hour, minute=minute)
        self.zone = ZoneInfo(tz)
        self.clock = clock or utc_now
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_run_after(self, now: datetime) -> datetime:
        """Next trigger strictly after ``now``, as an aware UTC datetime."""
        local = now.astimezone(self.zone)
        candidate = datetime.combine(local.date(), self.trigger, tzinfo=self.zone)
        if candidate <= local:
            candidate = datetime.combine(local.date() + timedelta(days=1), self.trigger, tzinfo=self.zone)
        return candidate.astimezone(now.tzinfo or self.zone)

    def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-sweep", daemon=True)
        self._thread.start()
        logger.info(
            f"Daily sweep scheduled at {self.trigger:%H:%M} {self.zone.key}, "
            f"next run {self.next_run_after(self.clock()).isoformat()}"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def _loop(self) -> None:
        last_trigger: Optional[datetime] = None
        while not self._stop.is_set():
            now = self.clock()
            # Never fire the same trigger twice, even if the wall clock lags
            trigger = self.next_run_after(max(now, last_trigger) if last_trigger else now)
            wait = max(0.0, (trigger - now).total_seconds())
            if self._stop.wait(wait):
                break
            last_trigger = trigger
            try:
                self.callback()
            except Exception as e:
                logger.exception(f"Scheduled sweep failed: {e}")
