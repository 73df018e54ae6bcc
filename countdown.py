"""Time left until the end of the year and the timer that keeps it fresh."""

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

LOGGER = logging.getLogger("countdown")

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class CountdownSnapshot:
    months_remaining: int
    weeks_remaining: int
    days_remaining: int
    hours_remaining: int

    def cards(self) -> tuple[tuple[str, int], ...]:
        return (
            ("Months", self.months_remaining),
            ("Weeks", self.weeks_remaining),
            ("Days", self.days_remaining),
            ("Hours", self.hours_remaining),
        )


def end_of_year(now: datetime) -> datetime:
    return datetime(now.year, 12, 31, 23, 59, 59, tzinfo=now.tzinfo)


def compute_time_remaining(now: Optional[datetime] = None) -> CountdownSnapshot:
    """Break the time left until Dec 31 23:59:59 into cards.

    Naive datetimes are taken as host local time. Months follow the
    calendar, the rest follow the duration. Days and hours are truncated
    separately, and past the last second of the year the values go to zero
    or below instead of raising.
    """
    if now is None:
        now = datetime.now()
    total_seconds = end_of_year(now).timestamp() - now.timestamp()
    total_hours = int(total_seconds / SECONDS_PER_HOUR)
    total_days = int(total_seconds / SECONDS_PER_DAY)
    return CountdownSnapshot(
        months_remaining=12 - now.month,
        weeks_remaining=int(total_days / 7),
        days_remaining=total_days,
        hours_remaining=total_hours,
    )


def interval_seconds(interval: Union[timedelta, float, int]) -> float:
    if isinstance(interval, timedelta):
        seconds = interval.total_seconds()
    else:
        seconds = float(interval)
    if not math.isfinite(seconds) or seconds <= 0:
        raise ValueError(f"Refresh interval must be positive, got {interval!r}")
    return seconds


def wait_until(stop_event: threading.Event, deadline: float) -> bool:
    """Block until ``deadline`` on the monotonic clock or until stopped."""
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return stop_event.is_set()
        # Event.wait overflows above TIMEOUT_MAX, so long waits go in slices.
        if stop_event.wait(min(remaining, threading.TIMEOUT_MAX)):
            return True


class RefreshScheduler:
    """Recompute the countdown on a fixed interval and hand it to a callback.

    The callback runs once on the caller's thread inside ``start`` and then
    on a background thread, so a GUI caller has to move the snapshot onto
    its own thread before touching widgets.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._stop_event is not None

    def compute(self) -> CountdownSnapshot:
        return compute_time_remaining(self._clock())

    def start(
        self,
        interval: Union[timedelta, float, int],
        on_tick: Callable[[CountdownSnapshot], None],
    ) -> None:
        seconds = interval_seconds(interval)
        with self._lock:
            if self._stop_event is not None:
                LOGGER.debug("Refresh scheduler already running; start ignored")
                return
            # Registered before the first callback so it can stop() us.
            stop_event = threading.Event()
            self._stop_event = stop_event
            try:
                on_tick(self.compute())
            except Exception:
                if self._stop_event is stop_event:
                    self._stop_event = None
                raise
            if stop_event.is_set():
                LOGGER.debug("Refresh scheduler stopped during first refresh")
                return
            thread = threading.Thread(
                target=self._run,
                args=(stop_event, seconds, on_tick),
                name="countdown-refresh",
                daemon=True,
            )
            self._thread = thread
            thread.start()
        LOGGER.debug("Refresh scheduler started every %.1fs", seconds)

    def stop(self) -> None:
        with self._lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None
            if stop_event is None:
                return
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        LOGGER.debug("Refresh scheduler stopped")

    def _run(
        self,
        stop_event: threading.Event,
        seconds: float,
        on_tick: Callable[[CountdownSnapshot], None],
    ) -> None:
        deadline = time.monotonic() + seconds
        while not wait_until(stop_event, deadline):
            deadline += seconds
            now = time.monotonic()
            if deadline <= now:
                # Missed ticks (slow callback, suspended host) are not replayed.
                deadline = now + seconds
            with self._lock:
                # stop() sets the event while holding the lock.
                if stop_event.is_set():
                    break
                try:
                    on_tick(self.compute())
                except Exception:
                    LOGGER.exception("Countdown refresh callback failed")
