"""Tests for the periodic countdown refresh."""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from countdown import CountdownSnapshot, RefreshScheduler, wait_until

FIXED_NOW = datetime(2024, 3, 15, tzinfo=timezone.utc)
INTERVAL = 0.05


class Recorder:
    def __init__(self, wanted: int = 1) -> None:
        self.calls: list[CountdownSnapshot] = []
        self.threads: list[threading.Thread] = []
        self._wanted = wanted
        self.reached = threading.Event()

    def __call__(self, snapshot: CountdownSnapshot) -> None:
        self.calls.append(snapshot)
        self.threads.append(threading.current_thread())
        if len(self.calls) >= self._wanted:
            self.reached.set()


@pytest.fixture
def scheduler():
    sched = RefreshScheduler(clock=lambda: FIXED_NOW)
    yield sched
    sched.stop()


def test_start_calls_back_once_synchronously(scheduler):
    """Test the first snapshot arrives on the caller's thread before start returns."""
    recorder = Recorder()
    scheduler.start(timedelta(minutes=1), recorder)
    assert len(recorder.calls) == 1
    assert recorder.threads[0] is threading.current_thread()
    assert recorder.calls[0].days_remaining == 291
    assert scheduler.running


def test_ticks_repeat_every_interval(scheduler):
    recorder = Recorder(wanted=4)
    scheduler.start(INTERVAL, recorder)
    assert recorder.reached.wait(5)
    assert all(snap == recorder.calls[0] for snap in recorder.calls)
    assert recorder.threads[-1] is not threading.current_thread()


def test_no_ticks_after_stop(scheduler):
    """Test the call count stays put once stop() has returned."""
    recorder = Recorder(wanted=2)
    scheduler.start(INTERVAL, recorder)
    assert recorder.reached.wait(5)
    scheduler.stop()
    count = len(recorder.calls)
    time.sleep(INTERVAL * 5)
    assert len(recorder.calls) == count
    assert not scheduler.running


def test_stop_is_idempotent(scheduler):
    scheduler.stop()
    scheduler.start(timedelta(minutes=1), Recorder())
    scheduler.stop()
    scheduler.stop()
    assert not scheduler.running


def test_redundant_start_keeps_first_timer(scheduler):
    first = Recorder()
    second = Recorder()
    scheduler.start(timedelta(minutes=1), first)
    scheduler.start(timedelta(minutes=1), second)
    assert len(first.calls) == 1
    assert second.calls == []


def test_restart_after_stop(scheduler):
    recorder = Recorder()
    scheduler.start(timedelta(minutes=1), recorder)
    scheduler.stop()
    scheduler.start(timedelta(minutes=1), recorder)
    assert len(recorder.calls) == 2
    assert scheduler.running


@pytest.mark.parametrize("interval", [0, -1, timedelta(0), timedelta(seconds=-5)])
def test_rejects_non_positive_interval(scheduler, interval):
    with pytest.raises(ValueError):
        scheduler.start(interval, Recorder())
    assert not scheduler.running


def test_failing_first_callback_leaves_scheduler_idle(scheduler):
    def boom(snapshot):
        raise RuntimeError("render failed")

    with pytest.raises(RuntimeError):
        scheduler.start(INTERVAL, boom)
    assert not scheduler.running


def test_failing_tick_does_not_stop_refresh(scheduler, caplog):
    """Test a callback error on a background tick is logged and ticking goes on."""
    calls = []
    done = threading.Event()

    def flaky(snapshot):
        calls.append(snapshot)
        if len(calls) == 2:
            raise RuntimeError("render failed")
        if len(calls) >= 4:
            done.set()

    with caplog.at_level("ERROR", logger="countdown"):
        scheduler.start(INTERVAL, flaky)
        assert done.wait(5)
        scheduler.stop()
    assert "Countdown refresh callback failed" in caplog.text


def test_stop_from_inside_callback(scheduler):
    stopped = threading.Event()

    def stop_on_tick(snapshot):
        if threading.current_thread() is not threading.main_thread():
            scheduler.stop()
            stopped.set()

    scheduler.start(INTERVAL, stop_on_tick)
    assert stopped.wait(5)
    assert not scheduler.running


def test_stop_during_first_callback(scheduler):
    """Test stop() inside the synchronous first call prevents any ticking."""
    calls = []

    def stop_at_once(snapshot):
        calls.append(snapshot)
        scheduler.stop()

    scheduler.start(INTERVAL, stop_at_once)
    assert not scheduler.running
    time.sleep(INTERVAL * 5)
    assert len(calls) == 1


@pytest.mark.parametrize("interval", [float("nan"), float("inf"), float("-inf")])
def test_rejects_non_finite_interval(scheduler, interval):
    calls = []
    with pytest.raises(ValueError):
        scheduler.start(interval, calls.append)
    assert calls == []
    assert not scheduler.running


def test_interval_longer_than_wait_limit(scheduler):
    """Test an interval past threading.TIMEOUT_MAX waits instead of crashing."""
    recorder = Recorder()
    scheduler.start(timedelta(days=200000), recorder)
    time.sleep(INTERVAL * 2)
    assert scheduler.running
    assert scheduler._thread.is_alive()
    assert len(recorder.calls) == 1
    scheduler.stop()
    assert not scheduler.running


def test_wait_until_returns_when_stopped():
    stop_event = threading.Event()
    stop_event.set()
    assert wait_until(stop_event, time.monotonic() + threading.TIMEOUT_MAX * 2)


def test_wait_until_returns_at_deadline():
    assert not wait_until(threading.Event(), time.monotonic() + INTERVAL)


def test_compute_uses_clock():
    scheduler = RefreshScheduler(clock=lambda: FIXED_NOW)
    assert scheduler.compute().hours_remaining == 7007
