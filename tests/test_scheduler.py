"""
Tests for the periodic dispatch scheduler.

Intervals are a few tens of milliseconds; assertions poll with wait_for
instead of relying on exact timing.
"""

import threading
import time
from types import SimpleNamespace

import pytest

from app.config import Settings
from app.scheduler import Scheduler
from app.storage import StorageError
from app.utils import Deadline

from conftest import scheduler_threads, wait_for


INTERVAL = 0.03


class RecordingExecutor:
    """Counts execute() calls and tracks overlapping executions."""

    def __init__(self, duration: float = 0.0, fail_first: int = 0):
        self.duration = duration
        self.fail_first = fail_first
        self.calls = 0
        self.finished = 0
        self.active = 0
        self.max_active = 0
        self.deadlines = []
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def execute(self, deadline: Deadline):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.deadlines.append(deadline)
            call = self.calls
        self.entered.set()
        try:
            if self.duration:
                time.sleep(self.duration)
            if call <= self.fail_first:
                raise StorageError("database unavailable")
        finally:
            with self._lock:
                self.active -= 1
                self.finished += 1


def make_settings(**overrides) -> Settings:
    values = {"SCHEDULE_SECONDS": INTERVAL, "WEBHOOK_TIMEOUT_SECONDS": 5}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_scheduler():
    """Build schedulers and make sure every one is stopped after the test."""
    created = []

    def factory(executor, settings=None):
        scheduler = Scheduler(executor, settings or make_settings())
        created.append(scheduler)
        return scheduler

    yield factory

    for scheduler in created:
        scheduler.stop()


class TestLifecycle:
    """Test start/stop state transitions."""

    def test_initially_idle(self, make_scheduler):
        scheduler = make_scheduler(RecordingExecutor())
        assert scheduler.is_running() is False

    def test_start_then_stop(self, make_scheduler):
        scheduler = make_scheduler(RecordingExecutor())

        scheduler.start()
        assert scheduler.is_running() is True
        assert len(scheduler_threads()) == 1

        scheduler.stop()
        assert scheduler.is_running() is False
        assert scheduler_threads() == []

    def test_stop_while_idle_is_noop(self, make_scheduler):
        scheduler = make_scheduler(RecordingExecutor())

        scheduler.stop()
        scheduler.stop()

        assert scheduler.is_running() is False

    def test_restart_after_stop(self, make_scheduler):
        executor = RecordingExecutor()
        scheduler = make_scheduler(executor)

        scheduler.start()
        scheduler.stop()
        calls_after_first_run = executor.calls
        scheduler.start()

        assert wait_for(lambda: executor.calls > calls_after_first_run)
        assert len(scheduler_threads()) == 1


class TestTicking:
    """Test periodic execution."""

    def test_executes_on_each_interval(self, make_scheduler):
        executor = RecordingExecutor()
        scheduler = make_scheduler(executor)

        scheduler.start()

        assert wait_for(lambda: executor.calls >= 3)

    def test_no_tick_before_first_interval(self, make_scheduler):
        executor = RecordingExecutor()
        scheduler = make_scheduler(executor, make_settings(SCHEDULE_SECONDS=60))

        scheduler.start()
        time.sleep(0.1)

        assert executor.calls == 0

    def test_double_start_runs_single_loop(self, make_scheduler):
        executor = RecordingExecutor(duration=0.01)
        scheduler = make_scheduler(executor)

        start = time.monotonic()
        scheduler.start()
        scheduler.start()
        time.sleep(0.3)
        scheduler.stop()
        elapsed = time.monotonic() - start

        assert len(scheduler_threads()) == 0
        assert executor.max_active == 1
        # One loop yields at most one tick per interval
        assert executor.calls <= int(elapsed / INTERVAL) + 1

    def test_concurrent_start_calls_single_loop(self, make_scheduler):
        executor = RecordingExecutor()
        scheduler = make_scheduler(executor)
        barrier = threading.Barrier(8)

        def call_start():
            barrier.wait()
            scheduler.start()

        callers = [threading.Thread(target=call_start) for _ in range(8)]
        for t in callers:
            t.start()
        for t in callers:
            t.join()

        assert scheduler.is_running() is True
        assert len(scheduler_threads()) == 1

    def test_slow_executions_never_overlap(self, make_scheduler):
        executor = RecordingExecutor(duration=INTERVAL * 3)
        scheduler = make_scheduler(executor)

        scheduler.start()
        assert wait_for(lambda: executor.calls >= 3)
        scheduler.stop()

        assert executor.max_active == 1

    def test_executor_error_does_not_stop_loop(self, make_scheduler):
        executor = RecordingExecutor(fail_first=2)
        scheduler = make_scheduler(executor)

        scheduler.start()

        assert wait_for(lambda: executor.calls >= 4)
        assert scheduler.is_running() is True

    def test_tick_deadline_adds_margin_to_webhook_timeout(self, make_scheduler):
        executor = RecordingExecutor()
        scheduler = make_scheduler(executor, make_settings(WEBHOOK_TIMEOUT_SECONDS=5))

        scheduler.start()
        assert wait_for(lambda: executor.calls >= 1)
        scheduler.stop()

        remaining = executor.deadlines[0].remaining()
        assert 13 < remaining <= 15


class TestStopWaitsForInFlightTick:
    """stop() returns only after a running execute() has finished."""

    def test_stop_blocks_until_execute_finishes(self, make_scheduler):
        executor = RecordingExecutor(duration=0.3)
        scheduler = make_scheduler(executor)

        scheduler.start()
        assert executor.entered.wait(2)
        scheduler.stop()

        assert executor.active == 0
        assert executor.finished == executor.calls

    def test_no_tick_after_stop(self, make_scheduler):
        executor = RecordingExecutor(duration=0.05)
        scheduler = make_scheduler(executor)

        scheduler.start()
        assert executor.entered.wait(2)
        scheduler.stop()
        calls_at_stop = executor.calls

        time.sleep(INTERVAL * 5)

        assert executor.calls == calls_at_stop

    def test_concurrent_stop_calls(self, make_scheduler):
        executor = RecordingExecutor(duration=0.1)
        scheduler = make_scheduler(executor)
        scheduler.start()
        assert executor.entered.wait(2)

        stoppers = [threading.Thread(target=scheduler.stop) for _ in range(4)]
        for t in stoppers:
            t.start()
        for t in stoppers:
            t.join()

        assert scheduler.is_running() is False
        assert scheduler_threads() == []
        assert executor.active == 0


class TestFallbacks:
    """Non-positive configuration values fall back to defaults."""

    def test_interval_falls_back_to_120_seconds(self):
        scheduler = Scheduler(RecordingExecutor(), make_settings(SCHEDULE_SECONDS=0))
        assert scheduler._tick_interval() == 120

    def test_negative_interval_falls_back(self):
        scheduler = Scheduler(RecordingExecutor(), make_settings(SCHEDULE_SECONDS=-5))
        assert scheduler._tick_interval() == 120

    def test_configured_interval_kept(self):
        scheduler = Scheduler(RecordingExecutor(), make_settings(SCHEDULE_SECONDS=45))
        assert scheduler._tick_interval() == 45

    def test_tick_timeout_is_webhook_timeout_plus_margin(self):
        scheduler = Scheduler(RecordingExecutor(), make_settings(WEBHOOK_TIMEOUT_SECONDS=30))
        assert scheduler._tick_timeout() == 40

    def test_tick_timeout_falls_back_when_non_positive(self):
        settings = SimpleNamespace(SCHEDULE_SECONDS=INTERVAL, WEBHOOK_TIMEOUT_SECONDS=-20)
        scheduler = Scheduler(RecordingExecutor(), settings)
        assert scheduler._tick_timeout() == 30
