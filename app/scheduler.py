"""
Periodic dispatch scheduler.

Runs the batch executor on a fixed interval from a single background thread.
Start/stop are idempotent and safe to call from concurrent request handlers.
"""

import logging
import threading
import time
from typing import Optional

from app.config import Settings
from app.executor import SendBatchExecutor
from app.logging_utils import tick_context
from app.metrics import record_tick, set_scheduler_running
from app.utils import Deadline

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 120
DEFAULT_TICK_TIMEOUT_SECONDS = 30
# Headroom on top of the webhook timeout for store reads/writes in a tick
TICK_MARGIN_SECONDS = 10


class Scheduler:
    """
    Owns the tick timer and the background loop.

    States are idle (no thread) and running (one loop thread). The lock
    guards every transition, so at most one loop exists at any time.
    """

    def __init__(self, executor: SendBatchExecutor, settings: Settings):
        self.executor = executor
        self.settings = settings
        self._lock = threading.Lock()
        self._running = False
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the loop; no-op if already running."""
        with self._lock:
            if self._running:
                return

            interval = self._tick_interval()
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._loop,
                args=(interval, self._stop_event),
                name="dispatch-scheduler",
                daemon=True,
            )
            self._running = True
            self._thread.start()
            set_scheduler_running(True)
            logger.info(f"Scheduler started (interval={interval}s)")

    def stop(self) -> None:
        """
        Stop the loop and wait for it to exit; no-op if idle.

        A tick already in progress is allowed to finish before this returns.
        """
        with self._lock:
            if not self._running:
                return

            self._stop_event.set()
            self._thread.join()
            self._thread = None
            self._stop_event = None
            self._running = False
            set_scheduler_running(False)
            logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def _tick_interval(self) -> float:
        interval = self.settings.SCHEDULE_SECONDS
        if interval <= 0:
            interval = DEFAULT_INTERVAL_SECONDS
        return interval

    def _tick_timeout(self) -> float:
        timeout = self.settings.WEBHOOK_TIMEOUT_SECONDS + TICK_MARGIN_SECONDS
        if timeout <= 0:
            timeout = DEFAULT_TICK_TIMEOUT_SECONDS
        return timeout

    def _loop(self, interval: float, stop_event: threading.Event) -> None:
        next_tick = time.monotonic() + interval
        # wait() returns True once stop is signalled, which wins over a due tick
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self._tick()

            # Ticks missed while a slow batch ran are dropped, not queued
            now = time.monotonic()
            next_tick += interval
            while next_tick <= now:
                next_tick += interval

    def _tick(self) -> None:
        with tick_context():
            deadline = Deadline.after(self._tick_timeout())
            try:
                self.executor.execute(deadline)
            except Exception as e:
                logger.error(f"sendbatch err: {e}", exc_info=True)
                record_tick("error")
                return
            record_tick("ok")
