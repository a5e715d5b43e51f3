"""Fixed-rate task threads sharing one shutdown event."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from servoloop.control.loop_timer import LoopTimer

logger = logging.getLogger(__name__)

# p99 period this far above target (percent) is reported as degraded
DEGRADED_PCT = 25.0


class PeriodicTask:
    """
    Calls fn at rate_hz on its own daemon thread until the shutdown event is set.

    An exception from fn is logged and sets the shutdown event: every failure
    is terminal for the whole runtime.

    Args:
        name: Thread name, also used in log lines.
        fn: Called once per tick with no arguments; its return value is ignored.
        rate_hz: Tick rate.
        shutdown_event: Shared shutdown token.
        start_delay_s: Wait before the first tick; shutdown cuts it short.
        status_log_interval_s: Seconds between rate summaries (DEBUG) and
            overbudget warnings.
        grace_period_s: No overbudget warnings this long after the first tick.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], object],
        rate_hz: float,
        shutdown_event: threading.Event,
        start_delay_s: float = 0.0,
        status_log_interval_s: float = 5.0,
        grace_period_s: float = 5.0,
    ):
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")
        self.name = name
        self._fn = fn
        self.rate_hz = rate_hz
        self.shutdown_event = shutdown_event
        self._start_delay_s = max(0.0, start_delay_s)
        self._status_log_interval_s = status_log_interval_s
        self._grace_period_s = grace_period_s
        self._last_status = 0.0
        self.timer = LoopTimer(1.0 / rate_hz, shutdown_event)
        self.error: BaseException | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            logger.warning(f"Task {self.name} already started")
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self.timer.tick_count

    def _run(self) -> None:
        if self._start_delay_s and self.shutdown_event.wait(self._start_delay_s):
            return
        logger.info(f"Task {self.name} started at {self.rate_hz:.1f}Hz")
        self.timer.start()
        self._last_status = self.timer.started_at
        while not self.shutdown_event.is_set():
            try:
                self._fn()
            except Exception as e:
                logger.error(f"Task {self.name} failed: {e}", exc_info=True)
                self.error = e
                self.shutdown_event.set()
                break
            self._log_periodic_status()
            if not self.timer.wait_for_next_tick():
                break
        logger.info(f"Task {self.name} stopped after {self.tick_count} ticks")

    def _log_periodic_status(self) -> None:
        now = time.perf_counter()
        if now - self._last_status < self._status_log_interval_s:
            return
        self._last_status = now
        periods = self.timer.periods
        if not len(periods):
            return
        periods.refresh()
        over = periods.overbudget_pct(self.timer.interval_s)
        in_grace = now - self.timer.started_at < self._grace_period_s
        if over > DEGRADED_PCT and not in_grace:
            logger.warning(
                "%s loop overbudget by +%.0f%% (%s)", self.name, over, periods.describe()
            )
        logger.debug(
            "%s loop: %s ov=%d", self.name, periods.describe(), self.timer.overrun_count
        )
