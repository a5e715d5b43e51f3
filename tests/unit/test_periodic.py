"""
Unit tests for fixed-rate task threads and loop timing.
"""

import logging
import threading
import time

import pytest

from servoloop.control.loop_timer import LoopTimer, PeriodWindow
from servoloop.control.periodic import PeriodicTask


class TestPeriodicTask:
    def test_runs_until_shutdown(self):
        shutdown = threading.Event()
        calls = []
        task = PeriodicTask("counter", lambda: calls.append(1), 200.0, shutdown)

        task.start()
        time.sleep(0.2)
        shutdown.set()
        task.join(1.0)

        assert not task.is_alive()
        assert len(calls) >= 10
        assert task.error is None

    def test_exception_sets_shutdown(self):
        shutdown = threading.Event()

        def boom():
            raise RuntimeError("boom")

        task = PeriodicTask("failing", boom, 100.0, shutdown)
        task.start()
        assert shutdown.wait(1.0)
        task.join(1.0)

        assert isinstance(task.error, RuntimeError)
        assert not task.is_alive()

    def test_start_delay_interrupted_by_shutdown(self):
        shutdown = threading.Event()
        calls = []
        task = PeriodicTask(
            "delayed", lambda: calls.append(1), 100.0, shutdown, start_delay_s=5.0
        )

        task.start()
        time.sleep(0.05)
        shutdown.set()
        task.join(1.0)

        assert not task.is_alive()
        assert calls == []

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            PeriodicTask("bad", lambda: None, 0.0, threading.Event())


class TestLoopTimer:
    def test_wait_returns_false_when_stopped(self):
        stop = threading.Event()
        timer = LoopTimer(0.5, stop)
        timer.start()
        threading.Timer(0.05, stop.set).start()

        start = time.monotonic()
        assert timer.wait_for_next_tick() is False
        assert time.monotonic() - start < 0.4

    def test_paces_at_interval(self):
        stop = threading.Event()
        timer = LoopTimer(0.01, stop)
        timer.start()
        start = time.perf_counter()
        for _ in range(10):
            assert timer.wait_for_next_tick()
        assert time.perf_counter() - start >= 0.09
        assert timer.tick_count == 10


class TestPeriodWindow:
    def test_stats(self):
        w = PeriodWindow()
        for _ in range(100):
            w.add(0.01)
        w.refresh()
        assert len(w) == 100
        assert w.mean_s == pytest.approx(0.01)
        assert w.std_s == pytest.approx(0.0, abs=1e-12)
        assert w.describe().startswith("100.0Hz")

    def test_p99_picks_up_outliers(self):
        w = PeriodWindow()
        for _ in range(99):
            w.add(0.01)
        w.add(0.05)
        w.refresh()
        assert w.p99_s == pytest.approx(0.05)
        assert w.overbudget_pct(0.01) == pytest.approx(400.0)
        assert w.overbudget_pct(0.1) == 0.0

    def test_ring_wraps(self):
        w = PeriodWindow(size=4)
        for p in (1.0, 1.0, 1.0, 1.0, 2.0, 2.0, 2.0, 2.0):
            w.add(p)
        w.refresh()
        assert len(w) == 4
        assert w.mean_s == pytest.approx(2.0)

    def test_empty(self):
        w = PeriodWindow()
        w.refresh()
        assert w.rate_hz == 0.0
        assert w.overbudget_pct(0.01) == 0.0


class TestPeriodicStatus:
    def test_overbudget_task_warns(self, caplog):
        shutdown = threading.Event()
        task = PeriodicTask(
            "slow",
            lambda: time.sleep(0.03),
            100.0,
            shutdown,
            status_log_interval_s=0.0,
            grace_period_s=0.0,
        )

        with caplog.at_level(logging.WARNING, logger="servoloop.control.periodic"):
            task.start()
            time.sleep(0.3)
            shutdown.set()
            task.join(1.0)

        assert "slow loop overbudget" in caplog.text
        assert task.timer.overrun_count > 0
