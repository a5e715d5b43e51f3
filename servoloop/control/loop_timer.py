"""Fixed-rate pacing and period statistics for the servo and broadcast tasks.

A ``LoopTimer`` keeps an absolute deadline schedule: each tick is due one
interval after the previous deadline, not after the previous wake-up, so
jitter does not accumulate. Most of the gap is spent blocked on the shutdown
event; only the last ``spin_s`` seconds are spun to hit the deadline.
"""

import threading
import time

import numpy as np
from numba import njit  # type: ignore[import-untyped]

from servoloop import config as cfg

# Ring length for period samples
WINDOW_SIZE = 512


@njit(cache=True)
def _window_stats(samples: np.ndarray, n: int) -> tuple[float, float, float]:
    """mean, std and p99 of the first n period samples."""
    if n == 0:
        return 0.0, 0.0, 0.0
    window = samples[:n]
    ordered = np.sort(window)
    p99 = ordered[min(n - 1, int(n * 0.99))]
    return window.mean(), window.std(), p99


class PeriodWindow:
    """Ring buffer of measured loop periods.

    Statistics are refreshed explicitly with ``refresh()`` so the numba
    call happens every few ticks rather than on every tick.
    """

    __slots__ = ("_samples", "_next", "_filled", "mean_s", "std_s", "p99_s")

    def __init__(self, size: int = WINDOW_SIZE) -> None:
        self._samples = np.zeros(size, dtype=np.float64)
        self._next = 0
        self._filled = 0
        self.mean_s = 0.0
        self.std_s = 0.0
        self.p99_s = 0.0

    def add(self, period_s: float) -> None:
        self._samples[self._next] = period_s
        self._next = (self._next + 1) % len(self._samples)
        self._filled = min(self._filled + 1, len(self._samples))

    def __len__(self) -> int:
        return self._filled

    def refresh(self) -> None:
        mean, std, p99 = _window_stats(self._samples, self._filled)
        self.mean_s, self.std_s, self.p99_s = float(mean), float(std), float(p99)

    @property
    def rate_hz(self) -> float:
        return 1.0 / self.mean_s if self.mean_s > 0 else 0.0

    def overbudget_pct(self, target_period_s: float) -> float:
        """How far p99 exceeds target_period_s, in percent (0 if within budget)."""
        if target_period_s <= 0 or self.p99_s <= target_period_s:
            return 0.0
        return (self.p99_s / target_period_s - 1.0) * 100.0

    def describe(self) -> str:
        """Short rate summary, e.g. '100.0Hz σ=0.05ms p99=10.20ms'."""
        return (
            f"{self.rate_hz:.1f}Hz σ={self.std_s * 1000:.2f}ms "
            f"p99={self.p99_s * 1000:.2f}ms"
        )


class LoopTimer:
    """Absolute-deadline pacing for one periodic task.

    Args:
        interval_s: Tick period in seconds.
        stop_event: Shutdown event; setting it cuts any wait short.
        spin_s: Final stretch before each deadline that is busy-waited
            instead of blocked on the event. Defaults to BUSY_THRESHOLD_MS.
        refresh_every: Ticks between statistics refreshes.
    """

    def __init__(
        self,
        interval_s: float,
        stop_event: threading.Event,
        spin_s: float | None = None,
        refresh_every: int = 50,
    ):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self.interval_s = interval_s
        self._stop_event = stop_event
        self._spin_s = cfg.BUSY_THRESHOLD_MS / 1000.0 if spin_s is None else spin_s
        self._refresh_every = refresh_every
        self._deadline = 0.0
        self._last_wake = 0.0
        self.started_at = 0.0
        self.tick_count = 0
        self.overrun_count = 0
        self.periods = PeriodWindow()

    def start(self) -> None:
        """Anchor the deadline schedule at the current time."""
        now = time.perf_counter()
        self._deadline = now
        self._last_wake = now
        self.started_at = now

    def wait_for_next_tick(self) -> bool:
        """Block until the next deadline.

        Returns:
            False if the stop event was set while waiting, True otherwise.
        """
        self.tick_count += 1
        if self.tick_count % self._refresh_every == 0:
            self.periods.refresh()

        self._deadline += self.interval_s
        remaining = self._deadline - time.perf_counter()
        if remaining <= 0:
            # Late: restart the schedule from now instead of bursting to catch up
            self.overrun_count += 1
            self._deadline = time.perf_counter()
        else:
            block_s = remaining - self._spin_s
            if block_s > 0 and self._stop_event.wait(block_s):
                return False
            while time.perf_counter() < self._deadline:
                pass

        now = time.perf_counter()
        self.periods.add(now - self._last_wake)
        self._last_wake = now
        return not self._stop_event.is_set()
