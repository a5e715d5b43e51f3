"""
JIT warmup utilities.

Call warmup_jit() on startup so the first statistics refresh inside a
control task does not stall it while numba compiles.
"""

import logging
import time

import numpy as np

from servoloop.control.loop_timer import _window_stats

logger = logging.getLogger(__name__)


def warmup_jit() -> float:
    """
    Pre-compile all numba JIT functions by calling them with dummy data.

    Returns:
        Time taken in seconds.
    """
    logger.info("Warming JIT...")
    start = time.perf_counter()

    _window_stats(np.linspace(0.001, 0.002, 32), 32)

    elapsed = time.perf_counter() - start
    logger.info(f"JIT warmup completed in {elapsed * 1000:.1f}ms")
    return elapsed
