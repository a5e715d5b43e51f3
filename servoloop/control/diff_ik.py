"""
Differential inverse kinematics: Cartesian velocity -> joint-space command.
"""

import logging
import time

import numpy as np
from numpy.typing import NDArray

from servoloop.config import ARM_GROUP, SINGULAR_WARN_THRESHOLD, TRACE
from servoloop.control.actuation import ActuationMode
from servoloop.interfaces import RobotStateProvider
from servoloop.protocol.types import CartesianVelocity
from servoloop.utils.linalg import pseudo_inverse_from_svd, thin_svd

logger = logging.getLogger(__name__)

# Near-singular warnings at most once per second
_WARN_INTERVAL_S: float = 1.0


class DiffIKController:
    """
    Solves J(q) dq = v with the undamped SVD pseudo-inverse and hands dq to
    the actuation backend.

    The Jacobian and joint positions are read fresh on every command; nothing
    is cached between commands.
    """

    def __init__(
        self,
        robot: RobotStateProvider,
        actuation: ActuationMode,
        group: str = ARM_GROUP,
        singular_warn_threshold: float = SINGULAR_WARN_THRESHOLD,
    ):
        self.robot = robot
        self.actuation = actuation
        self.group = group
        self._singular_warn_threshold = singular_warn_threshold
        self._last_warn_time = 0.0
        self.solve_count = 0

    def solve(self, command: CartesianVelocity) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Solve one Cartesian velocity command at the current joint positions.

        Args:
            command: Twist (linear m/s, angular rad/s) in the root frame.

        Returns:
            (joint positions the Jacobian was evaluated at, joint delta).
            The delta may be huge or non-finite near a singularity.

        Raises:
            ValueError: If the Jacobian is not 6 x number of joints.
        """
        positions = np.asarray(self.robot.joint_positions(self.group), dtype=np.float64)
        jacobian = np.asarray(self.robot.jacobian(self.group, positions), dtype=np.float64)
        if jacobian.shape != (6, positions.shape[0]):
            raise ValueError(
                f"Jacobian shape {jacobian.shape} does not match 6x{positions.shape[0]}"
            )

        svd = thin_svd(jacobian)
        with np.errstate(invalid="ignore"):
            delta = pseudo_inverse_from_svd(svd) @ command.as_vector()

        if svd.min_singular < self._singular_warn_threshold or not np.all(np.isfinite(delta)):
            self._warn_singular(svd.min_singular, svd.condition, delta)

        return positions, delta

    def on_velocity(self, command: CartesianVelocity) -> NDArray[np.float64]:
        """Handle one velocity command: solve and dispatch. Returns the joint delta."""
        positions, delta = self.solve(command)
        self.solve_count += 1
        logger.log(
            TRACE,
            "ik v=%s dq=%s mode=%s",
            command.as_vector(),
            delta,
            self.actuation.name,
        )
        self.actuation.dispatch(positions, delta)
        return delta

    def broadcast_tick(self) -> None:
        self.actuation.broadcast()

    def _warn_singular(self, min_singular: float, condition: float, delta: NDArray) -> None:
        now = time.monotonic()
        if now - self._last_warn_time < _WARN_INTERVAL_S:
            return
        self._last_warn_time = now
        finite = np.isfinite(delta)
        logger.warning(
            "Near-singular Jacobian: sigma_min=%.3e cond=%.3e max|dq|=%.3e non-finite=%d "
            "(undamped, dispatched as-is)",
            min_singular,
            condition,
            float(np.abs(delta[finite]).max()) if finite.any() else 0.0,
            int(delta.size - finite.sum()),
        )
