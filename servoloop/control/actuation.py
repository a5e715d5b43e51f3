"""
Actuation backends for joint-space commands.

One variant is chosen at startup and kept for the process lifetime:

- SimulationActuation: each IK solution becomes a one-point position
  trajectory sent immediately to a trajectory controller.
- HardwareActuation: each IK solution overwrites the held joint velocity;
  a fixed-rate timer re-sends the held value through broadcast().
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray

from servoloop.config import JOINT_COUNT, TRACE, TRAJECTORY_DURATION_S
from servoloop.control.state import JointVelocityBuffer
from servoloop.interfaces import JointVelocitySink, TrajectorySink
from servoloop.protocol.types import (
    JointTrajectory,
    JointVelocity,
    TrajectoryWaypoint,
)

logger = logging.getLogger(__name__)


class ActuationMode(ABC):
    """Dispatch capability for one actuation backend."""

    name: str = ""

    @property
    def broadcasts(self) -> bool:
        """True if this mode needs a fixed-rate broadcast task."""
        return False

    @abstractmethod
    def dispatch(self, positions: NDArray[np.float64], delta: NDArray[np.float64]) -> None:
        """Act on one IK solution computed at joint positions."""

    def broadcast(self) -> None:
        """Re-send the held command. No-op unless broadcasts is True."""
        return None


class SimulationActuation(ActuationMode):
    """Position increments sent as single-waypoint trajectories.

    Args:
        sink: Trajectory controller client.
        joint_names: Joint order of every outgoing trajectory.
        duration_s: time_from_start of the single waypoint.
    """

    name = "simulation"

    def __init__(
        self,
        sink: TrajectorySink,
        joint_names: Sequence[str],
        duration_s: float = TRAJECTORY_DURATION_S,
    ):
        self._sink = sink
        self._joint_names = tuple(joint_names)
        self._duration_s = float(duration_s)

    @property
    def duration_s(self) -> float:
        return self._duration_s

    def build_trajectory(
        self, positions: NDArray[np.float64], delta: NDArray[np.float64]
    ) -> JointTrajectory:
        """Build the one-point trajectory for an IK solution.

        Args:
            positions: Joint positions the Jacobian was evaluated at.
            delta: Joint increments from the IK solve.

        Returns:
            Trajectory holding at positions + delta with zero velocity,
            acceleration and effort.

        Raises:
            ValueError: If either array does not match the joint count.
        """
        n = len(self._joint_names)
        if positions.shape[0] != n or delta.shape[0] != n:
            raise ValueError(
                f"Expected {n} joints, got positions={positions.shape[0]} delta={delta.shape[0]}"
            )
        waypoint = TrajectoryWaypoint.hold_at(positions + delta, self._duration_s)
        return JointTrajectory(
            joint_names=self._joint_names, points=(waypoint,), stamp=time.time()
        )

    def dispatch(self, positions: NDArray[np.float64], delta: NDArray[np.float64]) -> None:
        trajectory = self.build_trajectory(positions, delta)
        logger.log(TRACE, "trajectory target=%s", trajectory.points[0].positions)
        self._sink.send_trajectory(trajectory)


class HardwareActuation(ActuationMode):
    """
    Joint deltas used directly as joint velocities, held and re-broadcast.

    With debug set, dispatch() leaves the held command untouched while
    broadcast() keeps sending the last value.

    Args:
        sink: Joint velocity controller client.
        num_joints: Length of the held command.
        debug: Freeze the held command at its current value.
    """

    name = "hardware"

    def __init__(
        self, sink: JointVelocitySink, num_joints: int = JOINT_COUNT, debug: bool = False
    ):
        self._sink = sink
        self._debug = bool(debug)
        self.held = JointVelocityBuffer(num_joints)

    @property
    def debug(self) -> bool:
        return self._debug

    @property
    def broadcasts(self) -> bool:
        return True

    def dispatch(self, positions: NDArray[np.float64], delta: NDArray[np.float64]) -> None:
        if self._debug:
            logger.log(TRACE, "debug: held joint velocity frozen, ignoring %s", delta)
            return
        self.held.write(delta)

    def broadcast(self) -> None:
        self._sink.send_joint_velocity(self.held.read())

    def current(self) -> JointVelocity:
        return self.held.read()
