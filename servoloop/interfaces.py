"""
Interfaces of the collaborators the control pipeline talks to.

Concrete in-process implementations live in servoloop.sim; hardware bridges
implement the same methods.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from servoloop.protocol.types import JointTrajectory, JointVelocity
    from servoloop.utils.se3_utils import RigidTransform


class TransformProvider(Protocol):
    def lookup(
        self, parent_frame: str, child_frame: str, timeout: float
    ) -> RigidTransform:
        """
        Latest pose of child_frame in parent_frame.

        Blocks up to timeout seconds; raises TransformLookupError on timeout
        or unknown frame.
        """
        ...


class RobotStateProvider(Protocol):
    def joint_names(self, group: str) -> tuple[str, ...]: ...

    def joint_positions(self, group: str) -> NDArray[np.float64]:
        """Snapshot of the group's joint positions (rad)."""
        ...

    def jacobian(self, group: str, positions: NDArray[np.float64]) -> NDArray[np.float64]:
        """6xN base-frame Jacobian ([linear; angular] rows) at positions."""
        ...


class TrajectorySink(Protocol):
    def send_trajectory(self, trajectory: JointTrajectory) -> None: ...


class JointVelocitySink(Protocol):
    def send_joint_velocity(self, command: JointVelocity) -> None: ...
