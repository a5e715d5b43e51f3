"""
Message types exchanged along the control pipeline.

Cartesian velocity commands flow from the visual servo loop to the IK
dispatcher; trajectories and joint velocities flow from the dispatcher to the
actuation sinks. All are frozen msgspec structs so they can be handed across
threads without copying and encoded for logging or recording.
"""

from typing import Annotated

import msgspec
import numpy as np
from numpy.typing import NDArray

Vec3 = tuple[float, float, float]

_ZERO3: tuple[float, float, float] = (0.0, 0.0, 0.0)


class CartesianVelocity(msgspec.Struct, frozen=True, array_like=True):
    """End-effector twist: linear (m/s) and angular (rad/s)."""

    linear: Vec3 = _ZERO3
    angular: Vec3 = _ZERO3

    @classmethod
    def from_linear(cls, linear: NDArray) -> "CartesianVelocity":
        x, y, z = (float(v) for v in linear)
        return cls(linear=(x, y, z), angular=_ZERO3)

    def as_vector(self) -> NDArray[np.float64]:
        """[vx, vy, vz, wx, wy, wz]."""
        return np.array(self.linear + self.angular, dtype=np.float64)


class TrajectoryWaypoint(msgspec.Struct, frozen=True, array_like=True):
    """Single joint-space waypoint reached time_from_start seconds after the header stamp."""

    positions: tuple[float, ...]
    velocities: tuple[float, ...]
    accelerations: tuple[float, ...]
    effort: tuple[float, ...]
    time_from_start: Annotated[float, msgspec.Meta(ge=0.0)]

    @classmethod
    def hold_at(cls, positions: NDArray, time_from_start: float) -> "TrajectoryWaypoint":
        """Waypoint with zero velocity, acceleration and effort."""
        target = tuple(float(p) for p in positions)
        zeros = (0.0,) * len(target)
        return cls(
            positions=target,
            velocities=zeros,
            accelerations=zeros,
            effort=zeros,
            time_from_start=float(time_from_start),
        )


class JointTrajectory(msgspec.Struct, frozen=True, array_like=True):
    """Joint trajectory command in named-joint order."""

    joint_names: tuple[str, ...]
    points: tuple[TrajectoryWaypoint, ...]
    stamp: float = 0.0


class JointVelocity(msgspec.Struct, frozen=True, array_like=True):
    """Per-joint angular velocity command (rad/s)."""

    velocities: tuple[float, ...]

    @classmethod
    def zeros(cls, num_joints: int) -> "JointVelocity":
        return cls(velocities=(0.0,) * num_joints)

    @classmethod
    def from_array(cls, values: NDArray) -> "JointVelocity":
        return cls(velocities=tuple(float(v) for v in values))

    def as_array(self) -> NDArray[np.float64]:
        return np.array(self.velocities, dtype=np.float64)
