from __future__ import annotations

import threading

import numpy as np
from numpy.typing import ArrayLike

from servoloop.config import JOINT_COUNT
from servoloop.protocol.types import JointVelocity


class JointVelocityBuffer:
    """
    Held joint velocity command shared by the IK handler (writer) and the
    broadcast timer (reader).

    All N components are replaced and read together under one lock, so a
    reader never sees a mix of old and new values. The held value persists
    until the next write.
    """

    def __init__(self, num_joints: int = JOINT_COUNT):
        if num_joints <= 0:
            raise ValueError(f"num_joints must be positive, got {num_joints}")
        self._lock = threading.Lock()
        self._num_joints = num_joints
        self._command = JointVelocity.zeros(num_joints)
        self._version = 0

    @property
    def num_joints(self) -> int:
        return self._num_joints

    def write(self, velocities: ArrayLike) -> int:
        """Replace the held command.

        Args:
            velocities: One value per joint (rad/s).

        Returns:
            The new version number, incremented on every write.

        Raises:
            ValueError: If the length does not match num_joints.
        """
        values = np.asarray(velocities, dtype=np.float64).reshape(-1)
        if values.shape[0] != self._num_joints:
            raise ValueError(
                f"Expected {self._num_joints} joint velocities, got {values.shape[0]}"
            )
        command = JointVelocity.from_array(values)
        with self._lock:
            self._command = command
            self._version += 1
            return self._version

    def read(self) -> JointVelocity:
        """Immutable snapshot of the held command."""
        with self._lock:
            return self._command

    def read_versioned(self) -> tuple[JointVelocity, int]:
        """Snapshot of the held command with the version it was written at."""
        with self._lock:
            return self._command, self._version
