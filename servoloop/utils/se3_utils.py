"""Rigid transform helpers on top of sophuspy.

sophuspy SE3 carries the pose; RigidTransform adds the frame names and
timestamp a transform provider attaches to every lookup.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import sophuspy as sp
from numpy.typing import ArrayLike, NDArray
from scipy.spatial.transform import Rotation

__all__ = [
    "RigidTransform",
    "se3_from_trans",
    "se3_from_quat",
    "se3_from_matrix",
    "se3_drop_rotation",
]


def se3_from_trans(x: float, y: float, z: float) -> sp.SE3:
    """Create SE3 from translation only (identity rotation)."""
    return sp.SE3(np.eye(3), [x, y, z])


def se3_from_quat(translation: ArrayLike, quaternion: ArrayLike) -> sp.SE3:
    """Create SE3 from a translation and a unit quaternion in (x, y, z, w) order."""
    R = Rotation.from_quat(np.asarray(quaternion, dtype=np.float64)).as_matrix()
    return sp.SE3(R, np.asarray(translation, dtype=np.float64))


def se3_from_matrix(matrix: np.ndarray) -> sp.SE3:
    """Create SE3 from 4x4 homogeneous transformation matrix."""
    return sp.SE3(matrix[:3, :3], matrix[:3, 3])


def se3_drop_rotation(se3: sp.SE3) -> sp.SE3:
    """Same translation, identity rotation."""
    return sp.SE3(np.eye(3), se3.translation())


@dataclass(frozen=True, slots=True)
class RigidTransform:
    """
    Pose of child_frame expressed in parent_frame.

    Treated as immutable: every operation returns a new instance.
    """

    parent_frame: str
    child_frame: str
    pose: sp.SE3
    stamp: float = 0.0

    @classmethod
    def from_translation_quaternion(
        cls,
        parent_frame: str,
        child_frame: str,
        translation: Sequence[float],
        quaternion: Sequence[float] = (0.0, 0.0, 0.0, 1.0),
        stamp: float = 0.0,
    ) -> RigidTransform:
        return cls(parent_frame, child_frame, se3_from_quat(translation, quaternion), stamp)

    @classmethod
    def identity(cls, parent_frame: str, child_frame: str, stamp: float = 0.0) -> RigidTransform:
        return cls(parent_frame, child_frame, sp.SE3(), stamp)

    @property
    def translation(self) -> NDArray[np.float64]:
        return np.asarray(self.pose.translation(), dtype=np.float64).copy()

    @property
    def rotation_matrix(self) -> NDArray[np.float64]:
        return np.asarray(self.pose.rotationMatrix(), dtype=np.float64).copy()

    @property
    def quaternion(self) -> NDArray[np.float64]:
        """Rotation as (x, y, z, w)."""
        return Rotation.from_matrix(self.rotation_matrix).as_quat()

    def without_rotation(self) -> RigidTransform:
        return RigidTransform(
            self.parent_frame, self.child_frame, se3_drop_rotation(self.pose), self.stamp
        )

    def compose(self, other: RigidTransform) -> RigidTransform:
        """
        self * other.

        Frame names are not checked: the vision marker and the marker link are
        different names for the same physical frame.
        """
        return RigidTransform(
            self.parent_frame,
            other.child_frame,
            self.pose * other.pose,
            min(self.stamp, other.stamp),
        )

    def inverse(self) -> RigidTransform:
        return RigidTransform(
            self.child_frame, self.parent_frame, self.pose.inverse(), self.stamp
        )

    def relative_to(self, other: RigidTransform) -> RigidTransform:
        """inverse(self) * other: pose of other's child seen from self's child."""
        return self.inverse().compose(other)
