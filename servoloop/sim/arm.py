"""
Simulated arm for running the control pipeline without hardware.

SimulatedArm stands in for every robot-side collaborator at once:
- robot state provider (joint positions, Jacobian from the DH model),
- trajectory controller (moves linearly to each waypoint over its time_from_start),
- joint velocity driver (integrates the last velocity; a velocity not re-sent
  within velocity_timeout_s expires, as on the real driver),
- vision system (publishes the observed marker pose into a TransformBuffer).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from servoloop import config as cfg
from servoloop import kinova_robot
from servoloop.protocol.types import JointTrajectory, JointVelocity
from servoloop.sim.tf_buffer import TransformBuffer
from servoloop.utils.se3_utils import RigidTransform, se3_from_matrix

logger = logging.getLogger(__name__)


@dataclass
class _TrajectorySegment:
    start: NDArray[np.float64]
    goal: NDArray[np.float64]
    duration: float
    elapsed: float = 0.0


class SimulatedArm:
    """Thread-safe kinematic arm simulation."""

    def __init__(
        self,
        tf_buffer: TransformBuffer,
        initial_positions: ArrayLike | None = None,
        calibration: RigidTransform | None = None,
        root_frame: str = cfg.ROOT_FRAME,
        vision_marker_frame: str = cfg.VISION_MARKER_FRAME,
        marker_link_frame: str = cfg.MARKER_LINK_FRAME,
        end_effector_frame: str = cfg.END_EFFECTOR_FRAME,
        group: str = cfg.ARM_GROUP,
        velocity_timeout_s: float = 0.1,
        vision_noise_m: float = 0.0,
        seed: int | None = None,
    ):
        self._lock = threading.Lock()
        self._tf = tf_buffer
        self._group = group
        self._q = np.array(
            kinova_robot.HOME_RAD if initial_positions is None else initial_positions,
            dtype=np.float64,
        )
        if self._q.shape != (kinova_robot.Joint_num,):
            raise ValueError(
                f"Expected {kinova_robot.Joint_num} joint positions, got shape {self._q.shape}"
            )
        self._root_frame = root_frame
        self._vision_marker_frame = vision_marker_frame
        self.calibration = calibration or RigidTransform.from_translation_quaternion(
            marker_link_frame, end_effector_frame, (0.0, 0.0, 0.05)
        )
        self._velocity = np.zeros(kinova_robot.Joint_num, dtype=np.float64)
        self._velocity_age_s = float("inf")
        self._velocity_timeout_s = velocity_timeout_s
        self._segment: _TrajectorySegment | None = None
        self._vision_noise_m = vision_noise_m
        self._rng = np.random.default_rng(seed)
        self.trajectory_count = 0
        self.velocity_count = 0

        self._tf.set_transform(self.calibration)
        self.publish_vision()

    # ---- RobotStateProvider ----

    def _check_group(self, group: str) -> None:
        if group != self._group:
            raise KeyError(f"Unknown joint group '{group}'")

    def joint_names(self, group: str) -> tuple[str, ...]:
        self._check_group(group)
        return kinova_robot.JOINT_NAMES

    def joint_positions(self, group: str) -> NDArray[np.float64]:
        self._check_group(group)
        with self._lock:
            return self._q.copy()

    def jacobian(self, group: str, positions: NDArray[np.float64]) -> NDArray[np.float64]:
        self._check_group(group)
        return kinova_robot.jacobian(positions)

    # ---- TrajectorySink ----

    def send_trajectory(self, trajectory: JointTrajectory) -> None:
        if not trajectory.points:
            return
        order = self._joint_order(trajectory.joint_names)
        point = trajectory.points[-1]
        goal = np.asarray(point.positions, dtype=np.float64)[order]
        with self._lock:
            self._velocity[:] = 0.0
            self._segment = _TrajectorySegment(
                start=self._q.copy(), goal=goal, duration=max(point.time_from_start, 0.0)
            )
            self.trajectory_count += 1

    # ---- JointVelocitySink ----

    def send_joint_velocity(self, command: JointVelocity) -> None:
        values = command.as_array()
        if values.shape != (kinova_robot.Joint_num,):
            raise ValueError(f"Expected {kinova_robot.Joint_num} velocities, got {values.shape}")
        with self._lock:
            self._segment = None
            self._velocity[:] = values
            self._velocity_age_s = 0.0
            self.velocity_count += 1

    # ---- Simulation ----

    def _joint_order(self, names: Sequence[str]) -> list[int]:
        try:
            return [list(names).index(n) for n in kinova_robot.JOINT_NAMES]
        except ValueError:
            raise ValueError(f"Trajectory joint names {list(names)} do not match the arm")

    def step(self, dt: float) -> None:
        """Advance the simulation by dt seconds and publish the vision marker."""
        with self._lock:
            seg = self._segment
            if seg is not None:
                seg.elapsed += dt
                s = 1.0 if seg.duration <= 0 else min(seg.elapsed / seg.duration, 1.0)
                self._q = seg.start + (seg.goal - seg.start) * s
                if s >= 1.0:
                    self._segment = None
            elif self._velocity_age_s <= self._velocity_timeout_s:
                self._q = self._q + self._velocity * dt
                self._velocity_age_s += dt
        self.publish_vision()

    def end_effector_pose(self) -> RigidTransform:
        with self._lock:
            q = self._q.copy()
        return RigidTransform(
            self._root_frame,
            self.calibration.child_frame,
            se3_from_matrix(kinova_robot.fkine_matrix(q)),
            time.time(),
        )

    def publish_vision(self) -> None:
        """Publish root -> vision marker, consistent with the end-effector pose and calibration."""
        ee = self.end_effector_pose()
        marker = ee.compose(self.calibration.inverse())
        translation = marker.translation
        if self._vision_noise_m > 0:
            translation = translation + self._rng.normal(0.0, self._vision_noise_m, 3)
        self._tf.set_transform(
            RigidTransform.from_translation_quaternion(
                self._root_frame,
                self._vision_marker_frame,
                translation,
                marker.quaternion,
                ee.stamp,
            )
        )
