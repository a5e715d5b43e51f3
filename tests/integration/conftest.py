"""Integration test fixtures."""

import numpy as np
import pytest

from servoloop.config import ServoConfig
from servoloop.sim.arm import SimulatedArm
from servoloop.sim.tf_buffer import TransformBuffer
from servoloop.utils.se3_utils import RigidTransform

TARGET_OFFSET = np.array([0.03, -0.02, 0.02])


@pytest.fixture
def tf_buffer():
    return TransformBuffer()


@pytest.fixture
def arm(tf_buffer):
    return SimulatedArm(tf_buffer)


@pytest.fixture
def target(tf_buffer, arm):
    """Target a few centimeters from the starting end-effector position."""
    position = arm.end_effector_pose().translation + TARGET_OFFSET
    transform = RigidTransform.from_translation_quaternion("root", "target", position)
    tf_buffer.set_transform(transform)
    return transform


@pytest.fixture
def make_config():
    """
    Factory for fast loop settings: no startup delay, short lookup timeout
    and a speed cap well above the target distance.
    """

    def _make(**overrides) -> ServoConfig:
        params = dict(
            target_frame="target",
            gain=2.0,
            speed_cap=10.0,
            servo_rate_hz=20.0,
            broadcast_rate_hz=100.0,
            lookup_timeout_s=0.2,
            startup_delay_s=0.0,
        )
        params.update(overrides)
        return ServoConfig(**params)

    return _make
