"""
Position-based visual servoing.

Each cycle looks up the vision estimate of the end-effector marker, the
marker-to-end-effector calibration and the target pose, then emits a capped
Cartesian velocity that moves the end effector toward the target.
Rotation is not servoed: both the estimate and the target are reduced to
translation before the error is formed, and angular velocity is always zero.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import numpy as np
from numpy.typing import NDArray

from servoloop.config import TRACE, ServoConfig
from servoloop.exceptions import TransformLookupError
from servoloop.interfaces import TransformProvider
from servoloop.protocol.types import CartesianVelocity
from servoloop.utils.se3_utils import RigidTransform

logger = logging.getLogger(__name__)


def servo_error(
    vision: RigidTransform, calibration: RigidTransform, target: RigidTransform
) -> RigidTransform:
    """
    Target pose seen from the estimated end effector, translation only.

    estimate = drop_rotation(vision * calibration)
    error    = inverse(estimate) * drop_rotation(target)
    """
    estimate = vision.compose(calibration).without_rotation()
    return estimate.relative_to(target.without_rotation())


def cap_velocity(
    linear: NDArray[np.float64], reference_magnitude: float, speed_cap: float
) -> NDArray[np.float64]:
    """
    Rescale linear to length speed_cap when reference_magnitude exceeds speed_cap.

    The cap is tested against reference_magnitude, not against |linear|; the
    caller passes the raw target translation magnitude there. A zero vector
    stays zero.
    """
    if reference_magnitude <= speed_cap:
        return linear
    norm = float(np.linalg.norm(linear))
    if norm == 0.0:
        return linear
    return linear / norm * speed_cap


def compute_servo_velocity(
    vision: RigidTransform,
    calibration: RigidTransform,
    target: RigidTransform,
    gain: float,
    speed_cap: float,
) -> CartesianVelocity:
    """Full servo law for one cycle."""
    error = servo_error(vision, calibration, target)
    scaled = error.translation * gain
    target_magnitude = float(np.linalg.norm(target.translation))
    linear = cap_velocity(scaled, target_magnitude, speed_cap)
    return CartesianVelocity.from_linear(linear)


class VisualServoController:
    """
    Periodic servo loop body.

    A failed lookup is fatal: the error is logged, the shutdown event is set
    and nothing is published, then and on every later tick.
    """

    def __init__(
        self,
        config: ServoConfig,
        transforms: TransformProvider,
        publish: Callable[[CartesianVelocity], None],
        shutdown_event: threading.Event | None = None,
    ):
        self.config = config
        self.transforms = transforms
        self._publish = publish
        self.shutdown_event = shutdown_event or threading.Event()
        self.failed = False
        self.cycle_count = 0
        self.last_command: CartesianVelocity | None = None

    def _lookup_all(self) -> tuple[RigidTransform, RigidTransform, RigidTransform]:
        cfg = self.config
        timeout = cfg.lookup_timeout_s
        vision = self.transforms.lookup(cfg.root_frame, cfg.vision_marker_frame, timeout)
        calibration = self.transforms.lookup(
            cfg.marker_link_frame, cfg.end_effector_frame, timeout
        )
        target = self.transforms.lookup(cfg.root_frame, cfg.target_frame, timeout)
        return vision, calibration, target

    def tick(self) -> CartesianVelocity | None:
        """Run one cycle. Returns the published command, or None if stopped."""
        if self.failed or self.shutdown_event.is_set():
            return None

        try:
            vision, calibration, target = self._lookup_all()
        except TransformLookupError as e:
            logger.error(f"Error getting (end effector -> target) transform: {e}")
            self.failed = True
            self.shutdown_event.set()
            return None

        logger.log(TRACE, "vision: %s", vision.translation)
        logger.log(TRACE, "calibration: %s", calibration.translation)
        logger.log(TRACE, "target: %s", target.translation)

        command = compute_servo_velocity(
            vision, calibration, target, self.config.gain, self.config.speed_cap
        )
        x, y, z = command.linear
        logger.debug("Sending x: %.4f, y: %.4f, z: %.4f", x, y, z)

        self.cycle_count += 1
        self.last_command = command
        self._publish(command)
        return command
