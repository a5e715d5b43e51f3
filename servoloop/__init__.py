"""
servoloop Python Package

Position-based visual servoing for a 6-DOF arm: a fixed-rate loop turns the
vision estimate of the end effector into a capped Cartesian velocity, and a
differential IK dispatcher turns that into joint trajectories (simulation) or
held, re-broadcast joint velocities (hardware).

Key components:
- ServoConfig: startup parameters, validated once
- ServoRuntime: owns the servo, dispatcher and broadcast threads
- VisualServoController / DiffIKController: the two control stages
- TransformBuffer / SimulatedArm: in-process stand-ins for the robot side
"""

from ._version import __version__
from .config import ServoConfig
from .control.diff_ik import DiffIKController
from .control.runtime import ServoRuntime
from .control.visual_servo import VisualServoController, compute_servo_velocity
from .exceptions import ConfigurationError, TransformLookupError

__all__ = [
    "__version__",
    "ServoConfig",
    "ServoRuntime",
    "VisualServoController",
    "DiffIKController",
    "compute_servo_velocity",
    "ConfigurationError",
    "TransformLookupError",
]
