"""
Central configuration for servoloop tunables and startup parameters.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import msgspec

from servoloop.exceptions import ConfigurationError

TRACE: int = 5
logging.addLevelName(TRACE, "TRACE")
# Add Logger.trace if missing
if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]
    logging.TRACE = TRACE  # type: ignore[attr-defined]

TRACE_ENABLED = str(os.getenv("SERVOLOOP_TRACE", "0")).lower() in (
    "1",
    "true",
    "yes",
    "on",
)

logger = logging.getLogger(__name__)

# Loop rates (Hz)
SERVO_RATE_HZ: float = float(os.getenv("SERVOLOOP_SERVO_RATE_HZ", "5"))
BROADCAST_RATE_HZ: float = float(os.getenv("SERVOLOOP_BROADCAST_RATE_HZ", "100"))

# Bounded wait for every transform lookup (s)
LOOKUP_TIMEOUT_S: float = float(os.getenv("SERVOLOOP_LOOKUP_TIMEOUT_S", "5.0"))

# Time-to-reach of each simulated trajectory waypoint, tuned for ~2Hz servo input (s)
TRAJECTORY_DURATION_S: float = float(
    os.getenv("SERVOLOOP_TRAJECTORY_DURATION_S", "0.5")
)

# Wait before the first servo tick so the transform provider can fill up (s)
STARTUP_DELAY_S: float = float(os.getenv("SERVOLOOP_STARTUP_DELAY_S", "2.0"))

# Loop timer switches from sleep to busy-wait this long before a deadline
BUSY_THRESHOLD_MS: float = float(os.getenv("SERVOLOOP_BUSY_THRESHOLD_MS", "1.0"))

# Smallest singular value below which the IK solve is reported as near-singular
SINGULAR_WARN_THRESHOLD: float = float(
    os.getenv("SERVOLOOP_SINGULAR_WARN_THRESHOLD", "1e-3")
)

# Frame names
ROOT_FRAME: str = "root"
VISION_MARKER_FRAME: str = "end_effector_marker"
MARKER_LINK_FRAME: str = "marker0_link"
END_EFFECTOR_FRAME: str = "kinova_end_effector"

# Robot
ARM_GROUP: str = "arm"
JOINT_COUNT: int = 6

LOG_LEVEL_DEFAULT: str = "INFO"

# Named parameters read once at startup
PARAM_TARGET_FRAME = "target_frame"
PARAM_GAIN = "visual_servoing_k"
PARAM_SPEED_CAP = "visual_servoing_speed_cap"
PARAM_SIMULATION = "simulation"
PARAM_DEBUG = "debug"

REQUIRED_PARAMS: tuple[str, ...] = (PARAM_TARGET_FRAME, PARAM_GAIN, PARAM_SPEED_CAP)

_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off")


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
    raise ConfigurationError(f"'{name}' param is not a boolean: {value!r}")


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"'{name}' param is not a number: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{name}' param is not a number: {value!r}")
    if not math.isfinite(number):
        raise ConfigurationError(f"'{name}' param must be finite, got {value!r}")
    return number


@dataclass(frozen=True, slots=True)
class ServoConfig:
    """Immutable control parameters, built once at startup and shared by all components."""

    target_frame: str
    gain: float
    speed_cap: float
    simulation: bool = False
    debug: bool = False

    root_frame: str = ROOT_FRAME
    vision_marker_frame: str = VISION_MARKER_FRAME
    marker_link_frame: str = MARKER_LINK_FRAME
    end_effector_frame: str = END_EFFECTOR_FRAME
    arm_group: str = ARM_GROUP

    servo_rate_hz: float = SERVO_RATE_HZ
    broadcast_rate_hz: float = BROADCAST_RATE_HZ
    lookup_timeout_s: float = LOOKUP_TIMEOUT_S
    trajectory_duration_s: float = TRAJECTORY_DURATION_S
    startup_delay_s: float = STARTUP_DELAY_S

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ServoConfig:
        """
        Build the configuration from named parameters.

        Required: target_frame, visual_servoing_k, visual_servoing_speed_cap.
        Optional: simulation, debug, and any other field of this class by name.

        Raises:
            ConfigurationError: a required parameter is missing or a value is malformed
        """
        for name in REQUIRED_PARAMS:
            if params.get(name) is None:
                raise ConfigurationError(f"'{name}' param not given")

        target_frame = str(params[PARAM_TARGET_FRAME]).strip()
        if not target_frame:
            raise ConfigurationError(f"'{PARAM_TARGET_FRAME}' param is empty")

        speed_cap = _as_float(PARAM_SPEED_CAP, params[PARAM_SPEED_CAP])
        if speed_cap < 0:
            raise ConfigurationError(
                f"'{PARAM_SPEED_CAP}' must be non-negative, got {speed_cap}"
            )

        kwargs: dict[str, Any] = {
            "target_frame": target_frame,
            "gain": _as_float(PARAM_GAIN, params[PARAM_GAIN]),
            "speed_cap": speed_cap,
            "simulation": _as_bool(PARAM_SIMULATION, params.get(PARAM_SIMULATION, False)),
            "debug": _as_bool(PARAM_DEBUG, params.get(PARAM_DEBUG, False)),
        }
        for name in _STR_FIELDS:
            if params.get(name) is not None:
                kwargs[name] = str(params[name])
        for name in _POSITIVE_FIELDS:
            if params.get(name) is not None:
                value = _as_float(name, params[name])
                if value <= 0:
                    raise ConfigurationError(f"'{name}' must be positive, got {value}")
                kwargs[name] = value
        if params.get("startup_delay_s") is not None:
            kwargs["startup_delay_s"] = max(
                0.0, _as_float("startup_delay_s", params["startup_delay_s"])
            )
        return cls(**kwargs)


_STR_FIELDS = (
    "root_frame",
    "vision_marker_frame",
    "marker_link_frame",
    "end_effector_frame",
    "arm_group",
)
_POSITIVE_FIELDS = (
    "servo_rate_hz",
    "broadcast_rate_hz",
    "lookup_timeout_s",
    "trajectory_duration_s",
)

# Every parameter name that may be supplied by file, environment or CLI
PARAM_NAMES: tuple[str, ...] = (
    REQUIRED_PARAMS
    + (PARAM_SIMULATION, PARAM_DEBUG)
    + _STR_FIELDS
    + _POSITIVE_FIELDS
    + ("startup_delay_s",)
)


def load_params_file(path: str | Path) -> dict[str, Any]:
    """
    Read a JSON object of named parameters.

    Raises:
        ConfigurationError: file missing, unreadable, or not a JSON object
    """
    params_path = Path(path)
    try:
        params = msgspec.json.decode(params_path.read_bytes(), type=dict[str, Any])
    except OSError as e:
        raise ConfigurationError(f"Cannot read params file {params_path}: {e}")
    except msgspec.DecodeError as e:
        raise ConfigurationError(f"Invalid params file {params_path}: {e}")
    logger.info(f"Loaded {len(params)} params from {params_path}")
    return params


def params_from_env(prefix: str = "SERVOLOOP_") -> dict[str, str]:
    """Collect named parameters from SERVOLOOP_<NAME> environment variables."""
    found: dict[str, str] = {}
    for name in PARAM_NAMES:
        raw = os.getenv(prefix + name.upper())
        if raw is not None and raw.strip():
            found[name] = raw.strip()
    return found
