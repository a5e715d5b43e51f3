"""Command-line interface running the servo loop against the simulated arm."""

import argparse
import logging
import signal
from typing import Any

import numpy as np

import servoloop.config as cfg
from servoloop.config import TRACE, ServoConfig, load_params_file, params_from_env
from servoloop.control.runtime import ServoRuntime
from servoloop.exceptions import ConfigurationError
from servoloop.sim.arm import SimulatedArm
from servoloop.sim.tf_buffer import TransformBuffer
from servoloop.utils.se3_utils import RigidTransform

logger = logging.getLogger("servoloop.control.cli")

# Offset of the default target from the starting end-effector position (m)
DEFAULT_TARGET_OFFSET = (0.05, 0.05, 0.0)
SIM_STEP_RATE_HZ = 100.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Visual servo loop (simulated arm)")
    parser.add_argument("--params", help="JSON file of named parameters")
    parser.add_argument("--target-frame", help="Name of the target frame")
    parser.add_argument("--gain", type=float, help="Proportional gain K")
    parser.add_argument("--speed-cap", type=float, help="Maximum linear speed (m/s)")
    parser.add_argument(
        "--simulation",
        action="store_true",
        default=None,
        help="Actuate by joint trajectories instead of joint velocities",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Hardware mode: log joint velocities but keep broadcasting the held value",
    )
    parser.add_argument(
        "--target",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        help="Target position in the root frame (default: start pose + small offset)",
    )
    parser.add_argument(
        "--duration", type=float, default=0.0, help="Stop after N seconds (0: run until interrupted)"
    )
    parser.add_argument(
        "--high-priority", action="store_true", help="Raise process priority"
    )

    # Verbose logging options
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Enable quiet logging (WARNING level)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set specific log level",
    )
    return parser


def resolve_log_level(args: argparse.Namespace) -> int:
    # Precedence:
    #   1) Explicit --log-level
    #   2) Verbose / quiet flags
    #   3) Environment-driven TRACE (SERVOLOOP_TRACE=1 via TRACE_ENABLED)
    #   4) Default INFO
    if args.log_level:
        if args.log_level == "TRACE":
            cfg.TRACE_ENABLED = True
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        cfg.TRACE_ENABLED = True
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    if cfg.TRACE_ENABLED:
        return TRACE
    return getattr(logging, cfg.LOG_LEVEL_DEFAULT)


def collect_params(args: argparse.Namespace) -> dict[str, Any]:
    """Merge named parameters: params file < SERVOLOOP_* environment < command line."""
    params: dict[str, Any] = {}
    if args.params:
        params.update(load_params_file(args.params))
    params.update(params_from_env())
    cli_values = {
        cfg.PARAM_TARGET_FRAME: args.target_frame,
        cfg.PARAM_GAIN: args.gain,
        cfg.PARAM_SPEED_CAP: args.speed_cap,
        cfg.PARAM_SIMULATION: args.simulation,
        cfg.PARAM_DEBUG: args.debug,
    }
    params.update({k: v for k, v in cli_values.items() if v is not None})
    return params


def publish_target(
    tf_buffer: TransformBuffer, arm: SimulatedArm, config: ServoConfig, target: list[float] | None
) -> RigidTransform:
    if target is None:
        position = arm.end_effector_pose().translation + np.asarray(DEFAULT_TARGET_OFFSET)
    else:
        position = np.asarray(target, dtype=np.float64)
    transform = RigidTransform.from_translation_quaternion(
        config.root_frame, config.target_frame, position
    )
    tf_buffer.set_transform(transform)
    logger.info(
        "Target '%s' at [%.3f, %.3f, %.3f]", config.target_frame, *transform.translation
    )
    return transform


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the simulated servo loop."""
    args = build_parser().parse_args(argv)
    log_level = resolve_log_level(args)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    third_party_log_level = log_level if log_level >= logging.INFO else logging.INFO
    logging.getLogger("numba").setLevel(third_party_log_level)

    try:
        config = ServoConfig.from_params(collect_params(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    # Pre-compile numba JIT functions to avoid mid-loop compilation stalls
    from servoloop.utils.warmup import warmup_jit

    warmup_jit()

    tf_buffer = TransformBuffer()
    arm = SimulatedArm(
        tf_buffer,
        root_frame=config.root_frame,
        vision_marker_frame=config.vision_marker_frame,
        marker_link_frame=config.marker_link_frame,
        end_effector_frame=config.end_effector_frame,
        group=config.arm_group,
    )
    target = publish_target(tf_buffer, arm, config, args.target)

    runtime = ServoRuntime(
        config,
        tf_buffer,
        arm,
        trajectory_sink=arm,
        velocity_sink=arm,
        async_logging=True,
    )
    runtime.add_task("sim_arm", lambda: arm.step(1.0 / SIM_STEP_RATE_HZ), SIM_STEP_RATE_HZ)

    def handle_sigterm(signum, frame):
        """Handle SIGTERM signal for graceful shutdown."""
        logger.info("Received SIGTERM, shutting down...")
        runtime.stop()
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)

    try:
        runtime.start(high_priority=args.high_priority)
        runtime.wait(args.duration if args.duration > 0 else None)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        runtime.stop()

    error = np.linalg.norm(arm.end_effector_pose().translation - target.translation)
    logger.info(
        f"Finished after {runtime.servo.cycle_count} servo cycles, "
        f"remaining error {error * 1000:.1f}mm"
    )
    if runtime.failed:
        logger.error("Runtime stopped on a fatal error")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
