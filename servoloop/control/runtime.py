"""
Runtime wiring of the visual servo loop, the IK dispatcher and the broadcast timer.
"""

from __future__ import annotations

import logging
import sys
import threading
import time

import psutil  # type: ignore[import-untyped]

from servoloop.config import ServoConfig
from servoloop.control.actuation import (
    ActuationMode,
    HardwareActuation,
    SimulationActuation,
)
from servoloop.control.async_logging import AsyncLogHandler
from servoloop.control.channel import LatestValueChannel
from servoloop.control.diff_ik import DiffIKController
from servoloop.control.periodic import PeriodicTask
from servoloop.control.visual_servo import VisualServoController
from servoloop.interfaces import (
    JointVelocitySink,
    RobotStateProvider,
    TrajectorySink,
    TransformProvider,
)
from servoloop.protocol.types import CartesianVelocity

logger = logging.getLogger(__name__)

# Dispatcher wakes at least this often to observe shutdown
_RECEIVE_POLL_S = 0.1
# Seconds between dispatcher status lines (DEBUG)
_DISPATCH_STATUS_INTERVAL_S = 5.0


def create_actuation(
    config: ServoConfig,
    robot: RobotStateProvider,
    trajectory_sink: TrajectorySink | None,
    velocity_sink: JointVelocitySink | None,
) -> ActuationMode:
    """Select the actuation variant once, from config.simulation and config.debug."""
    joint_names = robot.joint_names(config.arm_group)
    if config.simulation:
        if trajectory_sink is None:
            raise ValueError("Simulation mode requires a trajectory sink")
        return SimulationActuation(
            trajectory_sink, joint_names, duration_s=config.trajectory_duration_s
        )
    if velocity_sink is None:
        raise ValueError("Hardware mode requires a joint velocity sink")
    return HardwareActuation(velocity_sink, num_joints=len(joint_names), debug=config.debug)


class ServoRuntime:
    """
    Owns the control threads and the shutdown event they share.

    - servo task: VisualServoController.tick at servo_rate_hz, after startup_delay_s
    - dispatcher thread: takes the latest velocity command from the channel
      and runs the IK solve + dispatch
    - broadcast task (hardware mode only): re-sends the held joint velocity
      at broadcast_rate_hz
    """

    def __init__(
        self,
        config: ServoConfig,
        transforms: TransformProvider,
        robot: RobotStateProvider,
        trajectory_sink: TrajectorySink | None = None,
        velocity_sink: JointVelocitySink | None = None,
        shutdown_event: threading.Event | None = None,
        async_logging: bool = False,
    ):
        self.config = config
        self.shutdown_event = shutdown_event or threading.Event()
        self.channel: LatestValueChannel[CartesianVelocity] = LatestValueChannel()
        self.actuation = create_actuation(config, robot, trajectory_sink, velocity_sink)
        self.servo = VisualServoController(
            config, transforms, self.channel.publish, self.shutdown_event
        )
        self.diff_ik = DiffIKController(robot, self.actuation, group=config.arm_group)

        self._servo_task = PeriodicTask(
            "visual_servo",
            self.servo.tick,
            config.servo_rate_hz,
            self.shutdown_event,
            start_delay_s=config.startup_delay_s,
        )
        self._broadcast_task: PeriodicTask | None = None
        if self.actuation.broadcasts:
            self._broadcast_task = PeriodicTask(
                "joint_velocity_broadcast",
                self.diff_ik.broadcast_tick,
                config.broadcast_rate_hz,
                self.shutdown_event,
            )
        self._extra_tasks: list[PeriodicTask] = []
        self._dispatcher: threading.Thread | None = None
        self._async_log = AsyncLogHandler() if async_logging else None
        self.running = False
        self.dispatch_error: BaseException | None = None

        logger.info(
            "Runtime configured: mode=%s%s target=%s K=%s cap=%s",
            self.actuation.name,
            " (debug)" if config.debug and not config.simulation else "",
            config.target_frame,
            config.gain,
            config.speed_cap,
        )

    def add_task(self, name: str, fn, rate_hz: float) -> PeriodicTask:
        """Register an extra periodic task (e.g. a simulator step) sharing the shutdown event."""
        if self.running:
            raise RuntimeError("Cannot add tasks to a running runtime")
        task = PeriodicTask(name, fn, rate_hz, self.shutdown_event)
        self._extra_tasks.append(task)
        return task

    @property
    def tasks(self) -> list[PeriodicTask]:
        tasks = [*self._extra_tasks, self._servo_task]
        if self._broadcast_task is not None:
            tasks.append(self._broadcast_task)
        return tasks

    @property
    def failed(self) -> bool:
        """True if the runtime stopped because of an error rather than stop()."""
        return (
            self.servo.failed
            or self.dispatch_error is not None
            or any(t.error is not None for t in self.tasks)
        )

    def start(self, high_priority: bool = False) -> None:
        if self.running:
            logger.warning("Runtime already running")
            return
        if high_priority:
            set_high_priority()
        if self._async_log:
            self._async_log.start()
        self.running = True
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="velocity_dispatcher", daemon=True
        )
        self._dispatcher.start()
        for task in self.tasks:
            task.start()
        logger.info("Runtime started")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is requested. Returns True if it was."""
        return self.shutdown_event.wait(timeout)

    def stop(self, join_timeout: float = 2.0) -> None:
        if not self.running:
            return
        logger.info("Stopping runtime...")
        self.shutdown_event.set()
        self.channel.close()
        for task in self.tasks:
            task.join(join_timeout)
        if self._dispatcher is not None:
            self._dispatcher.join(join_timeout)
        self.running = False
        logger.info("Runtime stopped")
        if self._async_log:
            self._async_log.stop()

    def _dispatch_loop(self) -> None:
        last_status = time.monotonic()
        solves_at_status = 0
        while not self.shutdown_event.is_set():
            command = self.channel.receive(timeout=_RECEIVE_POLL_S)
            if command is not None:
                try:
                    self.diff_ik.on_velocity(command)
                except Exception as e:
                    logger.error(f"Velocity command handling failed: {e}", exc_info=True)
                    self.dispatch_error = e
                    self.shutdown_event.set()
                    break
            now = time.monotonic()
            if now - last_status >= _DISPATCH_STATUS_INTERVAL_S:
                solves = self.diff_ik.solve_count
                logger.debug(
                    "dispatcher: %.1f solves/s, %d superseded commands, mode=%s",
                    (solves - solves_at_status) / (now - last_status),
                    self.channel.dropped_count,
                    self.actuation.name,
                )
                last_status, solves_at_status = now, solves
        logger.debug(
            "Dispatcher stopped after %d solves (%d commands superseded)",
            self.diff_ik.solve_count,
            self.channel.dropped_count,
        )


def set_high_priority() -> None:
    """Set highest non-privileged process priority."""
    try:
        p = psutil.Process()
        if sys.platform == "win32":
            p.nice(psutil.HIGH_PRIORITY_CLASS)
            logger.info("Set process priority to HIGH_PRIORITY_CLASS")
        else:
            try:
                p.nice(-10)
                logger.info("Set process nice value to -10")
            except psutil.AccessDenied:
                logger.debug("Cannot set negative nice value without privileges")
    except Exception as e:
        logger.warning(f"Failed to set process priority: {e}")
