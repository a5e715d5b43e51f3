"""
Unit tests for the differential IK dispatcher and actuation backends.
"""

import logging
import warnings
from unittest.mock import MagicMock

import numpy as np
import pytest

from servoloop.control.actuation import HardwareActuation, SimulationActuation
from servoloop.control.diff_ik import DiffIKController
from servoloop.protocol.types import CartesianVelocity, JointTrajectory, JointVelocity

JOINTS = tuple(f"joint_{i}" for i in range(1, 7))
Q0 = np.array([0.1, -0.2, 0.3, -0.4, 0.5, -0.6])


def _jacobian():
    rng = np.random.default_rng(7)
    return np.eye(6) * 2.0 + rng.normal(0.0, 0.1, (6, 6))


def _robot(jacobian=None):
    robot = MagicMock()
    robot.joint_names.return_value = JOINTS
    robot.joint_positions.return_value = Q0.copy()
    robot.jacobian.return_value = _jacobian() if jacobian is None else jacobian
    return robot


VELOCITY = CartesianVelocity(linear=(0.05, -0.02, 0.01))


class TestSolve:
    def test_jacobian_evaluated_at_snapshot(self):
        robot = _robot()
        controller = DiffIKController(robot, MagicMock(), group="arm")

        positions, _ = controller.solve(VELOCITY)

        robot.joint_positions.assert_called_once_with("arm")
        group, q = robot.jacobian.call_args.args
        assert group == "arm"
        np.testing.assert_array_equal(q, Q0)
        np.testing.assert_array_equal(positions, Q0)

    def test_delta_reproduces_twist(self):
        controller = DiffIKController(_robot(), MagicMock())

        _, delta = controller.solve(VELOCITY)

        np.testing.assert_allclose(_jacobian() @ delta, VELOCITY.as_vector(), atol=1e-12)

    def test_wrong_jacobian_shape_rejected(self):
        controller = DiffIKController(_robot(jacobian=np.eye(5)), MagicMock())
        with pytest.raises(ValueError, match="Jacobian shape"):
            controller.solve(VELOCITY)

    def test_near_singular_warns_and_dispatches(self, caplog):
        J = np.eye(6)
        J[5, 5] = 1e-6
        actuation = MagicMock()
        controller = DiffIKController(_robot(jacobian=J), actuation)

        with caplog.at_level(logging.WARNING, logger="servoloop.control.diff_ik"):
            controller.on_velocity(CartesianVelocity(angular=(0.0, 0.0, 1e-3)))

        assert "Near-singular" in caplog.text
        actuation.dispatch.assert_called_once()
        _, delta = actuation.dispatch.call_args.args
        assert delta[5] == pytest.approx(1e3)


class TestSimulationActuation:
    def test_single_waypoint_trajectory(self):
        sink = MagicMock()
        controller = DiffIKController(
            _robot(), SimulationActuation(sink, JOINTS, duration_s=0.5)
        )

        delta = controller.on_velocity(VELOCITY)

        sink.send_trajectory.assert_called_once()
        traj = sink.send_trajectory.call_args.args[0]
        assert isinstance(traj, JointTrajectory)
        assert traj.joint_names == JOINTS
        assert len(traj.points) == 1
        point = traj.points[0]
        np.testing.assert_allclose(point.positions, Q0 + delta)
        assert point.velocities == (0.0,) * 6
        assert point.accelerations == (0.0,) * 6
        assert point.effort == (0.0,) * 6
        assert point.time_from_start == 0.5

    def test_no_broadcast(self):
        sink = MagicMock()
        actuation = SimulationActuation(sink, JOINTS)
        assert actuation.broadcasts is False

        DiffIKController(_robot(), actuation).broadcast_tick()

        sink.assert_not_called()
        assert sink.method_calls == []

    def test_length_mismatch_rejected(self):
        actuation = SimulationActuation(MagicMock(), JOINTS[:5])
        with pytest.raises(ValueError):
            actuation.dispatch(Q0, np.zeros(6))


class TestHardwareActuation:
    def test_command_held_and_broadcast(self):
        sink = MagicMock()
        actuation = HardwareActuation(sink)
        controller = DiffIKController(_robot(), actuation)

        delta = controller.on_velocity(VELOCITY)
        sink.send_joint_velocity.assert_not_called()

        controller.broadcast_tick()
        sent = sink.send_joint_velocity.call_args.args[0]
        assert isinstance(sent, JointVelocity)
        np.testing.assert_allclose(sent.as_array(), delta)

    def test_broadcast_idempotent_without_new_command(self):
        sink = MagicMock()
        actuation = HardwareActuation(sink)
        DiffIKController(_robot(), actuation).on_velocity(VELOCITY)

        actuation.broadcast()
        actuation.broadcast()

        first, second = (c.args[0] for c in sink.send_joint_velocity.call_args_list)
        assert first == second

    def test_initial_held_value_is_zero(self):
        sink = MagicMock()
        HardwareActuation(sink).broadcast()
        assert sink.send_joint_velocity.call_args.args[0] == JointVelocity.zeros(6)

    def test_debug_freezes_held_value(self):
        sink = MagicMock()
        actuation = HardwareActuation(sink, debug=True)
        controller = DiffIKController(_robot(), actuation)

        controller.on_velocity(VELOCITY)
        controller.on_velocity(CartesianVelocity(linear=(-0.1, 0.0, 0.0)))
        controller.broadcast_tick()

        assert actuation.current() == JointVelocity.zeros(6)
        assert sink.send_joint_velocity.call_args.args[0] == JointVelocity.zeros(6)
        assert controller.solve_count == 2


class TestSingularJacobian:
    def test_exactly_singular_is_logged_not_raised(self, caplog):
        J = np.eye(6)
        J[5, 5] = 0.0
        actuation = MagicMock()
        controller = DiffIKController(_robot(jacobian=J), actuation)

        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            with caplog.at_level(logging.WARNING, logger="servoloop.control.diff_ik"):
                delta = controller.on_velocity(VELOCITY)

        assert "Near-singular" in caplog.text
        assert not np.all(np.isfinite(delta))
        actuation.dispatch.assert_called_once()
