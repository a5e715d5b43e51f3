"""
Closed-loop runs of the servo runtime against the simulated arm.
"""

import json

import numpy as np
import pytest

from servoloop.control import cli
from servoloop.control.runtime import ServoRuntime

SIM_RATE_HZ = 100.0


def _error(arm, target) -> float:
    return float(np.linalg.norm(arm.end_effector_pose().translation - target.translation))


def _run(runtime, arm, seconds):
    runtime.add_task("sim_arm", lambda: arm.step(1.0 / SIM_RATE_HZ), SIM_RATE_HZ)
    runtime.start()
    try:
        stopped_early = runtime.wait(seconds)
    finally:
        runtime.stop()
    return stopped_early


@pytest.mark.integration
def test_hardware_mode_converges(tf_buffer, arm, target, make_config):
    initial = _error(arm, target)
    runtime = ServoRuntime(make_config(), tf_buffer, arm, velocity_sink=arm)

    stopped_early = _run(runtime, arm, 3.0)

    assert not stopped_early
    assert not runtime.failed
    assert runtime.servo.cycle_count > 20
    assert arm.velocity_count > 100
    assert arm.trajectory_count == 0
    assert _error(arm, target) < 0.2 * initial


@pytest.mark.integration
def test_simulation_mode_converges(tf_buffer, arm, target, make_config):
    initial = _error(arm, target)
    runtime = ServoRuntime(
        make_config(simulation=True, gain=1.0), tf_buffer, arm, trajectory_sink=arm
    )

    _run(runtime, arm, 3.0)

    assert not runtime.failed
    assert arm.trajectory_count > 20
    assert arm.velocity_count == 0
    assert _error(arm, target) < 0.2 * initial


@pytest.mark.integration
def test_debug_mode_holds_arm_still(tf_buffer, arm, target, make_config):
    q0 = arm.joint_positions("arm")
    runtime = ServoRuntime(make_config(debug=True), tf_buffer, arm, velocity_sink=arm)

    _run(runtime, arm, 1.0)

    assert runtime.diff_ik.solve_count > 5
    assert arm.velocity_count > 50
    np.testing.assert_allclose(arm.joint_positions("arm"), q0)


@pytest.mark.integration
def test_missing_target_is_fatal(tf_buffer, arm, make_config):
    runtime = ServoRuntime(
        make_config(target_frame="absent"), tf_buffer, arm, velocity_sink=arm
    )

    stopped_early = _run(runtime, arm, 3.0)

    assert stopped_early
    assert runtime.failed
    assert runtime.servo.failed
    assert runtime.channel.published_count == 0
    assert runtime.diff_ik.solve_count == 0


@pytest.mark.integration
def test_cli_runs_closed_loop(tmp_path, monkeypatch):
    monkeypatch.delenv("SERVOLOOP_TARGET_FRAME", raising=False)
    params = tmp_path / "params.json"
    params.write_text(
        json.dumps(
            {
                "target_frame": "target",
                "visual_servoing_k": 1.0,
                "visual_servoing_speed_cap": 5.0,
                "startup_delay_s": 0.0,
                "servo_rate_hz": 20.0,
            }
        )
    )

    assert cli.main(["--params", str(params), "--duration", "1.0", "-q"]) == 0


@pytest.mark.integration
def test_cli_rejects_missing_params(monkeypatch):
    for name in ("TARGET_FRAME", "VISUAL_SERVOING_K", "VISUAL_SERVOING_SPEED_CAP"):
        monkeypatch.delenv("SERVOLOOP_" + name, raising=False)

    assert cli.main(["--gain", "1.0", "-q"]) == 1
