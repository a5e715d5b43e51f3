"""
Unit tests for the in-memory transform tree.
"""

import threading
import time

import numpy as np
import pytest

from servoloop.exceptions import TransformLookupError
from servoloop.sim.tf_buffer import TransformBuffer
from servoloop.utils.se3_utils import RigidTransform

SIN45 = np.sqrt(0.5)


def _tf(parent, child, translation, quaternion=(0.0, 0.0, 0.0, 1.0), stamp=1.0):
    return RigidTransform.from_translation_quaternion(
        parent, child, translation, quaternion, stamp
    )


@pytest.fixture
def buffer():
    buf = TransformBuffer()
    buf.set_transform(_tf("root", "base", (0.0, 0.0, 1.0), (0.0, 0.0, SIN45, SIN45)))
    buf.set_transform(_tf("base", "tool", (1.0, 0.0, 0.0), stamp=2.0))
    buf.set_transform(_tf("root", "target", (0.5, 0.5, 0.0)))
    return buf


class TestLookup:
    def test_direct_edge(self, buffer):
        tf = buffer.lookup("root", "target", timeout=0.1)
        assert (tf.parent_frame, tf.child_frame) == ("root", "target")
        np.testing.assert_allclose(tf.translation, (0.5, 0.5, 0.0))

    def test_chain(self, buffer):
        tf = buffer.lookup("root", "tool", timeout=0.1)
        # base is rotated 90 deg about z, so its +x is root +y
        np.testing.assert_allclose(tf.translation, (0.0, 1.0, 1.0), atol=1e-12)
        assert tf.stamp == 1.0

    def test_reverse_direction(self, buffer):
        forward = buffer.lookup("root", "tool", timeout=0.1)
        backward = buffer.lookup("tool", "root", timeout=0.1)
        np.testing.assert_allclose(
            forward.compose(backward).translation, np.zeros(3), atol=1e-12
        )

    def test_across_branches(self, buffer):
        tf = buffer.lookup("target", "tool", timeout=0.1)
        np.testing.assert_allclose(tf.translation, (-0.5, 0.5, 1.0), atol=1e-12)

    def test_latest_value_replaces_edge(self, buffer):
        buffer.set_transform(_tf("root", "target", (0.0, 0.0, 2.0)))
        np.testing.assert_allclose(
            buffer.lookup("root", "target", timeout=0.1).translation, (0.0, 0.0, 2.0)
        )

    def test_frames(self, buffer):
        assert buffer.frames() == {"root", "base", "tool", "target"}
        assert buffer.can_transform("tool", "target")
        assert not buffer.can_transform("tool", "nowhere")


class TestLookupFailure:
    def test_unknown_frame_times_out(self, buffer):
        start = time.monotonic()
        with pytest.raises(TransformLookupError, match="unknown frame") as exc_info:
            buffer.lookup("root", "nowhere", timeout=0.05)
        assert time.monotonic() - start >= 0.04
        assert exc_info.value.child_frame == "nowhere"
        assert isinstance(exc_info.value, TimeoutError)

    def test_disconnected_trees(self, buffer):
        buffer.set_transform(_tf("other_root", "island", (0.0, 0.0, 0.0)))
        with pytest.raises(TransformLookupError, match="not connected"):
            buffer.lookup("root", "island", timeout=0.01)

    def test_blocked_lookup_resolves_when_published(self, buffer):
        def publish_later():
            time.sleep(0.05)
            buffer.set_transform(_tf("root", "late", (1.0, 2.0, 3.0)))

        t = threading.Thread(target=publish_later)
        t.start()
        tf = buffer.lookup("root", "late", timeout=2.0)
        t.join()
        np.testing.assert_allclose(tf.translation, (1.0, 2.0, 3.0))


class TestTreeInvariants:
    def test_self_edge_rejected(self, buffer):
        with pytest.raises(ValueError):
            buffer.set_transform(_tf("root", "root", (0.0, 0.0, 0.0)))

    def test_second_parent_rejected(self, buffer):
        with pytest.raises(ValueError, match="already has parent"):
            buffer.set_transform(_tf("target", "tool", (0.0, 0.0, 0.0)))

    def test_cycle_rejected(self, buffer):
        with pytest.raises(ValueError, match="cycle"):
            buffer.set_transform(_tf("tool", "root", (0.0, 0.0, 0.0)))
