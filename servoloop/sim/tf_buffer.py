"""
In-memory transform tree with blocking lookups.

Frames form a tree: every child frame has exactly one parent. A lookup
between any two frames of the same tree is resolved through their common
ancestor, so lookups work in either direction and across chains.
"""

from __future__ import annotations

import logging
import threading
import time

import sophuspy as sp

from servoloop.exceptions import TransformLookupError
from servoloop.utils.se3_utils import RigidTransform

logger = logging.getLogger(__name__)


class TransformBuffer:
    """Latest transform per frame edge; implements TransformProvider."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        # child -> (parent, pose of child in parent, stamp)
        self._edges: dict[str, tuple[str, sp.SE3, float]] = {}

    def set_transform(self, transform: RigidTransform) -> None:
        """Insert or replace the edge parent_frame -> child_frame."""
        parent, child = transform.parent_frame, transform.child_frame
        if parent == child:
            raise ValueError(f"Transform from frame '{parent}' to itself")
        with self._cond:
            existing = self._edges.get(child)
            if existing is not None and existing[0] != parent:
                raise ValueError(
                    f"Frame '{child}' already has parent '{existing[0]}', not '{parent}'"
                )
            if existing is None and self._is_ancestor(child, parent):
                raise ValueError(f"Edge '{parent}' -> '{child}' would create a cycle")
            if existing is None:
                logger.debug("New frame edge %s -> %s", parent, child)
            stamp = transform.stamp or time.time()
            self._edges[child] = (parent, transform.pose, stamp)
            self._cond.notify_all()

    def frames(self) -> set[str]:
        with self._cond:
            return self._known_frames()

    def can_transform(self, parent_frame: str, child_frame: str) -> bool:
        with self._cond:
            return self._resolve(parent_frame, child_frame) is not None

    def lookup(self, parent_frame: str, child_frame: str, timeout: float) -> RigidTransform:
        """Pose of child_frame in parent_frame, waiting up to timeout seconds for it."""
        deadline = time.monotonic() + max(0.0, timeout)
        with self._cond:
            while True:
                resolved = self._resolve(parent_frame, child_frame)
                if resolved is not None:
                    pose, stamp = resolved
                    return RigidTransform(parent_frame, child_frame, pose, stamp)
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransformLookupError(
                        parent_frame, child_frame, timeout, self._explain(parent_frame, child_frame)
                    )
                self._cond.wait(remaining)

    # Callers hold self._cond

    def _chain_to_root(self, frame: str) -> list[str]:
        chain = [frame]
        while chain[-1] in self._edges:
            chain.append(self._edges[chain[-1]][0])
        return chain

    def _is_ancestor(self, ancestor: str, frame: str) -> bool:
        return ancestor in self._chain_to_root(frame)

    def _pose_in_ancestor(self, chain: list[str], ancestor: str) -> tuple[sp.SE3, float]:
        """Pose of chain[0] in ancestor, walking the chain upward."""
        pose = sp.SE3()
        stamp = float("inf")
        for frame in chain:
            if frame == ancestor:
                break
            _, edge_pose, edge_stamp = self._edges[frame]
            pose = edge_pose * pose
            stamp = min(stamp, edge_stamp)
        return pose, stamp

    def _resolve(self, parent_frame: str, child_frame: str) -> tuple[sp.SE3, float] | None:
        if parent_frame == child_frame:
            if parent_frame not in self._known_frames():
                return None
            return sp.SE3(), time.time()
        child_chain = self._chain_to_root(child_frame)
        parent_chain = self._chain_to_root(parent_frame)
        common = next((f for f in child_chain if f in parent_chain), None)
        if common is None:
            return None
        T_common_child, stamp_c = self._pose_in_ancestor(child_chain, common)
        T_common_parent, stamp_p = self._pose_in_ancestor(parent_chain, common)
        stamp = min(stamp_c, stamp_p)
        if stamp == float("inf"):
            stamp = 0.0
        return T_common_parent.inverse() * T_common_child, stamp

    def _known_frames(self) -> set[str]:
        names = set(self._edges)
        names.update(parent for parent, _, _ in self._edges.values())
        return names

    def _explain(self, parent_frame: str, child_frame: str) -> str:
        known = self._known_frames()
        missing = [f for f in (parent_frame, child_frame) if f not in known]
        if missing:
            return "unknown frame(s) " + ", ".join(f"'{f}'" for f in missing)
        return "frames are not connected"
