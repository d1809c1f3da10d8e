"""Static frame registry for sensor extrinsics.

Scans are captured in the laser frame while registration runs in the
robot frame. The registry stores the fixed transforms between such named
frames and resolves chains of them:

    registry = FrameRegistry()
    registry.set_transform("base_link", "laser", laser_in_base)
    T = registry.lookup("base_link", "laser")   # laser -> base_link

A lookup that cannot be resolved raises FrameTransformUnavailable rather
than returning an identity or stale transform.
"""

from collections import deque
from typing import Dict, List, NamedTuple, Optional, Tuple

from .errors import FrameTransformUnavailable
from .types import Pose6DOF


class FrameLink(NamedTuple):
    """Fixed transform between two frames.

    Attributes:
        parent: Frame in which the child pose is expressed.
        child: Frame whose pose is stored.
        pose: Pose of ``child`` in ``parent`` (maps child points to parent).
    """

    parent: str
    child: str
    pose: Pose6DOF

    def __repr__(self) -> str:
        return f"FrameLink({self.parent} -> {self.child})"


class FrameRegistry:
    """Registry of static transforms between named frames.

    Links are stored in both directions; lookups walk the shortest chain
    of links (breadth first) between the two frames.
    """

    def __init__(self) -> None:
        self._links: Dict[Tuple[str, str], FrameLink] = {}
        self._adjacency: Dict[str, Dict[str, Pose6DOF]] = {}

    def set_transform(self, parent: str, child: str, pose: Pose6DOF) -> None:
        """Register (or replace) the pose of ``child`` in ``parent``.

        Raises:
            ValueError: If parent and child are the same frame or empty.
        """
        if not parent or not child:
            raise ValueError("Frame names must be non-empty")
        if parent == child:
            raise ValueError(f"Cannot link frame {parent!r} to itself")

        self._links[(parent, child)] = FrameLink(parent, child, pose)
        self._adjacency.setdefault(parent, {})[child] = pose
        self._adjacency.setdefault(child, {})[parent] = pose.inverse()

    def links(self) -> List[FrameLink]:
        """All registered links, in insertion order."""
        return list(self._links.values())

    def has_frame(self, frame: str) -> bool:
        return frame in self._adjacency

    def can_transform(self, target_frame: str, source_frame: str) -> bool:
        """Whether lookup(target_frame, source_frame) would succeed."""
        return self._find_chain(target_frame, source_frame) is not None

    def lookup(self, target_frame: str, source_frame: str) -> Pose6DOF:
        """
        Resolve the pose of ``source_frame`` in ``target_frame``.

        The returned pose maps points expressed in ``source_frame`` into
        ``target_frame``.

        Raises:
            FrameTransformUnavailable: If no chain of links connects the frames.
        """
        chain = self._find_chain(target_frame, source_frame)
        if chain is None:
            raise FrameTransformUnavailable(
                f"No transform from {source_frame!r} to {target_frame!r}",
                target_frame=target_frame,
                source_frame=source_frame,
            )

        pose = Pose6DOF.identity()
        for step in chain:
            pose = pose + step
        return pose

    def _find_chain(
        self, target_frame: str, source_frame: str
    ) -> Optional[List[Pose6DOF]]:
        if target_frame == source_frame:
            return []
        if target_frame not in self._adjacency or source_frame not in self._adjacency:
            return None

        # BFS from the target; each hop's pose maps the next frame into the current one
        previous: Dict[str, Tuple[str, Pose6DOF]] = {}
        visited = {target_frame}
        queue = deque([target_frame])
        while queue:
            frame = queue.popleft()
            if frame == source_frame:
                break
            for neighbor in sorted(self._adjacency[frame]):
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                previous[neighbor] = (frame, self._adjacency[frame][neighbor])
                queue.append(neighbor)

        if source_frame not in visited:
            return None

        chain: List[Pose6DOF] = []
        frame = source_frame
        while frame != target_frame:
            parent, pose = previous[frame]
            chain.append(pose)
            frame = parent
        chain.reverse()
        return chain
