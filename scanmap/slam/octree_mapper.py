"""Octree mapper: per-scan pose refinement and incremental map growth.

This module implements the scan-to-map loop of the mapping core:
    1. Transform the scan into the map frame with the raw (odometry) pose
    2. Bootstrap: if the map is empty, insert the scan and stop (unrefined)
    3. Localize and align: fetch approximate nearest map neighbours, move
       them back into the robot frame and register the scan against them
    4. Grow map: compose the raw pose with the correction, re-project the
       scan with the refined pose, grow the map and extend the refined path

A failed scan (unresolvable frame transform, no neighbours, no
convergence) leaves the map, its index and the refined path exactly as
they were: every mutation happens after convergence is confirmed.

Author: Navigation Engineer
Date: 2026
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

import numpy as np

from .cloud_transform import transform_cloud, validate_cloud
from .config import MapperConfig, validate_resolution
from .errors import (
    FrameTransformUnavailable,
    MappingError,
    NoNeighborsFound,
    RegistrationDidNotConverge,
)
from .frames import FrameRegistry
from .observers import Channel, MapperObserver, NullObserver
from .scan_matching import RegistrationResult, estimate_transform_icp, require_convergence
from .types import Pose6DOF, RefinedPath, StampedCloud
from .voxel_map import SpatialMapIndex, VoxelMapIndex

_VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}

_mapper_ids = itertools.count()


class MapperState(Enum):
    """Terminal state reached by a scan."""

    BOOTSTRAP = "bootstrap"
    GROW_MAP = "grow_map"
    FAILED = "failed"


@dataclass
class RefinementResult:
    """Outcome of refine_transform_and_grow_map.

    Attributes:
        state: Terminal state of the scan.
        refined: True only if registration converged and the map grew.
        pose: Refined pose on success, the raw pose otherwise.
        raw_pose: Raw pose given by the caller.
        registration: Registration outcome, if registration ran.
        points_added: Number of points inserted into the map.
        error: The per-scan error behind a FAILED state.
    """

    state: MapperState
    refined: bool
    pose: Pose6DOF
    raw_pose: Pose6DOF
    registration: Optional[RegistrationResult] = None
    points_added: int = 0
    error: Optional[MappingError] = None

    def __bool__(self) -> bool:
        return self.refined


class OctreeMapper:
    """Scan-to-map registration front-end with a voxel-bounded map.

    The mapper exclusively owns the map cloud (through its spatial index)
    and the refined path. Callers read them through ``map_cloud()``,
    ``map_points`` and ``refined_path``; only the mapper's own growth step
    inserts points.

    Attributes:
        config: Immutable mapper configuration.
        frames: Optional registry of sensor extrinsics.
        observer: Sink for optional artefacts.
        logger: Logger of this mapper, at the level selected by
            ``config.verbosity_level``.

    Example:
        >>> mapper = OctreeMapper(MapperConfig(octree_resolution=0.5))
        >>> scan = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        >>> result = mapper.refine_transform_and_grow_map(0.0, scan, Pose6DOF())
        >>> result.state, result.refined, mapper.map_size
        (<MapperState.BOOTSTRAP: 'bootstrap'>, False, 2)

    Notes:
        - refine_transform_and_grow_map, add_points_to_map and reset_map
          hold one lock for their whole duration, so scans from several
          producer threads are processed one at a time.
    """

    def __init__(
        self,
        config: Optional[MapperConfig] = None,
        index: Optional[SpatialMapIndex] = None,
        frames: Optional[FrameRegistry] = None,
        observer: Optional[MapperObserver] = None,
    ) -> None:
        self.config = config if config is not None else MapperConfig()
        self.frames = frames
        self.observer = observer if observer is not None else NullObserver()

        # One child logger per mapper; verbosity applies to this instance only
        self.logger = logging.getLogger(f"{__name__}.mapper{next(_mapper_ids)}")
        self.logger.setLevel(
            _VERBOSITY_LEVELS.get(self.config.verbosity_level, logging.DEBUG)
        )

        self._lock = threading.RLock()
        self._index: SpatialMapIndex = (
            index if index is not None else VoxelMapIndex(self.config.octree_resolution)
        )
        self._path = RefinedPath(frame_id=self.config.map_frame)
        self._stats: Dict[str, int] = {
            "scans": 0,
            "bootstrapped": 0,
            "refined": 0,
            "failed": 0,
        }

        self.reset_map()
        self.logger.info(
            "Octree mapper started (resolution %.3f m, map frame %r)",
            self.config.octree_resolution, self.config.map_frame,
        )

    # ------------------------------------------------------------------
    # Map state
    # ------------------------------------------------------------------

    def reset_map(self, resolution: Optional[float] = None) -> None:
        """
        Discard the map and rebuild an empty index.

        Args:
            resolution: Voxel resolution override (defaults to
                        ``config.octree_resolution``).

        Raises:
            InvalidConfig: If the resolution is not positive. The current
                map is kept in that case.
        """
        resolution = self.config.octree_resolution if resolution is None else resolution
        resolution = validate_resolution(resolution)
        with self._lock:
            self._index.reset(resolution)
        self.logger.debug("Map reset (resolution %.3f m)", resolution)

    @property
    def resolution(self) -> float:
        return self._index.resolution

    @property
    def map_size(self) -> int:
        return len(self._index)

    @property
    def is_map_empty(self) -> bool:
        return len(self._index) == 0

    @property
    def map_points(self) -> np.ndarray:
        """Read-only view of the map cloud in the map frame."""
        return self._index.points

    def map_cloud(self, stamp: float = 0.0) -> StampedCloud:
        """Copy of the map cloud tagged with the map frame."""
        with self._lock:
            points = np.array(self._index.points, copy=True)
        return StampedCloud(points=points, frame_id=self.config.map_frame, stamp=stamp)

    @property
    def refined_path(self) -> RefinedPath:
        """Copy of the refined path (one entry per refined scan)."""
        with self._lock:
            return self._path.copy()

    def statistics(self) -> Dict[str, int]:
        """Scan counters plus the current map size."""
        with self._lock:
            return {**self._stats, "map_points": len(self._index), "path_length": len(self._path)}

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def add_points_to_map(self, cloud_in_map: np.ndarray) -> int:
        """
        Grow the map with a cloud expressed in the map frame.

        Each point is inserted only if its voxel is still free (first wins).
        Non-finite points are dropped.

        Returns:
            Number of points inserted.
        """
        cloud_in_map = validate_cloud(cloud_in_map, "cloud_in_map")
        cloud_in_map = cloud_in_map[np.all(np.isfinite(cloud_in_map), axis=1)]
        with self._lock:
            return self._index.insert_cloud(cloud_in_map)

    def approx_nearest_neighbors(self, cloud_in_map: np.ndarray) -> np.ndarray:
        """
        Approximate nearest map point for every point of ``cloud_in_map``.

        Raises:
            NoNeighborsFound: If the retrieval yields no points.
        """
        with self._lock:
            return self._index.approx_nearest_neighbors(cloud_in_map)

    def estimate_transform_icp(
        self, scan: np.ndarray, nn_cloud: np.ndarray, stamp: float = 0.0
    ) -> RegistrationResult:
        """Register ``scan`` onto ``nn_cloud`` (both in the robot frame)."""
        return estimate_transform_icp(scan, nn_cloud, self.config.registration, stamp=stamp)

    def transform_cloud_to_pose_frame(
        self, cloud: np.ndarray, pose: Pose6DOF
    ) -> np.ndarray:
        """Express ``cloud`` in the frame that ``pose`` is expressed in."""
        return transform_cloud(cloud, pose)

    def _scan_in_robot_frame(
        self, scan: np.ndarray, scan_frame: Optional[str]
    ) -> np.ndarray:
        if scan_frame is None:
            if self.frames is None:
                return scan
            scan_frame = self.config.laser_frame

        robot_frame = self.config.robot_frame
        if scan_frame == robot_frame:
            return scan
        if self.frames is None:
            raise FrameTransformUnavailable(
                f"No frame registry to move scan from {scan_frame!r} to {robot_frame!r}",
                target_frame=robot_frame,
                source_frame=scan_frame,
            )

        extrinsic = self.frames.lookup(robot_frame, scan_frame)
        return transform_cloud(scan, extrinsic, robot_frame, scan_frame)

    # ------------------------------------------------------------------
    # Per-scan entry point
    # ------------------------------------------------------------------

    def refine_transform_and_grow_map(
        self,
        stamp: float,
        scan: np.ndarray,
        raw_pose: Pose6DOF,
        scan_frame: Optional[str] = None,
    ) -> RefinementResult:
        """
        Refine the raw pose of a scan against the map and grow the map.

        Args:
            stamp: Capture timestamp of the scan (seconds).
            scan: Scan points, shape (N, 3), in ``scan_frame``. Non-finite
                  points are dropped.
            raw_pose: Pose of the robot in the map frame from odometry.
            scan_frame: Frame of the scan. Defaults to the robot frame, or
                        to ``config.laser_frame`` when a frame registry is
                        configured.

        Returns:
            RefinementResult. ``refined`` is False on bootstrap (first scan,
            raw pose accepted as-is) and on failure (raw pose retained, no
            map or path change).

        Raises:
            ValueError: If the scan is wrongly shaped or has no finite point.
        """
        scan = validate_cloud(scan, "scan")
        finite = np.all(np.isfinite(scan), axis=1)
        if not np.all(finite):
            self.logger.debug("Dropping %d non-finite scan points", int(np.sum(~finite)))
            scan = scan[finite]
        if scan.shape[0] == 0:
            raise ValueError("scan has no finite points")

        with self._lock:
            self._stats["scans"] += 1
            result = self._process_scan(stamp, scan, raw_pose, scan_frame)
            self._stats[
                {
                    MapperState.BOOTSTRAP: "bootstrapped",
                    MapperState.GROW_MAP: "refined",
                    MapperState.FAILED: "failed",
                }[result.state]
            ] += 1
            return result

    def _process_scan(
        self,
        stamp: float,
        scan: np.ndarray,
        raw_pose: Pose6DOF,
        scan_frame: Optional[str],
    ) -> RefinementResult:
        map_frame = self.config.map_frame
        robot_frame = self.config.robot_frame

        try:
            scan = self._scan_in_robot_frame(scan, scan_frame)
            cloud_in_map = transform_cloud(scan, raw_pose, map_frame, robot_frame)
        except FrameTransformUnavailable as exc:
            return self._failed(raw_pose, exc)

        # Bootstrap
        if len(self._index) == 0:
            self.logger.warning("Octree map is empty, bootstrapping with the raw pose")
            added = self._index.insert_cloud(cloud_in_map)
            self._publish_cloud(
                Channel.MAP_CLOUD,
                lambda: StampedCloud(np.array(self._index.points, copy=True), map_frame, stamp),
            )
            return RefinementResult(
                state=MapperState.BOOTSTRAP,
                refined=False,
                pose=raw_pose,
                raw_pose=raw_pose,
                points_added=added,
            )

        # Localize and align
        try:
            nn_cloud_in_map = self._index.approx_nearest_neighbors(cloud_in_map)
            nn_cloud = transform_cloud(
                nn_cloud_in_map, raw_pose.inverse(), robot_frame, map_frame
            )
        except (NoNeighborsFound, FrameTransformUnavailable) as exc:
            return self._failed(raw_pose, exc)

        self._publish_cloud(
            Channel.NN_CLOUD, lambda: StampedCloud(nn_cloud.copy(), robot_frame, stamp)
        )

        registration = estimate_transform_icp(
            scan, nn_cloud, self.config.registration, stamp=stamp
        )
        try:
            correction = require_convergence(registration)
            refined_pose = (raw_pose + correction).with_stamp(stamp)
            registered = transform_cloud(scan, refined_pose, map_frame, robot_frame)
        except (RegistrationDidNotConverge, FrameTransformUnavailable) as exc:
            return self._failed(raw_pose, exc, registration)

        # Grow map
        added = self._index.insert_cloud(registered)
        self._path.append(refined_pose, stamp)
        self.logger.info(
            "Scan at %.3f refined in %d iterations (fitness %.4g), %d points added, map holds %d",
            stamp, registration.iterations, registration.fitness, added, len(self._index),
        )

        self._publish_cloud(
            Channel.MAP_CLOUD,
            lambda: StampedCloud(np.array(self._index.points, copy=True), map_frame, stamp),
        )
        self._publish_path()
        self._publish_cloud(
            Channel.REGISTERED_CLOUD, lambda: StampedCloud(registered.copy(), map_frame, stamp)
        )

        return RefinementResult(
            state=MapperState.GROW_MAP,
            refined=True,
            pose=refined_pose,
            raw_pose=raw_pose,
            registration=registration,
            points_added=added,
        )

    def _failed(
        self,
        raw_pose: Pose6DOF,
        error: MappingError,
        registration: Optional[RegistrationResult] = None,
    ) -> RefinementResult:
        self.logger.warning("Scan not refined: %s", error)
        return RefinementResult(
            state=MapperState.FAILED,
            refined=False,
            pose=raw_pose,
            raw_pose=raw_pose,
            registration=registration,
            error=error,
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def _publish_cloud(self, channel: Channel, build: Callable[[], StampedCloud]) -> None:
        try:
            if self.observer.wants(channel):
                self.observer.publish_cloud(channel, build())
        except Exception:
            self.logger.warning("Observer failed on channel %r", channel.value, exc_info=True)

    def _publish_path(self) -> None:
        try:
            if self.observer.wants(Channel.REFINED_PATH):
                self.observer.publish_path(self._path.copy())
        except Exception:
            self.logger.warning("Observer failed on the refined path", exc_info=True)
