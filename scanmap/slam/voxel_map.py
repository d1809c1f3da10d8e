"""Voxel map index: the persistent, density-bounded map of a mapping session.

The index owns the map cloud. Space is partitioned into cubic voxels of
edge length ``resolution``; each voxel holds at most one map point (the
first one inserted). This makes map growth an incremental greedy
voxel-grid subsampling filter whose size is bounded by the mapped volume
rather than by the number or overlap of scans.

Key classes and functions:
    - SpatialMapIndex: Interface any spatial structure must satisfy
    - VoxelMapIndex: Voxel hash map implementation with voxel-local
      nearest-neighbour search and a KD-tree fallback
    - voxel_keys: Vectorized voxel quantization

Invariants:
    - At most one map point per voxel.
    - The map cloud is append-only; existing points are never modified.
    - Only insert_if_unoccupied / insert_cloud append to the map cloud.

Author: Navigation Engineer
Date: 2026
"""

from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .cloud_transform import validate_cloud
from .config import validate_resolution
from .errors import NoNeighborsFound

VoxelKey = Tuple[int, int, int]


class SpatialMapIndex(Protocol):
    """Operations a spatial map index must provide.

    Any structure (voxel hash map, k-d tree, octree) implementing these
    operations and keeping the one-point-per-voxel invariant can back the
    mapper.
    """

    @property
    def resolution(self) -> float: ...

    @property
    def points(self) -> np.ndarray: ...

    def __len__(self) -> int: ...

    def reset(self, resolution: float) -> None: ...

    def is_occupied(self, point: np.ndarray) -> bool: ...

    def insert_if_unoccupied(self, point: np.ndarray) -> bool: ...

    def insert_cloud(self, cloud: np.ndarray) -> int: ...

    def approx_nearest_neighbor(self, point: np.ndarray) -> Optional[int]: ...

    def approx_nearest_neighbors(self, cloud: np.ndarray) -> np.ndarray: ...


def voxel_keys(points: np.ndarray, resolution: float) -> np.ndarray:
    """
    Quantize points to integer voxel indices.

    Args:
        points: Points of shape (N, 3).
        resolution: Voxel edge length in meters.

    Returns:
        Integer voxel indices of shape (N, 3): floor(p / resolution).

    Examples:
        >>> voxel_keys(np.array([[0.05, -0.05, 1.2]]), 0.5)
        array([[ 0, -1,  2]])
    """
    return np.floor(np.asarray(points, dtype=np.float64) / resolution).astype(np.int64)


def _ring_offsets(max_ring: int) -> List[np.ndarray]:
    """Voxel offsets grouped by Chebyshev ring: ring r holds offsets with max|o| == r."""
    span = np.arange(-max_ring, max_ring + 1)
    grid = np.stack(np.meshgrid(span, span, span, indexing="ij"), axis=-1).reshape(-1, 3)
    rings = np.max(np.abs(grid), axis=1)
    return [grid[rings == r] for r in range(max_ring + 1)]


class VoxelMapIndex:
    """Voxel hash map index over an append-only map cloud.

    Attributes:
        resolution: Voxel edge length in meters (fixed until the next reset).
        max_search_rings: Number of voxel rings searched around a query
            before falling back to a KD-tree over the whole map.

    Example:
        >>> index = VoxelMapIndex(resolution=0.5)
        >>> index.insert_cloud(np.array([[0.0, 0.0, 0.0], [0.05, 0.0, 0.0]]))
        1
        >>> index.insert_cloud(np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]]))
        1
        >>> len(index)
        2

    Notes:
        - Not thread-safe on its own; the mapper serialises access.
        - Nearest-neighbour answers are deterministic for a fixed map and
          query: ties are broken by the lowest map index.
    """

    _INITIAL_CAPACITY = 1024

    def __init__(self, resolution: float = 0.5, max_search_rings: int = 2) -> None:
        if max_search_rings < 0:
            raise ValueError(
                f"max_search_rings must be non-negative, got {max_search_rings}"
            )
        self.max_search_rings = int(max_search_rings)
        self._offsets = _ring_offsets(self.max_search_rings + 1)

        self._resolution = validate_resolution(resolution)
        self._clear()

    def _clear(self) -> None:
        self._buffer = np.empty((self._INITIAL_CAPACITY, 3), dtype=np.float64)
        self._size = 0
        self._voxels: Dict[VoxelKey, int] = {}
        self._tree: Optional[cKDTree] = None
        self._tree_size = 0

    @property
    def resolution(self) -> float:
        return self._resolution

    @property
    def points(self) -> np.ndarray:
        """Read-only view of the map cloud, shape (N, 3), in insertion order."""
        view = self._buffer[: self._size]
        view.flags.writeable = False
        return view

    def __len__(self) -> int:
        return self._size

    def reset(self, resolution: float) -> None:
        """
        Discard all points and rebuild an empty index.

        Args:
            resolution: New voxel edge length in meters.

        Raises:
            InvalidConfig: If resolution is not a finite positive number.
                The index keeps its previous contents in that case.
        """
        self._resolution = validate_resolution(resolution)
        self._clear()

    def voxel_key(self, point: np.ndarray) -> VoxelKey:
        """Integer voxel index containing ``point``."""
        point = np.asarray(point, dtype=np.float64)
        if point.shape != (3,):
            raise ValueError(f"point must have shape (3,), got {point.shape}")
        if not np.all(np.isfinite(point)):
            raise ValueError(f"point must be finite, got {point}")
        i, j, k = np.floor(point / self._resolution).astype(np.int64)
        return int(i), int(j), int(k)

    def voxel_center(self, key: VoxelKey) -> np.ndarray:
        """Center of voxel ``key`` in meters."""
        return (np.asarray(key, dtype=np.float64) + 0.5) * self._resolution

    def is_occupied(self, point: np.ndarray) -> bool:
        """True iff a previously inserted point lies in the voxel of ``point``."""
        return self.voxel_key(point) in self._voxels

    def insert_if_unoccupied(self, point: np.ndarray) -> bool:
        """
        Append ``point`` to the map cloud if its voxel is free.

        Returns:
            True if the point was inserted, False if the voxel was occupied.
        """
        point = np.asarray(point, dtype=np.float64)
        key = self.voxel_key(point)
        if key in self._voxels:
            return False
        self._append(key, point)
        return True

    def insert_cloud(self, cloud: np.ndarray) -> int:
        """
        Grow the map with a cloud already expressed in the map frame.

        Every point goes through the occupancy test; among several points
        landing in the same free voxel, the first one wins. Non-finite rows
        are dropped. The KD-tree behind the nearest-neighbour fallback is
        rebuilt here, so queries never modify the index.

        Args:
            cloud: Points of shape (N, 3).

        Returns:
            Number of points inserted.
        """
        cloud = validate_cloud(cloud)
        cloud = cloud[np.all(np.isfinite(cloud), axis=1)]
        if cloud.shape[0] == 0:
            return 0

        keys = voxel_keys(cloud, self._resolution)
        inserted = 0
        for point, key_row in zip(cloud, keys):
            key = (int(key_row[0]), int(key_row[1]), int(key_row[2]))
            if key in self._voxels:
                continue
            self._append(key, point)
            inserted += 1

        if inserted:
            self._tree = cKDTree(self._buffer[: self._size].copy())
            self._tree_size = self._size
        return inserted

    def _append(self, key: VoxelKey, point: np.ndarray) -> None:
        if self._size == self._buffer.shape[0]:
            grown = np.empty((2 * self._buffer.shape[0], 3), dtype=np.float64)
            grown[: self._size] = self._buffer[: self._size]
            self._buffer = grown
        self._buffer[self._size] = point
        self._voxels[key] = self._size
        self._size += 1

    def approx_nearest_neighbor(self, point: np.ndarray) -> Optional[int]:
        """
        Index (into the map cloud) of an approximately nearest map point.

        Searches the query voxel and successive rings of surrounding voxels.
        Once a ring yields a candidate, one more ring is examined (a point in
        the next ring can be closer than one in the current ring) and the
        closest candidate is returned. If nothing lies within
        ``max_search_rings`` rings, the exact nearest neighbour is taken
        from a KD-tree over the whole map.

        Returns:
            Map index of the neighbour, or None if the map is empty.
        """
        return self._nearest(point, [])

    def _nearest(self, point: np.ndarray, fallback: List[cKDTree]) -> Optional[int]:
        if self._size == 0:
            return None

        point = np.asarray(point, dtype=np.float64)
        center = np.asarray(self.voxel_key(point), dtype=np.int64)

        candidates: List[int] = []
        last_ring = self.max_search_rings
        first_hit: Optional[int] = None
        for ring, offsets in enumerate(self._offsets):
            if ring > last_ring:
                break
            for offset in offsets:
                index = self._voxels.get(
                    (int(center[0] + offset[0]), int(center[1] + offset[1]), int(center[2] + offset[2]))
                )
                if index is not None:
                    candidates.append(index)
            if candidates and first_hit is None:
                first_hit = ring
                last_ring = ring + 1

        if not candidates:
            if not fallback:
                fallback.append(self._fallback_tree())
            _, index = fallback[0].query(point, k=1)
            return int(index)

        candidates.sort()
        cand = np.asarray(candidates)
        d2 = np.sum((self._buffer[cand] - point) ** 2, axis=1)
        # argmin returns the first minimum, i.e. the lowest map index
        return int(cand[int(np.argmin(d2))])

    def _fallback_tree(self) -> cKDTree:
        # Single-point inserts leave the cached tree stale; query a temporary one
        if self._tree is not None and self._tree_size == self._size:
            return self._tree
        return cKDTree(self._buffer[: self._size].copy())

    def approx_nearest_neighbors(self, cloud: np.ndarray) -> np.ndarray:
        """
        Approximate nearest map point for every point of a query cloud.

        The output follows query order, may contain duplicates and is not
        sorted by distance. Query points without a neighbour are omitted.

        Args:
            cloud: Query points in the map frame, shape (N, 3).

        Returns:
            Neighbour points, shape (K, 3) with 0 < K <= N.

        Raises:
            NoNeighborsFound: If no query point has a neighbour.
        """
        cloud = validate_cloud(cloud)

        fallback: List[cKDTree] = []
        indices = []
        for point in cloud:
            index = self._nearest(point, fallback)
            if index is not None:
                indices.append(index)

        if not indices:
            raise NoNeighborsFound(
                f"No map neighbours for {cloud.shape[0]} query points "
                f"(map holds {self._size} points)"
            )
        return self._buffer[np.asarray(indices, dtype=np.int64)].copy()

    def occupied_voxels(self) -> np.ndarray:
        """Keys of all occupied voxels, shape (M, 3), in insertion order."""
        if not self._voxels:
            return np.empty((0, 3), dtype=np.int64)
        return np.array(list(self._voxels.keys()), dtype=np.int64)

    def bounds(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Axis-aligned (min, max) corners of the map cloud, or None if empty."""
        if self._size == 0:
            return None
        pts = self._buffer[: self._size]
        return pts.min(axis=0), pts.max(axis=0)
