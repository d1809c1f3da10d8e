"""Scan-to-map registration and incremental mapping.

This package implements the mapping core of a 3D LiDAR SLAM front-end:
each incoming scan, tagged with a raw odometry pose, is registered against
a persistent voxel-bounded map; a converged registration refines the pose,
grows the map and extends the refined path.

This is NOT a full SLAM framework. It has no loop closure, no pose graph
and no map persistence. It provides:
    - Pose6DOF and SE(3) operations
    - VoxelMapIndex: one-point-per-voxel map with approximate NN search
    - estimate_transform_icp: GICP / point-to-point registration
    - OctreeMapper: the per-scan refinement pipeline
    - FrameRegistry: static sensor extrinsics
    - Observers for intermediate artefacts

Example usage:
    >>> import numpy as np
    >>> from scanmap.slam import MapperConfig, OctreeMapper, Pose6DOF
    >>>
    >>> mapper = OctreeMapper(MapperConfig(octree_resolution=0.25))
    >>> scan = np.random.default_rng(0).uniform(-5, 5, size=(500, 3))
    >>> result = mapper.refine_transform_and_grow_map(0.0, scan, Pose6DOF())
    >>> result.state.value
    'bootstrap'

Author: Navigation Engineer
Date: 2026
"""

from .cloud_transform import transform_cloud, validate_cloud
from .config import MapperConfig, RegistrationConfig, validate_resolution
from .errors import (
    FrameTransformUnavailable,
    InvalidConfig,
    MappingError,
    NoNeighborsFound,
    RegistrationDidNotConverge,
)
from .frames import FrameLink, FrameRegistry
from .observers import CallbackObserver, Channel, MapperObserver, NullObserver, RecordingObserver
from .octree_mapper import MapperState, OctreeMapper, RefinementResult
from .scan_generation import (
    generate_room_points,
    generate_scan,
    generate_trajectory,
    perturb_pose,
)
from .scan_matching import (
    RegistrationResult,
    align_svd,
    compute_icp_residual,
    estimate_point_covariances,
    estimate_transform_icp,
    find_correspondences,
    gicp_cost,
    gicp_information,
    gicp_step,
    minimize_gicp_pairs,
    require_convergence,
)
from .se3 import (
    se3_apply,
    se3_compose,
    se3_from_xyz_rpy,
    se3_increment,
    se3_inverse,
    se3_relative,
    se3_to_xyz_rpy,
)
from .types import PathEntry, PointCloud3D, Pose6DOF, RefinedPath, StampedCloud
from .voxel_map import SpatialMapIndex, VoxelMapIndex, voxel_keys

__all__ = [
    # Core types
    "Pose6DOF",
    "PointCloud3D",
    "StampedCloud",
    "PathEntry",
    "RefinedPath",
    # SE(3) operations
    "se3_compose",
    "se3_inverse",
    "se3_apply",
    "se3_relative",
    "se3_increment",
    "se3_from_xyz_rpy",
    "se3_to_xyz_rpy",
    # Configuration and errors
    "MapperConfig",
    "RegistrationConfig",
    "validate_resolution",
    "MappingError",
    "InvalidConfig",
    "NoNeighborsFound",
    "RegistrationDidNotConverge",
    "FrameTransformUnavailable",
    # Frames and cloud transforms
    "FrameLink",
    "FrameRegistry",
    "transform_cloud",
    "validate_cloud",
    # Map index
    "SpatialMapIndex",
    "VoxelMapIndex",
    "voxel_keys",
    # Registration
    "RegistrationResult",
    "find_correspondences",
    "compute_icp_residual",
    "align_svd",
    "estimate_point_covariances",
    "gicp_information",
    "gicp_cost",
    "gicp_step",
    "minimize_gicp_pairs",
    "estimate_transform_icp",
    "require_convergence",
    # Mapping pipeline
    "OctreeMapper",
    "MapperState",
    "RefinementResult",
    "Channel",
    "MapperObserver",
    "NullObserver",
    "RecordingObserver",
    "CallbackObserver",
    # Synthetic data
    "generate_room_points",
    "generate_scan",
    "generate_trajectory",
    "perturb_pose",
]
