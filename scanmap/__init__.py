"""Scan-to-map registration and incremental mapping for 3D LiDAR SLAM.

This package contains the reusable components of the mapping core:
- coords: Rotation representations and SO(3) helpers
- slam: 6-DOF poses, voxel map index, registration, mapping pipeline
- eval: Trajectory error metrics
"""

__version__ = "0.1.0"
