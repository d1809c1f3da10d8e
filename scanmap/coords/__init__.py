"""Rotation representations used by the mapping core.

This package provides conversions between rotation matrices, unit
quaternions, Euler angles and axis-angle vectors, plus the SO(3) helpers
(re-orthonormalisation, cross-product matrices) needed by 6-DOF poses and
point cloud registration.
"""

from scanmap.coords.rotations import (
    euler_to_rotation_matrix,
    is_rotation_matrix,
    normalize_quat,
    orthonormalize_rotation,
    quat_to_rotation_matrix,
    rotation_angle,
    rotation_matrix_to_euler,
    rotation_matrix_to_quat,
    skew_symmetric,
    so3_exp,
)

__all__ = [
    "euler_to_rotation_matrix",
    "rotation_matrix_to_euler",
    "normalize_quat",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    "orthonormalize_rotation",
    "is_rotation_matrix",
    "skew_symmetric",
    "so3_exp",
    "rotation_angle",
]
