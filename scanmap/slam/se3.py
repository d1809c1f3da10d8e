"""SE(3) operations on 4x4 homogeneous transforms.

Functional counterparts of the Pose6DOF methods, used inside tight loops
(registration iterations, cloud transforms) where building pose objects
would only add overhead.

Key functions:
    - se3_compose: Compose two transforms (T1 ⊕ T2 = T1 @ T2)
    - se3_inverse: Invert a rigid transform
    - se3_apply: Transform (N, 3) points
    - se3_relative: Relative transform T1⁻¹ T2
    - se3_increment: 4x4 transform from a small [rx, ry, rz, tx, ty, tz] step
    - se3_from_xyz_rpy / se3_to_xyz_rpy: Conversions to 6-vectors

All functions accept either a (4, 4) array or a Pose6DOF.

Author: Navigation Engineer
Date: 2026
"""

from typing import Union

import numpy as np

from scanmap.coords.rotations import (
    euler_to_rotation_matrix,
    orthonormalize_rotation,
    rotation_matrix_to_euler,
    so3_exp,
)

from .types import Pose6DOF

TransformLike = Union[np.ndarray, Pose6DOF]


def _as_matrix(T: TransformLike, name: str = "T") -> np.ndarray:
    if isinstance(T, Pose6DOF):
        return T.to_matrix()
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"{name} must have shape (4, 4), got {T.shape}")
    return T


def se3_compose(T1: TransformLike, T2: TransformLike) -> np.ndarray:
    """
    Compose two rigid transforms: T = T1 ⊕ T2.

    ``T2`` is applied in the frame established by ``T1``. The rotation
    block of the result is re-orthonormalized.

    Args:
        T1: First transform, (4, 4) array or Pose6DOF.
        T2: Second transform, (4, 4) array or Pose6DOF.

    Returns:
        Composed transform of shape (4, 4).

    Examples:
        >>> T1 = se3_from_xyz_rpy([1.0, 0.0, 0.0, 0.0, 0.0, np.pi / 2])
        >>> T2 = se3_from_xyz_rpy([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])
        >>> np.allclose(se3_compose(T1, T2)[:3, 3], [1.0, 1.0, 0.0])
        True
    """
    T = _as_matrix(T1, "T1") @ _as_matrix(T2, "T2")
    T[:3, :3] = orthonormalize_rotation(T[:3, :3])
    T[3, :] = [0.0, 0.0, 0.0, 1.0]
    return T


def se3_inverse(T: TransformLike) -> np.ndarray:
    """
    Invert a rigid transform using R⁻¹ = Rᵀ and t⁻¹ = -Rᵀ t.

    Args:
        T: Transform, (4, 4) array or Pose6DOF.

    Returns:
        Inverse transform of shape (4, 4).
    """
    T = _as_matrix(T)
    R_inv = T[:3, :3].T
    T_inv = np.eye(4)
    T_inv[:3, :3] = R_inv
    T_inv[:3, 3] = -R_inv @ T[:3, 3]
    return T_inv


def se3_apply(T: TransformLike, points: np.ndarray) -> np.ndarray:
    """
    Transform points by a rigid transform: p' = R p + t.

    Args:
        T: Transform, (4, 4) array or Pose6DOF.
        points: Points of shape (N, 3) or a single point of shape (3,).

    Returns:
        Transformed points with the same shape as the input.

    Raises:
        ValueError: If points do not have shape (N, 3) or (3,).
    """
    T = _as_matrix(T)
    points = np.asarray(points, dtype=np.float64)

    single = points.ndim == 1
    if single:
        if points.shape != (3,):
            raise ValueError(f"point must have shape (3,), got {points.shape}")
        points = points[np.newaxis, :]
    elif points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {points.shape}")

    transformed = points @ T[:3, :3].T + T[:3, 3]
    return transformed[0] if single else transformed


def se3_relative(T1: TransformLike, T2: TransformLike) -> np.ndarray:
    """
    Relative transform from T1 to T2: T_rel = T1⁻¹ ⊕ T2.

    Satisfies se3_compose(T1, se3_relative(T1, T2)) == T2.
    """
    return se3_compose(se3_inverse(T1), T2)


def se3_increment(delta: np.ndarray) -> np.ndarray:
    """
    Build a transform from a small increment [rx, ry, rz, tx, ty, tz].

    The rotation part is the axis-angle exponential; the translation is
    added directly, matching the left-perturbation p' = exp(r) p + t used
    by the registration Jacobians.

    Args:
        delta: Increment of shape (6,), rotation vector (radians) first.

    Returns:
        Transform of shape (4, 4).
    """
    delta = np.asarray(delta, dtype=np.float64)
    if delta.shape != (6,):
        raise ValueError(f"delta must have shape (6,), got {delta.shape}")

    T = np.eye(4)
    T[:3, :3] = so3_exp(delta[:3])
    T[:3, 3] = delta[3:]
    return T


def se3_from_xyz_rpy(xyz_rpy) -> np.ndarray:
    """Build a 4x4 transform from [x, y, z, roll, pitch, yaw]."""
    xyz_rpy = np.asarray(xyz_rpy, dtype=np.float64)
    if xyz_rpy.shape != (6,):
        raise ValueError(f"xyz_rpy must have shape (6,), got {xyz_rpy.shape}")

    T = np.eye(4)
    T[:3, :3] = euler_to_rotation_matrix(*xyz_rpy[3:])
    T[:3, 3] = xyz_rpy[:3]
    return T


def se3_to_xyz_rpy(T: TransformLike) -> np.ndarray:
    """Convert a transform to [x, y, z, roll, pitch, yaw]."""
    T = _as_matrix(T)
    return np.concatenate([T[:3, 3], rotation_matrix_to_euler(T[:3, :3])])
