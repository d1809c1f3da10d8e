"""Rotation representations and SO(3) utilities.

This module provides the rotation conversions used by the 6-DOF pose type
and the registration engine:
- Rotation matrices (3x3 orthonormal matrices, SO(3))
- Quaternions (unit quaternions, q = [qw, qx, qy, qz])
- Euler angles (roll-pitch-yaw, ZYX convention)
- Axis-angle vectors (the SO(3) exponential map)

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part, kept in the
  hemisphere qw >= 0 so that equal rotations have equal quaternions
- Euler angles: [roll, pitch, yaw] in radians (ZYX/3-2-1 convention)
- Rotation matrices: 3x3 numpy arrays acting on column vectors
"""

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation


def euler_to_rotation_matrix(
    roll: float,
    pitch: float,
    yaw: float,
) -> NDArray[np.float64]:
    """Convert roll-pitch-yaw Euler angles (ZYX convention) to a rotation matrix.

    Args:
        roll: Rotation about x-axis in radians.
        pitch: Rotation about y-axis in radians.
        yaw: Rotation about z-axis in radians.

    Returns:
        3x3 rotation matrix R = Rz(yaw) @ Ry(pitch) @ Rx(roll).

    Example:
        >>> R = euler_to_rotation_matrix(0.0, 0.0, np.pi / 2)
        >>> np.allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        True
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ],
        dtype=np.float64,
    )


def rotation_matrix_to_euler(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Extract [roll, pitch, yaw] (ZYX convention) from a rotation matrix.

    At gimbal lock (|pitch| = 90 deg) roll is set to zero and the combined
    rotation is assigned to yaw.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    sin_pitch = -R[2, 0]

    if abs(sin_pitch) >= 1.0:
        pitch = np.copysign(np.pi / 2.0, sin_pitch)
        yaw = np.arctan2(-R[0, 1], R[1, 1])
        roll = 0.0
    else:
        pitch = np.arcsin(sin_pitch)
        roll = np.arctan2(R[2, 1], R[2, 2])
        yaw = np.arctan2(R[1, 0], R[0, 0])

    return np.array([roll, pitch, yaw], dtype=np.float64)


def normalize_quat(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Normalize a quaternion to unit length with a non-negative scalar part.

    Args:
        q: Quaternion [qw, qx, qy, qz], any non-zero norm.

    Returns:
        Unit quaternion in the qw >= 0 hemisphere.

    Raises:
        ValueError: If q is not a 4-element array or has (near) zero norm.
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")

    norm = np.linalg.norm(q)
    if not np.isfinite(norm) or norm < 1e-12:
        raise ValueError(f"Quaternion must have finite non-zero norm, got {q}")

    q = q / norm
    if q[0] < 0.0:
        q = -q
    return q


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a unit quaternion [qw, qx, qy, qz] to a 3x3 rotation matrix.

    Raises:
        ValueError: If q is not a 4-element array.
    """
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")

    qw, qx, qy, qz = q

    return np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ],
        dtype=np.float64,
    )


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a rotation matrix to a unit quaternion (Shepperd's method).

    The branch is chosen on the largest of trace / diagonal elements so the
    square root argument never approaches zero.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Unit quaternion [qw, qx, qy, qz] with qw >= 0.

    Raises:
        ValueError: If R is not a 3x3 matrix.

    Example:
        >>> rotation_matrix_to_quat(np.eye(3))
        array([1., 0., 0., 0.])
    """
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    return normalize_quat(np.array([qw, qx, qy, qz], dtype=np.float64))


def orthonormalize_rotation(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Project a 3x3 matrix onto the closest proper rotation (SO(3)).

    Uses the SVD R = U S V^T and returns U V^T, flipping the last singular
    direction when needed so that det = +1. Repeated pose compositions
    accumulate floating-point drift; calling this after each composition
    keeps the rotation block orthonormal.

    Args:
        R: Approximately orthonormal 3x3 matrix.

    Returns:
        Proper rotation matrix closest to R in the Frobenius norm.

    Raises:
        ValueError: If R is not a finite 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")
    if not np.all(np.isfinite(R)):
        raise ValueError("Rotation matrix contains non-finite values")

    U, _, Vt = np.linalg.svd(R)
    R_ortho = U @ Vt
    if np.linalg.det(R_ortho) < 0:
        U[:, -1] *= -1
        R_ortho = U @ Vt
    return R_ortho


def is_rotation_matrix(R: NDArray[np.float64], atol: float = 1e-6) -> bool:
    """Check that R is orthonormal with determinant +1 (within atol)."""
    R = np.asarray(R)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    return bool(
        np.allclose(R.T @ R, np.eye(3), atol=atol)
        and abs(np.linalg.det(R) - 1.0) < atol
    )


def skew_symmetric(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Return the 3x3 cross-product matrix [v]x such that [v]x @ w = v x w."""
    x, y, z = v
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ],
        dtype=np.float64,
    )


def so3_exp(rotvec: NDArray[np.float64]) -> NDArray[np.float64]:
    """Exponential map from an axis-angle vector to a rotation matrix.

    Args:
        rotvec: Rotation vector of shape (3,); direction is the axis,
                norm is the angle in radians.

    Returns:
        3x3 rotation matrix.
    """
    rotvec = np.asarray(rotvec, dtype=np.float64)
    if rotvec.shape != (3,):
        raise ValueError(f"rotvec must have shape (3,), got {rotvec.shape}")
    return Rotation.from_rotvec(rotvec).as_matrix()


def rotation_angle(R: NDArray[np.float64]) -> float:
    """Angle in radians of the rotation R (geodesic distance to identity)."""
    cos_angle = (np.trace(R) - 1.0) / 2.0
    return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))
