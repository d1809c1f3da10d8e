"""Synthetic 3D LiDAR data for examples and tests.

This module builds simple structured environments (a box room with an
optional pillar) as dense point sets and simulates scans of them from a
given sensor pose. Rooms are convex, so every surface point within range
is visible and no ray-casting is needed.

Author: Navigation Engineer
Date: 2026
"""

from typing import Optional, Sequence

import numpy as np

from scanmap.coords.rotations import so3_exp

from .se3 import se3_apply
from .types import Pose6DOF


def _grid(a_range: np.ndarray, b_range: np.ndarray) -> np.ndarray:
    a, b = np.meshgrid(a_range, b_range, indexing="ij")
    return np.column_stack([a.ravel(), b.ravel()])


def generate_room_points(
    size: Sequence[float] = (10.0, 8.0, 3.0),
    spacing: float = 0.2,
    pillar: bool = True,
) -> np.ndarray:
    """
    Sample the floor and four walls of an axis-aligned box room.

    The room spans [0, size_x] x [0, size_y] x [0, size_z]. The ceiling is
    left open. An optional square pillar breaks the symmetry of the room
    so that a scan constrains yaw unambiguously.

    Args:
        size: Room extent (x, y, z) in meters.
        spacing: Distance between neighbouring samples in meters.
        pillar: Add a 1 m x 1 m pillar off the room center.

    Returns:
        World points, shape (N, 3). Deterministic for fixed arguments.

    Example:
        >>> pts = generate_room_points((4.0, 4.0, 2.0), spacing=0.5)
        >>> pts.shape[1]
        3
    """
    if spacing <= 0:
        raise ValueError(f"spacing must be positive, got {spacing}")
    sx, sy, sz = (float(v) for v in size)
    if min(sx, sy, sz) <= 0:
        raise ValueError(f"room size must be positive, got {size}")

    xs = np.arange(0.0, sx + 1e-9, spacing)
    ys = np.arange(0.0, sy + 1e-9, spacing)
    zs = np.arange(0.0, sz + 1e-9, spacing)

    floor = _grid(xs, ys)
    floor = np.column_stack([floor, np.zeros(len(floor))])

    xz = _grid(xs, zs)
    yz = _grid(ys, zs)
    walls = [
        np.column_stack([xz[:, 0], np.zeros(len(xz)), xz[:, 1]]),
        np.column_stack([xz[:, 0], np.full(len(xz), sy), xz[:, 1]]),
        np.column_stack([np.zeros(len(yz)), yz[:, 0], yz[:, 1]]),
        np.column_stack([np.full(len(yz), sx), yz[:, 0], yz[:, 1]]),
    ]

    parts = [floor] + walls
    if pillar:
        x0, y0 = 0.65 * sx, 0.35 * sy
        side = np.arange(0.0, 1.0 + 1e-9, spacing)
        face = _grid(side, zs)
        parts.extend([
            np.column_stack([x0 + face[:, 0], np.full(len(face), y0), face[:, 1]]),
            np.column_stack([x0 + face[:, 0], np.full(len(face), y0 + 1.0), face[:, 1]]),
            np.column_stack([np.full(len(face), x0), y0 + face[:, 0], face[:, 1]]),
            np.column_stack([np.full(len(face), x0 + 1.0), y0 + face[:, 0], face[:, 1]]),
        ])

    return np.vstack(parts)


def generate_scan(
    world_points: np.ndarray,
    pose: Pose6DOF,
    max_range: float = 10.0,
    noise_std: float = 0.0,
    rng: Optional[np.random.Generator] = None,
    min_range: float = 0.1,
) -> np.ndarray:
    """
    Simulate a scan of ``world_points`` from a sensor at ``pose``.

    Args:
        world_points: Environment points in the map frame, shape (N, 3).
        pose: Sensor pose in the map frame.
        max_range: Maximum sensor range in meters.
        noise_std: Standard deviation of isotropic Gaussian point noise.
        rng: Random generator for the noise (a fresh default one if None).
        min_range: Blind zone radius in meters.

    Returns:
        Scan points in the sensor frame, shape (M, 3) with M <= N.

    Notes:
        - Range gating uses the noise-free distance, so the set of returned
          points depends only on the pose.
    """
    world_points = np.asarray(world_points, dtype=np.float64)
    local = se3_apply(pose.inverse(), world_points)

    ranges = np.linalg.norm(local, axis=1)
    local = local[(ranges >= min_range) & (ranges <= max_range)]

    if noise_std > 0 and len(local) > 0:
        if rng is None:
            rng = np.random.default_rng()
        local = local + rng.normal(0.0, noise_std, size=local.shape)
    return local


def perturb_pose(
    pose: Pose6DOF,
    translation_std: float,
    rotation_std: float,
    rng: Optional[np.random.Generator] = None,
) -> Pose6DOF:
    """
    Add Gaussian drift to a pose, as an odometry source would.

    Args:
        pose: Ground-truth pose.
        translation_std: Per-axis translation noise (meters).
        rotation_std: Per-axis rotation-vector noise (radians), applied in
                      the body frame.
        rng: Random generator (a fresh default one if None).

    Returns:
        Perturbed pose with the same stamp.
    """
    if rng is None:
        rng = np.random.default_rng()
    dt = rng.normal(0.0, translation_std, size=3)
    dw = rng.normal(0.0, rotation_std, size=3)

    T = pose.to_matrix()
    T[:3, :3] = T[:3, :3] @ so3_exp(dw)
    T[:3, 3] = T[:3, 3] + dt
    return Pose6DOF.from_matrix(T, stamp=pose.stamp)


def generate_trajectory(
    start: Sequence[float],
    end: Sequence[float],
    n_poses: int,
    yaw_start: float = 0.0,
    yaw_end: float = 0.0,
    dt: float = 0.1,
) -> list:
    """
    Straight-line trajectory with linearly interpolated yaw.

    Returns:
        List of ``n_poses`` Pose6DOF, stamped ``k * dt``.
    """
    if n_poses < 1:
        raise ValueError(f"n_poses must be positive, got {n_poses}")
    start = np.asarray(start, dtype=np.float64)
    end = np.asarray(end, dtype=np.float64)
    poses = []
    for k, s in enumerate(np.linspace(0.0, 1.0, n_poses)):
        yaw = (1.0 - s) * yaw_start + s * yaw_end
        poses.append(
            Pose6DOF.from_translation_rpy(
                (1.0 - s) * start + s * end, 0.0, 0.0, yaw, stamp=k * dt
            )
        )
    return poses
