"""Type definitions and data structures for scan-to-map mapping.

Key types:
    - Pose6DOF: Rigid 3D transform (translation + unit quaternion) with stamp
    - PointCloud3D: Type alias for (N, 3) point arrays
    - StampedCloud: Point cloud tagged with a frame identifier and stamp
    - PathEntry, RefinedPath: Append-only refined trajectory

Author: Navigation Engineer
Date: 2026
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from scanmap.coords.rotations import (
    euler_to_rotation_matrix,
    normalize_quat,
    orthonormalize_rotation,
    quat_to_rotation_matrix,
    rotation_angle,
    rotation_matrix_to_euler,
    rotation_matrix_to_quat,
)


PointCloud3D = np.ndarray  # Shape (N, 3), points in 3D space (meters)


@dataclass(eq=False)
class Pose6DOF:
    """
    6-DOF rigid transform: 3D translation + 3D rotation.

    The rotation is stored as a unit quaternion [qw, qx, qy, qz] and the
    pose converts losslessly to and from a 4x4 homogeneous matrix. Poses
    compose with ``+`` : ``a + b`` applies ``b`` in the frame established
    by ``a`` (matrix product T_a @ T_b).

    Attributes:
        position: Translation [x, y, z] in meters, shape (3,).
        orientation: Unit quaternion [qw, qx, qy, qz], shape (4,).
                     Normalized (and put in the qw >= 0 hemisphere) on
                     construction.
        stamp: Timestamp in seconds.

    Examples:
        >>> a = Pose6DOF.from_translation_rpy([1.0, 0.0, 0.0], yaw=np.pi / 2)
        >>> b = Pose6DOF.from_translation_rpy([1.0, 0.0, 0.0])
        >>> np.allclose((a + b).position, [1.0, 1.0, 0.0])
        True
        >>> np.allclose((a + a.inverse()).to_matrix(), np.eye(4))
        True
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(
        default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0])
    )
    stamp: float = 0.0

    def __post_init__(self) -> None:
        """Validate and normalize pose values after initialization."""
        self.position = np.asarray(self.position, dtype=np.float64).reshape(-1)
        if self.position.shape != (3,):
            raise ValueError(
                f"position must have shape (3,), got {self.position.shape}"
            )
        if not np.all(np.isfinite(self.position)):
            raise ValueError(f"position must be finite, got {self.position}")
        if not np.isfinite(self.stamp):
            raise ValueError(f"stamp must be finite, got {self.stamp}")

        self.orientation = normalize_quat(self.orientation)
        self.stamp = float(self.stamp)

    @classmethod
    def identity(cls, stamp: float = 0.0) -> "Pose6DOF":
        """Create the identity pose (no translation, no rotation)."""
        return cls(stamp=stamp)

    @classmethod
    def from_matrix(cls, T: np.ndarray, stamp: float = 0.0) -> "Pose6DOF":
        """
        Create a pose from a 4x4 homogeneous transform.

        The rotation block is projected onto SO(3) before conversion, so
        matrices carrying small numerical drift yield a proper rotation.

        Args:
            T: Homogeneous transform, shape (4, 4).
            stamp: Timestamp in seconds.

        Returns:
            Pose6DOF instance.

        Raises:
            ValueError: If T is not a finite 4x4 matrix.
        """
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"T must have shape (4, 4), got {T.shape}")
        if not np.all(np.isfinite(T)):
            raise ValueError("T contains non-finite values")

        R = orthonormalize_rotation(T[:3, :3])
        return cls(
            position=T[:3, 3].copy(),
            orientation=rotation_matrix_to_quat(R),
            stamp=stamp,
        )

    @classmethod
    def from_translation_rpy(
        cls,
        translation,
        roll: float = 0.0,
        pitch: float = 0.0,
        yaw: float = 0.0,
        stamp: float = 0.0,
    ) -> "Pose6DOF":
        """Create a pose from a translation and ZYX Euler angles (radians)."""
        R = euler_to_rotation_matrix(roll, pitch, yaw)
        return cls(
            position=np.asarray(translation, dtype=np.float64),
            orientation=rotation_matrix_to_quat(R),
            stamp=stamp,
        )

    @classmethod
    def from_array(cls, arr: np.ndarray, stamp: float = 0.0) -> "Pose6DOF":
        """Create a pose from [x, y, z, qw, qx, qy, qz]."""
        arr = np.asarray(arr, dtype=np.float64)
        if arr.shape != (7,):
            raise ValueError(f"Array must have shape (7,), got {arr.shape}")
        return cls(position=arr[:3], orientation=arr[3:], stamp=stamp)

    @property
    def rotation_matrix(self) -> np.ndarray:
        """3x3 rotation matrix of the pose."""
        return quat_to_rotation_matrix(self.orientation)

    def to_matrix(self) -> np.ndarray:
        """Convert to a 4x4 homogeneous transform."""
        T = np.eye(4)
        T[:3, :3] = self.rotation_matrix
        T[:3, 3] = self.position
        return T

    def to_array(self) -> np.ndarray:
        """Convert to [x, y, z, qw, qx, qy, qz], shape (7,)."""
        return np.concatenate([self.position, self.orientation])

    def to_rpy(self) -> np.ndarray:
        """Return [roll, pitch, yaw] in radians (ZYX convention)."""
        return rotation_matrix_to_euler(self.rotation_matrix)

    def compose(self, other: "Pose6DOF") -> "Pose6DOF":
        """
        Compose two poses: apply ``other`` in the frame of ``self``.

        The result rotation is re-orthonormalized, so long chains of
        compositions stay on SO(3). The result carries ``other``'s stamp.
        """
        R_self = self.rotation_matrix
        R = orthonormalize_rotation(R_self @ other.rotation_matrix)
        t = self.position + R_self @ other.position
        return Pose6DOF(
            position=t,
            orientation=rotation_matrix_to_quat(R),
            stamp=other.stamp,
        )

    def __add__(self, other: "Pose6DOF") -> "Pose6DOF":
        if not isinstance(other, Pose6DOF):
            return NotImplemented
        return self.compose(other)

    def inverse(self) -> "Pose6DOF":
        """Return the inverse transform (same stamp)."""
        R_inv = orthonormalize_rotation(self.rotation_matrix.T)
        return Pose6DOF(
            position=-R_inv @ self.position,
            orientation=rotation_matrix_to_quat(R_inv),
            stamp=self.stamp,
        )

    def with_stamp(self, stamp: float) -> "Pose6DOF":
        """Return a copy of this pose carrying a different timestamp."""
        return Pose6DOF(
            position=self.position.copy(),
            orientation=self.orientation.copy(),
            stamp=stamp,
        )

    def translation_distance(self, other: "Pose6DOF") -> float:
        """Euclidean distance between the two translations (meters)."""
        return float(np.linalg.norm(self.position - other.position))

    def rotation_distance(self, other: "Pose6DOF") -> float:
        """Geodesic angle between the two rotations (radians)."""
        return rotation_angle(self.rotation_matrix.T @ other.rotation_matrix)

    def is_close(
        self, other: "Pose6DOF", atol_translation: float = 1e-9, atol_rotation: float = 1e-9
    ) -> bool:
        """Check whether two poses agree within the given tolerances."""
        return (
            self.translation_distance(other) <= atol_translation
            and self.rotation_distance(other) <= atol_rotation
        )

    def __repr__(self) -> str:
        """Readable string representation."""
        x, y, z = self.position
        roll, pitch, yaw = self.to_rpy()
        return (
            f"Pose6DOF(x={x:.4f}, y={y:.4f}, z={z:.4f}, "
            f"roll={roll:.4f}, pitch={pitch:.4f}, yaw={yaw:.4f}, stamp={self.stamp:.3f})"
        )


@dataclass
class StampedCloud:
    """
    Point cloud tagged with the frame it is expressed in.

    Attributes:
        points: Points, shape (N, 3).
        frame_id: Identifier of the reference frame.
        stamp: Timestamp in seconds.
    """

    points: PointCloud3D
    frame_id: str
    stamp: float = 0.0

    def __len__(self) -> int:
        return int(self.points.shape[0])


@dataclass
class PathEntry:
    """One refined pose of the trajectory."""

    pose: Pose6DOF
    stamp: float


@dataclass
class RefinedPath:
    """
    Append-only sequence of refined poses, tagged with the map frame.

    Grows by exactly one entry per successful registration.
    """

    frame_id: str
    entries: List[PathEntry] = field(default_factory=list)

    def append(self, pose: Pose6DOF, stamp: Optional[float] = None) -> None:
        """Append a refined pose (stamp defaults to the pose stamp)."""
        self.entries.append(
            PathEntry(pose=pose, stamp=pose.stamp if stamp is None else float(stamp))
        )

    def copy(self) -> "RefinedPath":
        """Shallow copy: new entry list, shared (immutable-by-convention) poses."""
        return RefinedPath(frame_id=self.frame_id, entries=list(self.entries))

    def positions(self) -> np.ndarray:
        """Positions of all entries, shape (K, 3)."""
        if not self.entries:
            return np.empty((0, 3))
        return np.array([entry.pose.position for entry in self.entries])

    def as_array(self) -> np.ndarray:
        """All entries as rows [x, y, z, qw, qx, qy, qz], shape (K, 7)."""
        if not self.entries:
            return np.empty((0, 7))
        return np.array([entry.pose.to_array() for entry in self.entries])

    def stamps(self) -> np.ndarray:
        """Timestamps of all entries, shape (K,)."""
        return np.array([entry.stamp for entry in self.entries], dtype=np.float64)

    def __len__(self) -> int:
        return len(self.entries)
