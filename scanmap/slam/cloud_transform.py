"""Point cloud transformer: move a cloud between reference frames.

Applying a pose never fails silently. A transform that cannot be applied
(non-finite entries, improper rotation block) raises
:class:`FrameTransformUnavailable`, which the mapper turns into a failed
scan instead of continuing with an unmodified cloud.

Author: Navigation Engineer
Date: 2026
"""

from typing import Optional

import numpy as np

from scanmap.coords.rotations import is_rotation_matrix

from .errors import FrameTransformUnavailable
from .se3 import TransformLike, se3_apply
from .types import Pose6DOF


def validate_cloud(cloud: np.ndarray, name: str = "cloud") -> np.ndarray:
    """
    Return ``cloud`` as a float64 array after checking its shape.

    Raises:
        ValueError: If the cloud does not have shape (N, 3).
    """
    cloud = np.asarray(cloud, dtype=np.float64)
    if cloud.ndim != 2 or cloud.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {cloud.shape}")
    return cloud


def transform_cloud(
    cloud: np.ndarray,
    pose: TransformLike,
    target_frame: Optional[str] = None,
    source_frame: Optional[str] = None,
) -> np.ndarray:
    """
    Express a point cloud in another frame: p_target = T p_source.

    The input cloud is left untouched; a new array is returned.

    Args:
        cloud: Points in the source frame, shape (N, 3).
        pose: Pose of the source frame in the target frame, as a Pose6DOF
              or a (4, 4) homogeneous matrix.
        target_frame: Optional frame name, only used in error messages.
        source_frame: Optional frame name, only used in error messages.

    Returns:
        Points in the target frame, shape (N, 3).

    Raises:
        ValueError: If the cloud does not have shape (N, 3).
        FrameTransformUnavailable: If the transform cannot be applied.

    Examples:
        >>> pose = Pose6DOF(position=[1.0, 2.0, 3.0])
        >>> transform_cloud(np.zeros((1, 3)), pose)
        array([[1., 2., 3.]])
    """
    cloud = validate_cloud(cloud)

    if isinstance(pose, Pose6DOF):
        T = pose.to_matrix()
    else:
        T = np.asarray(pose, dtype=np.float64)
        if T.shape != (4, 4):
            raise FrameTransformUnavailable(
                f"Transform must be a 4x4 matrix, got shape {T.shape}",
                target_frame=target_frame,
                source_frame=source_frame,
            )

    if not np.all(np.isfinite(T)):
        raise FrameTransformUnavailable(
            f"Transform {source_frame!r} -> {target_frame!r} contains non-finite values",
            target_frame=target_frame,
            source_frame=source_frame,
        )
    if not is_rotation_matrix(T[:3, :3]):
        raise FrameTransformUnavailable(
            f"Transform {source_frame!r} -> {target_frame!r} has an improper rotation block",
            target_frame=target_frame,
            source_frame=source_frame,
        )

    if cloud.shape[0] == 0:
        return np.empty((0, 3))

    return se3_apply(T, cloud)
