"""
Trajectory error metrics for the mapping pipeline.

This module compares refined (or raw) trajectories against ground truth:
position error vectors, RMSE, summary statistics and geodesic rotation
errors.

Author: Navigation Engineer
Date: 2026
"""

from typing import Dict, Optional, Union

import numpy as np


def compute_position_errors(
    truth: np.ndarray, estimated: np.ndarray
) -> np.ndarray:
    """
    Compute position errors between true and estimated positions.

    Args:
        truth: True positions, shape (N, 3)
        estimated: Estimated positions, shape (N, 3)

    Returns:
        errors: Position error vectors (estimated - truth), shape (N, 3)

    Raises:
        ValueError: If inputs have incompatible shapes
    """
    truth = np.asarray(truth, dtype=np.float64)
    estimated = np.asarray(estimated, dtype=np.float64)

    if truth.shape != estimated.shape:
        raise ValueError(
            f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}"
        )

    return estimated - truth


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: None for a scalar RMSE over all components, 0 for per-axis,
              1 for per-sample.

    Returns:
        rmse: RMSE value(s)
    """
    errors = np.asarray(errors, dtype=np.float64)
    if errors.size == 0:
        raise ValueError("errors must not be empty")

    if axis is None:
        return float(np.sqrt(np.mean(errors**2)))
    return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Summary statistics of error magnitudes.

    Args:
        errors: Error vectors, shape (N, d), or scalar errors, shape (N,)

    Returns:
        stats: Dictionary with 'mean', 'median', 'std', 'rmse', 'p75',
               'p90', 'p95' and 'max'.
    """
    errors = np.asarray(errors, dtype=np.float64)
    if errors.size == 0:
        raise ValueError("errors must not be empty")

    if errors.ndim > 1:
        magnitudes = np.linalg.norm(errors, axis=1)
    else:
        magnitudes = np.abs(errors)

    return {
        "mean": float(np.mean(magnitudes)),
        "median": float(np.median(magnitudes)),
        "std": float(np.std(magnitudes)),
        "rmse": float(np.sqrt(np.mean(magnitudes**2))),
        "p75": float(np.percentile(magnitudes, 75)),
        "p90": float(np.percentile(magnitudes, 90)),
        "p95": float(np.percentile(magnitudes, 95)),
        "max": float(np.max(magnitudes)),
    }


def compute_rotation_errors(
    truth: np.ndarray, estimated: np.ndarray
) -> np.ndarray:
    """
    Geodesic angle between true and estimated rotations.

    Args:
        truth: True rotation matrices, shape (N, 3, 3)
        estimated: Estimated rotation matrices, shape (N, 3, 3)

    Returns:
        angles: Rotation error angles in radians, shape (N,), in [0, pi]

    Examples:
        >>> R = np.eye(3)[None]
        >>> compute_rotation_errors(R, R)
        array([0.])
    """
    truth = np.asarray(truth, dtype=np.float64)
    estimated = np.asarray(estimated, dtype=np.float64)
    if truth.shape != estimated.shape or truth.shape[-2:] != (3, 3):
        raise ValueError(
            f"Expected matching (N, 3, 3) inputs, got {truth.shape} and {estimated.shape}"
        )

    relative = np.einsum("nji,njk->nik", truth, estimated)
    cos_angle = (np.trace(relative, axis1=1, axis2=2) - 1.0) / 2.0
    return np.arccos(np.clip(cos_angle, -1.0, 1.0))
