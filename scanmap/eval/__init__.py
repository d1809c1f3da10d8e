"""
Evaluation and Visualization Module.

Modules:
    metrics: Trajectory error metrics (position, rotation, RMSE, statistics)
    plots: Map and trajectory figures
"""

from .metrics import (
    compute_error_stats,
    compute_position_errors,
    compute_rmse,
    compute_rotation_errors,
)
from .plots import plot_map_and_trajectories, plot_position_error_time, save_figure

__all__ = [
    # Metrics
    "compute_position_errors",
    "compute_rmse",
    "compute_error_stats",
    "compute_rotation_errors",
    # Plots
    "plot_map_and_trajectories",
    "plot_position_error_time",
    "save_figure",
]
