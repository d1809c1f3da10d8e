"""
Visualization helpers for mapping results.

Top-down views of map clouds with trajectories overlaid, and position
error over time.

Author: Navigation Engineer
Date: 2026
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np


def plot_map_and_trajectories(
    map_points: np.ndarray,
    truth_xyz: np.ndarray,
    est_xyz_dict: Dict[str, np.ndarray],
    title: str = "Map and Trajectories",
    max_map_points: Optional[int] = 20000,
) -> plt.Figure:
    """
    Plot the map cloud from above with true and estimated trajectories.

    Args:
        map_points: Map cloud, shape (M, 3)
        truth_xyz: True trajectory, shape (N, 3)
        est_xyz_dict: Dictionary of estimated trajectories {name: array}
        title: Plot title
        max_map_points: Subsample the map to at most this many points

    Returns:
        fig: Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 8))

    map_points = np.asarray(map_points)
    if max_map_points is not None and len(map_points) > max_map_points:
        step = int(np.ceil(len(map_points) / max_map_points))
        map_points = map_points[::step]
    if len(map_points) > 0:
        ax.scatter(
            map_points[:, 0],
            map_points[:, 1],
            c=map_points[:, 2],
            s=1,
            cmap="viridis",
            alpha=0.5,
            label="Map",
        )

    ax.plot(truth_xyz[:, 0], truth_xyz[:, 1], "k-", linewidth=2, label="Ground Truth", zorder=10)
    ax.plot(truth_xyz[0, 0], truth_xyz[0, 1], "go", markersize=10, label="Start", zorder=11)

    colors = ["blue", "red", "orange", "purple"]
    linestyles = ["-", "--", "-.", ":"]
    for i, (name, est_xyz) in enumerate(est_xyz_dict.items()):
        est_xyz = np.asarray(est_xyz)
        if len(est_xyz) == 0:
            continue
        ax.plot(
            est_xyz[:, 0],
            est_xyz[:, 1],
            linestyle=linestyles[i % len(linestyles)],
            color=colors[i % len(colors)],
            linewidth=1.5,
            label=name,
            alpha=0.8,
        )

    ax.set_xlabel("X (m)", fontsize=12)
    ax.set_ylabel("Y (m)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.axis("equal")

    plt.tight_layout()
    return fig


def plot_position_error_time(
    t: np.ndarray,
    errors_dict: Dict[str, np.ndarray],
    title: str = "Position Error vs Time",
) -> plt.Figure:
    """
    Plot position error magnitude over time.

    Args:
        t: Time stamps, shape (N,)
        errors_dict: Dictionary of error arrays {name: errors}, each (N,) or (N, 3)
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 5))

    for name, errors in errors_dict.items():
        errors = np.asarray(errors)
        magnitude = np.linalg.norm(errors, axis=1) if errors.ndim > 1 else np.abs(errors)
        ax.plot(t, magnitude, linewidth=1.5, label=name)

    ax.set_xlabel("Time (s)", fontsize=12)
    ax.set_ylabel("Position Error (m)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("png",),
) -> List[Path]:
    """
    Save figure in one or more formats.

    Returns:
        paths: List of saved file paths
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        filepath = out_dir / f"{name}.{fmt}"
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        paths.append(filepath)
    return paths
