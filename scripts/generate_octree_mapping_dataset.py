"""
Generate Octree Mapping Dataset.

This script generates a synthetic 3D LiDAR mapping dataset: a box room,
a ground-truth trajectory, drifting odometry and the scans seen from the
true poses. The dataset feeds the octree mapper (raw pose = odometry) and
the evaluation metrics (truth).

Saves to: data/sim/octree_mapping/
    - truth_poses.npy    : Ground-truth poses [x, y, z, qw, qx, qy, qz], (N, 7)
    - odom_poses.npy     : Odometry poses, same layout, (N, 7)
    - timestamps.npy     : Scan timestamps (N,)
    - scans.npz          : One (M_k, 3) array per scan, keys scan_0000, ...
    - room_points.npy    : Environment surface samples (P, 3)
    - config.json        : Dataset configuration

Author: Navigation Engineer
Date: 2026
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Tuple

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from scanmap.slam import (  # noqa: E402
    Pose6DOF,
    generate_room_points,
    generate_scan,
    generate_trajectory,
    perturb_pose,
)


# ============================================================================
# PRESET CONFIGURATIONS
# ============================================================================

PRESETS = {
    "baseline": {
        "description": "Nominal drift and sensor noise",
        "n_poses": 30,
        "odom_translation_std": 0.01,
        "odom_rotation_std": 0.002,
        "noise_std": 0.01,
    },
    "low_drift": {
        "description": "Nearly perfect odometry",
        "n_poses": 30,
        "odom_translation_std": 0.002,
        "odom_rotation_std": 0.0005,
        "noise_std": 0.005,
    },
    "high_drift": {
        "description": "Strong odometry drift, noisy sensor",
        "n_poses": 30,
        "odom_translation_std": 0.03,
        "odom_rotation_std": 0.005,
        "noise_std": 0.02,
    },
}


# ============================================================================
# DATA GENERATION FUNCTIONS
# ============================================================================

def simulate_odometry(
    true_poses: List[Pose6DOF],
    translation_std: float,
    rotation_std: float,
    rng: np.random.Generator,
) -> List[Pose6DOF]:
    """Integrate true relative motion with per-step Gaussian drift.

    Args:
        true_poses: Ground-truth poses.
        translation_std: Per-step translation noise (meters).
        rotation_std: Per-step rotation noise (radians).
        rng: Random generator.

    Returns:
        Odometry poses, starting at the first true pose.
    """
    odom = [true_poses[0]]
    for prev, curr in zip(true_poses[:-1], true_poses[1:]):
        delta = perturb_pose(prev.inverse() + curr, translation_std, rotation_std, rng)
        odom.append((odom[-1] + delta).with_stamp(curr.stamp))
    return odom


def generate_scans(
    room: np.ndarray,
    poses: List[Pose6DOF],
    max_range: float,
    noise_std: float,
    rng: np.random.Generator,
) -> Tuple[List[np.ndarray], np.ndarray]:
    """Simulate one scan per pose.

    Returns:
        Tuple of (scans, counts): list of (M_k, 3) arrays in the sensor
        frame, and the number of points per scan.
    """
    scans = [generate_scan(room, pose, max_range, noise_std, rng) for pose in poses]
    counts = np.array([len(scan) for scan in scans])
    return scans, counts


def generate_dataset(
    output_dir: str = "data/sim/octree_mapping",
    seed: int = 42,
    n_poses: int = 30,
    dt: float = 0.1,
    room_size: Tuple[float, float, float] = (10.0, 8.0, 3.0),
    spacing: float = 0.1,
    max_range: float = 8.0,
    noise_std: float = 0.01,
    odom_translation_std: float = 0.01,
    odom_rotation_std: float = 0.002,
    preset: str = None,
) -> None:
    """Generate and save the octree mapping dataset.

    Args:
        output_dir: Output directory path.
        seed: Random seed for reproducibility.
        n_poses: Number of scans.
        dt: Time between scans (seconds).
        room_size: Room extent (x, y, z) in meters.
        spacing: Surface sampling distance (meters).
        max_range: LiDAR range (meters).
        noise_std: Point noise std (meters).
        odom_translation_std: Per-step odometry translation noise (meters).
        odom_rotation_std: Per-step odometry rotation noise (radians).
        preset: Name of the preset used, recorded in config.json.
    """
    rng = np.random.default_rng(seed)

    print(f"\n{'=' * 70}")
    print("Generating Octree Mapping Dataset")
    print(f"{'=' * 70}")

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    # 1. Environment and trajectory
    print("\n1. Generating environment and trajectory...")
    room = generate_room_points(room_size, spacing)
    sx, sy, _ = room_size
    true_poses = generate_trajectory(
        start=[0.2 * sx, 0.25 * sy, 0.5],
        end=[0.6 * sx, 0.65 * sy, 0.5],
        n_poses=n_poses,
        yaw_start=0.0,
        yaw_end=np.pi / 3,
        dt=dt,
    )
    print(f"   Room: {len(room)} points, trajectory: {len(true_poses)} poses")

    # 2. Odometry
    print("\n2. Simulating odometry...")
    odom_poses = simulate_odometry(true_poses, odom_translation_std, odom_rotation_std, rng)
    drift = odom_poses[-1].translation_distance(true_poses[-1])
    print(f"   Final odometry drift: {drift:.3f} m")

    # 3. Scans
    print("\n3. Generating LiDAR scans...")
    scans, counts = generate_scans(room, true_poses, max_range, noise_std, rng)
    print(f"   Points per scan: mean {counts.mean():.0f}, min {counts.min()}, max {counts.max()}")

    np.save(output_path / "truth_poses.npy", np.array([p.to_array() for p in true_poses]))
    np.save(output_path / "odom_poses.npy", np.array([p.to_array() for p in odom_poses]))
    np.save(output_path / "timestamps.npy", np.array([p.stamp for p in true_poses]))
    np.save(output_path / "room_points.npy", room)
    np.savez(output_path / "scans.npz", **{f"scan_{k:04d}": s for k, s in enumerate(scans)})

    # 4. Configuration
    print("\n4. Saving configuration...")
    config = {
        "dataset_info": {
            "description": "Synthetic 3D LiDAR scans of a box room with drifting odometry",
            "seed": seed,
            "preset": preset,
            "num_scans": int(n_poses),
            "dt_sec": dt,
        },
        "environment": {
            "room_size_m": list(room_size),
            "spacing_m": spacing,
            "num_points": int(len(room)),
        },
        "lidar": {
            "max_range_m": max_range,
            "noise_std_m": noise_std,
        },
        "odometry": {
            "translation_std_m": odom_translation_std,
            "rotation_std_rad": odom_rotation_std,
            "final_drift_m": float(drift),
        },
        "coordinate_frame": {
            "map_frame": "map",
            "robot_frame": "base_link",
            "pose_layout": "[x, y, z, qw, qx, qy, qz]",
            "units": "meters",
        },
    }
    with open(output_path / "config.json", "w") as f:
        json.dump(config, f, indent=2)

    print(f"\n{'=' * 70}")
    print("Dataset generation complete!")
    print(f"{'=' * 70}")
    print(f"Output directory: {output_path.absolute()}")
    print("\nFiles created:")
    print("  - truth_poses.npy  : Ground-truth poses")
    print("  - odom_poses.npy   : Odometry (raw) poses")
    print("  - timestamps.npy   : Scan timestamps")
    print("  - scans.npz        : Scans in the sensor frame")
    print("  - room_points.npy  : Environment samples")
    print("  - config.json      : Dataset configuration")
    print()


# ============================================================================
# COMMAND-LINE INTERFACE
# ============================================================================

def main():
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Generate the synthetic octree mapping dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate with default parameters
  python %(prog)s

  # Use a preset configuration
  python %(prog)s --preset high_drift --output data/sim/octree_mapping_high_drift

Available presets: """ + ", ".join(PRESETS.keys()),
    )

    parser.add_argument(
        "--preset",
        type=str,
        choices=PRESETS.keys(),
        help="Use preset configuration (overrides individual parameters)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="data/sim/octree_mapping",
        help="Output directory (default: data/sim/octree_mapping)",
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")

    traj_group = parser.add_argument_group("Trajectory Parameters")
    traj_group.add_argument("--n-poses", type=int, default=30, help="Number of scans (default: 30)")
    traj_group.add_argument("--dt", type=float, default=0.1, help="Time between scans in s (default: 0.1)")

    env_group = parser.add_argument_group("Environment Parameters")
    env_group.add_argument(
        "--room-size", type=float, nargs=3, default=[10.0, 8.0, 3.0],
        metavar=("X", "Y", "Z"), help="Room extent in meters (default: 10 8 3)",
    )
    env_group.add_argument("--spacing", type=float, default=0.1, help="Surface sampling in m (default: 0.1)")

    noise_group = parser.add_argument_group("Noise Parameters")
    noise_group.add_argument("--max-range", type=float, default=8.0, help="LiDAR range in m (default: 8.0)")
    noise_group.add_argument("--noise-std", type=float, default=0.01, help="Point noise in m (default: 0.01)")
    noise_group.add_argument(
        "--odom-translation-std", type=float, default=0.01,
        help="Per-step odometry translation noise in m (default: 0.01)",
    )
    noise_group.add_argument(
        "--odom-rotation-std", type=float, default=0.002,
        help="Per-step odometry rotation noise in rad (default: 0.002)",
    )

    args = parser.parse_args()

    if args.preset:
        preset_config = PRESETS[args.preset]
        print(f"\nUsing preset: '{args.preset}'")
        print(f"Description: {preset_config['description']}")
        for key, value in preset_config.items():
            if key != "description":
                setattr(args, key, value)

    if args.n_poses < 2:
        parser.error("--n-poses must be at least 2")
    if args.dt <= 0 or args.spacing <= 0 or args.max_range <= 0:
        parser.error("--dt, --spacing and --max-range must be positive")

    generate_dataset(
        output_dir=args.output,
        seed=args.seed,
        n_poses=args.n_poses,
        dt=args.dt,
        room_size=tuple(args.room_size),
        spacing=args.spacing,
        max_range=args.max_range,
        noise_std=args.noise_std,
        odom_translation_std=args.odom_translation_std,
        odom_rotation_std=args.odom_rotation_std,
        preset=args.preset,
    )


if __name__ == "__main__":
    main()
