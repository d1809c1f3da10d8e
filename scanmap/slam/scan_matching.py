"""ICP / Generalized-ICP scan matching for 3D LiDAR scan-to-map registration.

Aligns a source cloud (the current scan, robot frame) onto a target cloud
(map neighbours moved back into the robot frame) by alternating between
correspondence search and transform estimation.

Two transform estimators are available:
    - point_to_point: closed-form SVD (Kabsch) alignment of matched pairs
    - gicp: damped Gauss-Newton minimisation of the plane-to-plane
      Generalized-ICP cost over the current pairs, where each pair is
      weighted by (C_target + R C_source Rᵀ)⁻¹ and the per-point
      covariances C are flattened along local surface normals

Key functions:
    - find_correspondences: Nearest-neighbour matching with distance gating
    - compute_icp_residual: Sum of squared pair distances
    - align_svd: Closed-form rigid alignment (4x4)
    - estimate_point_covariances: Plane-regularised GICP covariances
    - gicp_information, gicp_cost: Pair weights and Mahalanobis cost
    - gicp_step: Covariance-weighted Gauss-Newton increment
    - minimize_gicp_pairs: Levenberg-Marquardt solve over fixed pairs
    - estimate_transform_icp: Full iterative registration

Author: Navigation Engineer
Date: 2026
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree
from scipy.spatial.transform import Rotation

from scanmap.coords.rotations import orthonormalize_rotation

from .cloud_transform import validate_cloud
from .config import RegistrationConfig
from .errors import RegistrationDidNotConverge
from .se3 import se3_apply, se3_increment, se3_inverse
from .types import Pose6DOF

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    """Outcome of one registration run.

    Attributes:
        transform: Correction mapping the source cloud onto the target cloud.
                   Must not be used when ``converged`` is False.
        converged: Whether the alignment settled (small increment, stalled
                   cost or repeating correspondences).
        iterations: Number of iterations executed.
        fitness: Mean squared distance of gated correspondences under the
                 final transform (inf if none).
        n_correspondences: Number of gated correspondences under the final
                           transform.
    """

    transform: Pose6DOF
    converged: bool
    iterations: int
    fitness: float
    n_correspondences: int

    def __bool__(self) -> bool:
        return self.converged


def find_correspondences(
    source_points: np.ndarray,
    target_points: np.ndarray,
    max_distance: Optional[float] = None,
    target_tree: Optional[cKDTree] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Find nearest-neighbour correspondences with distance gating.

    For each source point, finds the closest target point. Pairs farther
    apart than ``max_distance`` are rejected. Several source points may
    match the same target point.

    Args:
        source_points: Source cloud, shape (N, 3).
        target_points: Target cloud, shape (M, 3).
        max_distance: Gating distance in meters; None accepts every pair.
        target_tree: Optional prebuilt KD-tree over ``target_points``.

    Returns:
        Tuple of (source_indices, target_indices, distances), each of
        shape (K,) with K <= N, ordered by source index.

    Examples:
        >>> source = np.array([[0.0, 0.0, 0.0], [5.0, 0.0, 0.0]])
        >>> target = np.array([[0.1, 0.0, 0.0]])
        >>> src_idx, tgt_idx, dists = find_correspondences(source, target, 1.0)
        >>> src_idx, tgt_idx
        (array([0]), array([0]))
    """
    source_points = validate_cloud(source_points, "source_points")
    target_points = validate_cloud(target_points, "target_points")

    if source_points.shape[0] == 0 or target_points.shape[0] == 0:
        empty = np.empty((0,), dtype=np.int64)
        return empty, empty.copy(), np.empty((0,))

    tree = target_tree if target_tree is not None else cKDTree(target_points)
    distances, indices = tree.query(source_points, k=1)

    source_indices = np.arange(source_points.shape[0])
    if max_distance is not None:
        valid = distances <= max_distance
        source_indices = source_indices[valid]
        indices = indices[valid]
        distances = distances[valid]

    return source_indices, indices.astype(np.int64), distances


def compute_icp_residual(
    source_points: np.ndarray,
    target_points: np.ndarray,
) -> float:
    """
    Sum of squared distances between corresponding points.

    Raises:
        ValueError: If the two point sets differ in shape.
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )
    if source_points.shape[0] == 0:
        return 0.0

    diff = source_points - target_points
    return float(np.sum(diff**2))


def align_svd(
    source_points: np.ndarray,
    target_points: np.ndarray,
) -> np.ndarray:
    """
    Closed-form rigid alignment of corresponding points (Kabsch / SVD).

    Finds R, t minimizing sum ||R s_i + t - t_i||²:
        1. Center both sets on their centroids.
        2. H = sum s_i t_iᵀ over centered points; H = U S Vᵀ.
        3. R = V Uᵀ, with the last column of V flipped if det(R) < 0.
        4. t = centroid_target - R centroid_source.

    Args:
        source_points: Source points, shape (N, 3).
        target_points: Corresponding target points, shape (N, 3).

    Returns:
        Homogeneous transform of shape (4, 4) mapping source onto target.

    Raises:
        ValueError: If shapes differ or fewer than 3 pairs are given.

    Examples:
        >>> source = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], float)
        >>> T = align_svd(source, source + [2.0, 3.0, 4.0])
        >>> np.allclose(T[:3, 3], [2.0, 3.0, 4.0])
        True
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )
    n = source_points.shape[0]
    if n < 3:
        raise ValueError(f"Need at least 3 correspondences for SVD alignment, got {n}")

    centroid_source = np.mean(source_points, axis=0)
    centroid_target = np.mean(target_points, axis=0)

    H = (source_points - centroid_source).T @ (target_points - centroid_target)
    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Reflection case: flip the axis of the smallest singular value
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = centroid_target - R @ centroid_source
    return T


def estimate_point_covariances(
    points: np.ndarray,
    k: int = 20,
    epsilon: float = 1e-3,
    tree: Optional[cKDTree] = None,
) -> np.ndarray:
    """
    Plane-regularised covariance of each point's local neighbourhood.

    The sample covariance of the k nearest neighbours is eigen-decomposed
    and its eigenvalues are replaced by (epsilon, 1, 1), smallest first, so
    every covariance models a locally planar surface: uncertain within the
    plane, tight along the normal.

    Args:
        points: Cloud of shape (N, 3).
        k: Neighbourhood size (clamped to N).
        epsilon: Eigenvalue assigned to the normal direction.
        tree: Optional prebuilt KD-tree over ``points``.

    Returns:
        Covariances of shape (N, 3, 3). Clouds with fewer than 3 points get
        identity covariances.
    """
    points = validate_cloud(points, "points")
    n = points.shape[0]
    if n < 3:
        return np.tile(np.eye(3), (n, 1, 1))

    k = min(k, n)
    tree = tree if tree is not None else cKDTree(points)
    _, neighbor_idx = tree.query(points, k=k)

    neighborhoods = points[neighbor_idx]  # (N, k, 3)
    centered = neighborhoods - neighborhoods.mean(axis=1, keepdims=True)
    cov = np.einsum("nki,nkj->nij", centered, centered) / k

    _, eigvecs = np.linalg.eigh(cov)  # eigenvalues ascending
    scales = np.array([epsilon, 1.0, 1.0])
    return np.einsum("nij,j,nkj->nik", eigvecs, scales, eigvecs)


def _skew_batch(v: np.ndarray) -> np.ndarray:
    """Cross-product matrices for a batch of vectors, shape (N, 3, 3)."""
    S = np.zeros((v.shape[0], 3, 3))
    S[:, 0, 1] = -v[:, 2]
    S[:, 0, 2] = v[:, 1]
    S[:, 1, 0] = v[:, 2]
    S[:, 1, 2] = -v[:, 0]
    S[:, 2, 0] = -v[:, 1]
    S[:, 2, 1] = v[:, 0]
    return S


def gicp_information(
    source_covariances: np.ndarray,
    target_covariances: np.ndarray,
    rotation: np.ndarray,
) -> np.ndarray:
    """
    Per-pair GICP weights Mᵢ = (C_target,i + R C_source,i Rᵀ)⁻¹.

    Args:
        source_covariances: Source covariances in the source frame, shape (K, 3, 3).
        target_covariances: Matched target covariances, shape (K, 3, 3).
        rotation: Current source-to-target rotation, shape (3, 3).

    Returns:
        Information matrices of shape (K, 3, 3).
    """
    R = rotation
    rotated = np.einsum("ij,njk,lk->nil", R, source_covariances, R)
    return np.linalg.inv(target_covariances + rotated)


def gicp_cost(
    source_points: np.ndarray,
    target_points: np.ndarray,
    information: np.ndarray,
) -> float:
    """Mean Mahalanobis distance Σ dᵢᵀ Mᵢ dᵢ / K of matched pairs."""
    if source_points.shape[0] == 0:
        return 0.0
    d = target_points - source_points
    return float(np.einsum("ni,nij,nj->", d, information, d)) / d.shape[0]


def _gicp_normal_equations(
    source_points: np.ndarray,
    target_points: np.ndarray,
    information: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    d = target_points - source_points

    J = np.zeros((source_points.shape[0], 3, 6))
    J[:, :, :3] = _skew_batch(source_points)
    J[:, :, 3:] = -np.eye(3)

    JtM = np.einsum("nia,nij->naj", J, information)
    H = np.einsum("naj,njb->ab", JtM, J)
    g = np.einsum("naj,nj->a", JtM, d)
    return H, g


def _solve_damped(H: np.ndarray, g: np.ndarray, damping: float) -> np.ndarray:
    A = H + damping * np.diag(np.diag(H))
    try:
        return np.linalg.solve(A, -g)
    except np.linalg.LinAlgError:
        # Singular system (degenerate geometry): add Levenberg damping
        A = A + 1e-6 * max(np.trace(H), 1.0) * np.eye(6)
        return np.linalg.solve(A, -g)


def gicp_step(
    source_points: np.ndarray,
    target_points: np.ndarray,
    source_covariances: np.ndarray,
    target_covariances: np.ndarray,
    damping: float = 0.0,
) -> np.ndarray:
    """
    One Gauss-Newton increment of the Generalized-ICP cost.

    With pairs (q_i, p_i) of already-transformed source and target points
    and the left perturbation q' = exp(δθ) q + δt, the residual
    r_i = p_i - q'_i linearizes to d_i + [q_i]x δθ - δt. The increment
    solves  (Σ Jᵢᵀ Mᵢ Jᵢ + λ diag) δ = -Σ Jᵢᵀ Mᵢ dᵢ  with
    Jᵢ = [[q_i]x, -I] and Mᵢ = (C_target,i + C_source,i)⁻¹.

    Args:
        source_points: Transformed source points, shape (K, 3).
        target_points: Matched target points, shape (K, 3).
        source_covariances: Source covariances already rotated into the
                            target frame, shape (K, 3, 3).
        target_covariances: Target covariances, shape (K, 3, 3).
        damping: Levenberg-Marquardt factor λ (0 for a plain Gauss-Newton step).

    Returns:
        Increment [rx, ry, rz, tx, ty, tz], shape (6,).
    """
    M = np.linalg.inv(target_covariances + source_covariances)
    H, g = _gicp_normal_equations(source_points, target_points, M)
    return _solve_damped(H, g, damping)


def minimize_gicp_pairs(
    T: np.ndarray,
    source_points: np.ndarray,
    target_points: np.ndarray,
    information: np.ndarray,
    epsilon: float,
    max_steps: int = 10,
) -> np.ndarray:
    """
    Minimise the GICP cost of a fixed set of pairs (Levenberg-Marquardt).

    Correspondences and weights stay fixed; a step is accepted only if it
    lowers the cost, otherwise the damping grows and the step is retried.

    Args:
        T: Starting transform, shape (4, 4).
        source_points: Matched source points in the source frame, shape (K, 3).
        target_points: Matched target points, shape (K, 3).
        information: Per-pair weights from :func:`gicp_information`.
        epsilon: Stop once an accepted increment is smaller than this.
        max_steps: Maximum number of solves.

    Returns:
        Transform with a cost no larger than that of ``T``.
    """
    cost = gicp_cost(se3_apply(T, source_points), target_points, information)
    damping = 0.0
    for _ in range(max_steps):
        moved = se3_apply(T, source_points)
        H, g = _gicp_normal_equations(moved, target_points, information)
        delta = _solve_damped(H, g, damping)

        candidate = se3_increment(delta) @ T
        candidate[:3, :3] = orthonormalize_rotation(candidate[:3, :3])
        candidate_cost = gicp_cost(se3_apply(candidate, source_points), target_points, information)

        if candidate_cost <= cost:
            T, cost = candidate, candidate_cost
            damping = 0.0 if damping <= 1e-3 else damping / 10.0
            if np.linalg.norm(delta) < epsilon:
                break
        else:
            damping = 1e-3 if damping == 0.0 else damping * 10.0
            if damping > 1e3:
                break
    return T


def _increment_from_matrix(T: np.ndarray) -> np.ndarray:
    rotvec = Rotation.from_matrix(T[:3, :3]).as_rotvec()
    return np.concatenate([rotvec, T[:3, 3]])


def estimate_transform_icp(
    source: np.ndarray,
    target: np.ndarray,
    config: Optional[RegistrationConfig] = None,
    initial_guess: Optional[np.ndarray] = None,
    stamp: float = 0.0,
) -> RegistrationResult:
    """
    Iteratively align ``source`` onto ``target``.

    Each iteration:
        1. Match every transformed source point to its nearest target point
           within ``max_correspondence_distance``.
        2. Evaluate the cost of the current transform on these pairs (GICP
           Mahalanobis cost, or mean squared distance for point_to_point).
        3. Minimise the cost over the fixed pairs (closed-form SVD, or
           damped Gauss-Newton until the GICP cost stalls).
        4. Measure the change ||[rotation vector, translation]|| between
           the old and new transform.

    The run is converged when any of these holds:
        - the change falls below ``transformation_epsilon``;
        - the relative cost change between consecutive iterations is at
          most ``euclidean_fitness_epsilon``;
        - the pairs found are a set already seen in an earlier iteration,
          i.e. matching and alignment keep revisiting the same states. The
          lowest-cost transform seen is returned in that case.

    Reaching ``max_iterations`` otherwise is reported as not converged, as
    is an iteration with fewer than ``min_correspondences`` gated pairs.
    Duplicate target points are merged before matching. No random sampling
    is involved, so identical inputs give identical results.

    Args:
        source: Source cloud (robot frame), shape (N, 3).
        target: Target cloud (robot frame), shape (M, 3).
        config: Registration tunables (defaults to RegistrationConfig()).
        initial_guess: Optional initial 4x4 transform (identity if None).
        stamp: Timestamp attached to the resulting transform.

    Returns:
        RegistrationResult; ``transform`` maps source points onto target.

    Raises:
        ValueError: If either cloud is empty or wrongly shaped.

    Examples:
        >>> rng = np.random.default_rng(0)
        >>> target = rng.uniform(-2, 2, size=(200, 3))
        >>> result = estimate_transform_icp(target - [0.05, 0, 0], target,
        ...     RegistrationConfig(method="point_to_point"))
        >>> result.converged, np.allclose(result.transform.position, [0.05, 0, 0])
        (True, True)
    """
    config = config if config is not None else RegistrationConfig()
    source = validate_cloud(source, "source")
    target = validate_cloud(target, "target")
    if source.shape[0] == 0:
        raise ValueError("source cloud is empty")
    if target.shape[0] == 0:
        raise ValueError("target cloud is empty")

    T = np.eye(4) if initial_guess is None else np.asarray(initial_guess, dtype=np.float64).copy()
    if T.shape != (4, 4):
        raise ValueError(f"initial_guess must have shape (4, 4), got {T.shape}")

    # Map neighbour clouds repeat points; duplicates would collapse the
    # covariance neighbourhoods
    target = np.unique(target, axis=0)
    target_tree = cKDTree(target)
    use_gicp = config.method == "gicp"
    if use_gicp:
        target_cov = estimate_point_covariances(
            target, config.covariance_neighbors, config.covariance_epsilon, target_tree
        )
        source_cov = estimate_point_covariances(
            source, config.covariance_neighbors, config.covariance_epsilon
        )

    converged = False
    iterations = 0
    seen_pairs = set()
    best_T, best_cost = T, np.inf
    previous_cost = None
    for iteration in range(config.max_iterations):
        iterations = iteration + 1
        moved = se3_apply(T, source)
        src_idx, tgt_idx, distances = find_correspondences(
            moved, target, config.max_correspondence_distance, target_tree
        )

        if src_idx.shape[0] < config.min_correspondences:
            logger.debug(
                "Registration stopped at iteration %d: %d correspondences (< %d)",
                iterations, src_idx.shape[0], config.min_correspondences,
            )
            break

        if use_gicp:
            information = gicp_information(source_cov[src_idx], target_cov[tgt_idx], T[:3, :3])
            cost = gicp_cost(moved[src_idx], target[tgt_idx], information)
        else:
            cost = float(np.mean(distances**2))

        if cost < best_cost:
            best_T, best_cost = T, cost

        pairs = (src_idx.tobytes(), tgt_idx.tobytes())
        if pairs in seen_pairs:
            logger.debug(
                "Registration converged at iteration %d: correspondences repeat (cost %.3e)",
                iterations, best_cost,
            )
            T = best_T
            converged = True
            break
        seen_pairs.add(pairs)

        if (
            previous_cost is not None
            and abs(previous_cost - cost) <= config.euclidean_fitness_epsilon * previous_cost
        ):
            logger.debug(
                "Registration converged at iteration %d: cost change below epsilon (cost %.3e)",
                iterations, cost,
            )
            converged = True
            break
        previous_cost = cost

        if use_gicp:
            T_new = minimize_gicp_pairs(
                T, source[src_idx], target[tgt_idx], information, config.transformation_epsilon
            )
        else:
            T_new = align_svd(moved[src_idx], target[tgt_idx]) @ T
            T_new[:3, :3] = orthonormalize_rotation(T_new[:3, :3])

        change = float(np.linalg.norm(_increment_from_matrix(T_new @ se3_inverse(T))))
        T = T_new
        logger.debug(
            "Registration iteration %d: %d correspondences, cost %.3e, increment %.3e",
            iterations, src_idx.shape[0], cost, change,
        )
        if change < config.transformation_epsilon:
            converged = True
            break

    moved = se3_apply(T, source)
    src_idx, tgt_idx, distances = find_correspondences(
        moved, target, config.max_correspondence_distance, target_tree
    )
    fitness = float(np.mean(distances**2)) if distances.shape[0] > 0 else float("inf")

    return RegistrationResult(
        transform=Pose6DOF.from_matrix(T, stamp=stamp),
        converged=converged,
        iterations=iterations,
        fitness=fitness,
        n_correspondences=int(src_idx.shape[0]),
    )


def require_convergence(result: RegistrationResult) -> Pose6DOF:
    """
    Return the registration transform, or raise if it did not converge.

    Raises:
        RegistrationDidNotConverge: If ``result.converged`` is False.
    """
    if not result.converged:
        raise RegistrationDidNotConverge(
            f"Registration did not converge after {result.iterations} iterations "
            f"(fitness {result.fitness:.4g}, {result.n_correspondences} correspondences)",
            iterations=result.iterations,
            fitness=result.fitness,
        )
    return result.transform
