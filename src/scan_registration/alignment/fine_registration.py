"""
ICP Refinement

This module implements the coarse-to-fine Iterative Closest Point refinement
that turns coarse seed poses into the final model-to-scan transform.

For every seed and every pyramid level (coarsest first) the refiner:
1. Finds the nearest scan point of every transformed model point, gated by
   distance and normal compatibility
2. Keeps only the best fraction of correspondences (trimming)
3. Solves a Huber-weighted least-squares update, either a full rigid
   (optionally similarity) transform or a rotation restricted to one axis
4. Composes the update into the running pose until the RMSE stops improving

The seed whose final RMSE at the finest level is lowest wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple
import math
import threading
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..acceleration.parallel_executor import SeedParallelExecutor
from ..errors import (
    InvalidInputError,
    NoCorrespondenceFoundError,
    NoSeedFoundError,
    RegistrationCancelledError,
)
from ..preprocessing.point_cloud import PointCloud, Pyramid
from ..utils.config import ICPConfig, ICPLevelConfig
from ..utils.logging import setup_logger
from ..utils.transforms import (
    apply_transformation,
    make_transform,
    normalize_axis,
    orthonormal_basis,
    rotate_directions,
    rotation_about_axis,
)
from .coarse_registration import SeedPose

logger = setup_logger(__name__)

# Signature: callback(seed_index, level, iterations_for_this_seed)
ProgressCallback = Callable[[int, int, int], None]

_EPS = 1e-12


@dataclass(frozen=True)
class ICPParams:
    """
    Per-level ICP parameters.

    Coarser levels use looser thresholds and fewer iterations; finer levels
    tighter thresholds and more iterations.
    """

    max_iterations: int
    max_correspondence_distance: float
    min_normal_alignment: float = 0.75
    trim_fraction: float = 0.7
    robust_loss_delta: float = 0.02

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if not self.max_correspondence_distance > 0:
            raise ValueError("max_correspondence_distance must be positive")
        if not -1.0 <= self.min_normal_alignment <= 1.0:
            raise ValueError("min_normal_alignment must be within [-1, 1]")
        if not 0.0 < self.trim_fraction <= 1.0:
            raise ValueError("trim_fraction must be within (0, 1]")
        if not self.robust_loss_delta > 0:
            raise ValueError("robust_loss_delta must be positive")

    @classmethod
    def for_voxel(
        cls,
        voxel_size: float,
        level: int,
        *,
        distance_factor: float = 4.0,
        loss_factor: float = 2.0,
        trim_fraction: float = 0.7,
    ) -> "ICPParams":
        """Derive level parameters from the level's voxel size."""
        iterations = (12, 15, 20)
        normal_dots = (0.75, 0.8, 0.85)
        i = min(level, len(iterations) - 1)
        return cls(
            max_iterations=iterations[i],
            max_correspondence_distance=distance_factor * voxel_size,
            min_normal_alignment=normal_dots[i],
            trim_fraction=trim_fraction,
            robust_loss_delta=loss_factor * voxel_size,
        )

    @classmethod
    def from_config(cls, cfg: ICPLevelConfig) -> "ICPParams":
        return cls(
            max_iterations=cfg.max_iterations,
            max_correspondence_distance=cfg.max_correspondence_distance,
            min_normal_alignment=cfg.min_normal_alignment,
            trim_fraction=cfg.trim_fraction,
            robust_loss_delta=cfg.robust_loss_delta,
        )


def params_for_pyramid(voxel_sizes: Sequence[float], cfg: Optional[ICPConfig] = None) -> List[ICPParams]:
    """Per-level ICPParams: explicit config levels if given, else derived from voxel sizes."""
    cfg = cfg or ICPConfig()
    if cfg.levels:
        return [ICPParams.from_config(level) for level in cfg.levels]
    return [
        ICPParams.for_voxel(
            v,
            i,
            distance_factor=cfg.correspondence_distance_factor,
            loss_factor=cfg.robust_loss_factor,
            trim_fraction=cfg.trim_fraction,
        )
        for i, v in enumerate(voxel_sizes)
    ]


@dataclass(frozen=True)
class RegistrationMetrics:
    rmse: float
    inlier_fraction: float
    iterations: int


@dataclass(frozen=True, eq=False)
class RegistrationResult:
    """Model-to-scan transform plus quality metrics; the engine's output artifact."""

    transform: np.ndarray
    metrics: RegistrationMetrics
    seed_index: Optional[int] = None

    def __post_init__(self) -> None:
        T = np.array(self.transform, dtype=np.float64, copy=True)
        T.flags.writeable = False
        object.__setattr__(self, "transform", T)


class Correspondences(NamedTuple):
    """Gated nearest-neighbour pairs for one pose."""

    source: np.ndarray      # transformed model points (K x 3)
    target: np.ndarray      # matching scan points (K x 3)
    distances: np.ndarray   # residual distances (K,)
    n_candidates: int       # number of model points queried


# ------------------------ Correspondence helpers ------------------------


def build_neighbor_index(points: np.ndarray) -> NearestNeighbors:
    """KD-tree over ``points`` for 1-NN queries."""
    return NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(points)


def find_correspondences(source: np.ndarray, nbrs: NearestNeighbors) -> Tuple[np.ndarray, np.ndarray]:
    """
    Find closest point correspondences for every source point.

    Returns:
        Tuple of (correspondence_indices, distances).
    """
    distances, indices = nbrs.kneighbors(source)
    return indices.ravel(), distances.ravel()


def trim_correspondences(residuals: np.ndarray, trim_fraction: float) -> np.ndarray:
    """
    Indices of the best ``ceil(trim_fraction * n)`` residuals, ascending.

    At least one correspondence is kept whenever ``residuals`` is non-empty.
    """
    n = len(residuals)
    if n == 0:
        return np.empty(0, dtype=np.int64)
    keep = min(n, max(1, int(math.ceil(trim_fraction * n - 1e-9))))
    order = np.argsort(residuals, kind="stable")
    return order[:keep]


def huber_weights(residuals: np.ndarray, delta: float) -> np.ndarray:
    """IRLS weights of the Huber loss: 1 inside ``delta``, ``delta / r`` outside."""
    r = np.abs(residuals)
    return np.where(r <= delta, 1.0, delta / np.maximum(r, _EPS))


def compute_rmse(residuals: np.ndarray) -> float:
    if len(residuals) == 0:
        return float("inf")
    return float(np.sqrt(np.mean(np.square(residuals))))


# ------------------------ Solvers ------------------------


def _weighted_centroids(src: np.ndarray, dst: np.ndarray, weights: Optional[np.ndarray]):
    if weights is None:
        weights = np.ones(len(src))
    total = float(weights.sum())
    if total <= _EPS:
        weights = np.ones(len(src))
        total = float(len(src))
    w = weights / total
    return w, w @ src, w @ dst


def estimate_translation(src: np.ndarray, dst: np.ndarray, weights: Optional[np.ndarray] = None) -> np.ndarray:
    """Weighted translation-only update (the reduced-DoF fallback)."""
    _, mu_s, mu_d = _weighted_centroids(src, dst, weights)
    return make_transform(t=mu_d - mu_s)


def estimate_rigid_transform(
    src: np.ndarray,
    dst: np.ndarray,
    weights: Optional[np.ndarray] = None,
    with_scale: bool = False,
) -> np.ndarray:
    """
    Weighted least-squares rigid (or similarity) transform mapping src onto dst.

    Weighted Kabsch/Umeyama via SVD of the cross-covariance. Falls back to a
    translation-only update when fewer than 3 pairs are given or the
    cross-covariance has rank < 2 (rotation underdetermined).

    Args:
        src: Source points (N x 3).
        dst: Corresponding target points (N x 3).
        weights: Optional per-pair weights (N,).
        with_scale: Also estimate a uniform scale factor.

    Returns:
        Transformation matrix (4 x 4).
    """
    if len(src) < 3:
        return estimate_translation(src, dst, weights)

    w, mu_s, mu_d = _weighted_centroids(src, dst, weights)
    A = src - mu_s
    B = dst - mu_d

    H = (A * w[:, None]).T @ B
    U, S, Vt = np.linalg.svd(H)
    if not np.all(np.isfinite(S)) or S[0] <= _EPS or S[1] <= 1e-9 * S[0]:
        logger.debug("Rotation underdetermined (singular values %s); translation-only update.", S)
        return estimate_translation(src, dst, weights)

    d = 1.0 if np.linalg.det(Vt.T @ U.T) >= 0 else -1.0
    D = np.diag([1.0, 1.0, d])
    R = Vt.T @ D @ U.T

    scale = 1.0
    if with_scale:
        var_s = float(w @ np.einsum("ij,ij->i", A, A))
        if var_s > _EPS:
            scale = float(np.sum(S * np.diag(D))) / var_s

    t = mu_d - scale * (R @ mu_s)
    return make_transform(R, t, scale)


def estimate_axis_constrained_transform(
    src: np.ndarray,
    dst: np.ndarray,
    axis,
    weights: Optional[np.ndarray] = None,
    with_scale: bool = False,
    fallback: Optional[Callable[..., np.ndarray]] = None,
) -> np.ndarray:
    """
    Weighted least-squares transform whose rotation is restricted to ``axis``.

    The rotation reduces to a single angle solved in closed form in the plane
    orthogonal to the axis; translation stays fully 3-D. When the planar
    moment vanishes the update is delegated to ``fallback(src, dst, weights)``
    (translation-only by default).

    Returns:
        Transformation matrix (4 x 4).
    """
    fallback = fallback or estimate_translation
    if len(src) < 2:
        return fallback(src, dst, weights)

    u, v, a = orthonormal_basis(axis)
    w, mu_s, mu_d = _weighted_centroids(src, dst, weights)
    A = src - mu_s
    B = dst - mu_d

    ax, ay, az = A @ u, A @ v, A @ a
    bx, by, bz = B @ u, B @ v, B @ a

    s_cos = float(w @ (ax * bx + ay * by))
    s_sin = float(w @ (ax * by - ay * bx))
    planar_var = float(w @ (ax * ax + ay * ay))
    moment = math.hypot(s_cos, s_sin)
    if planar_var <= _EPS or moment <= 1e-9 * max(planar_var, _EPS):
        logger.debug("Yaw underdetermined (planar variance %.3e); using fallback solve.", planar_var)
        return fallback(src, dst, weights)

    theta = math.atan2(s_sin, s_cos)
    R = rotation_about_axis(a, theta)

    scale = 1.0
    if with_scale:
        total_var = planar_var + float(w @ (az * az))
        if total_var > _EPS:
            scale = (moment + float(w @ (az * bz))) / total_var

    t = mu_d - scale * (R @ mu_s)
    return make_transform(R, t, scale)


# ------------------------ Refiner ------------------------


@dataclass
class _LevelOutcome:
    pose: np.ndarray
    rmse: float
    iterations: int
    found_correspondences: bool


@dataclass
class _SeedOutcome:
    seed_index: int
    pose: np.ndarray
    rmse: float
    inlier_fraction: float
    iterations: int


def _refine_seed_worker(item, *, refiner, model_pyramid, scan_pyramid, params_per_level):
    """Module-level entry point for parallel seed evaluation (must be picklable)."""
    seed_index, pose = item
    return refiner.refine_seed(model_pyramid, scan_pyramid, pose, params_per_level, seed_index=seed_index)


class ICPRefiner:
    """
    Coarse-to-fine robust ICP over parallel model/scan pyramids.

    Correspondences go from transformed model points to their nearest scan
    points, so the resulting transform maps model coordinates into the scan
    frame.
    """

    def __init__(
        self,
        axis=None,
        estimate_scale: bool = False,
        convergence_threshold: float = 1e-6,
        min_correspondences: int = 1,
        n_workers: int = 1,
    ):
        """
        Initialize ICP refinement.

        Args:
            axis: Rotation axis for axis-constrained (yaw-only) mode; None solves
                the full rotation.
            estimate_scale: Also estimate a uniform scale (similarity transform).
            convergence_threshold: Stop a level when the RMSE changes by less.
            min_correspondences: Minimum gated pairs needed to take a step.
            n_workers: Worker processes for seed evaluation (1 = sequential).
        """
        self.axis = None if axis is None else normalize_axis(axis)
        self.estimate_scale = estimate_scale
        self.convergence_threshold = convergence_threshold
        self.min_correspondences = max(1, int(min_correspondences))
        self.n_workers = max(1, int(n_workers))

    @classmethod
    def from_config(cls, cfg: ICPConfig, up_axis) -> "ICPRefiner":
        return cls(
            axis=up_axis if cfg.mode == "axis" else None,
            estimate_scale=cfg.estimate_scale,
            convergence_threshold=cfg.convergence_threshold,
            min_correspondences=cfg.min_correspondences,
            n_workers=cfg.n_workers,
        )

    @property
    def axis_constrained(self) -> bool:
        return self.axis is not None

    def refine(
        self,
        model_pyramid: Pyramid,
        scan_pyramid: Pyramid,
        seeds: Sequence,
        params_per_level: Sequence[ICPParams],
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RegistrationResult:
        """
        Refine every seed and return the best result.

        Args:
            model_pyramid: Model clouds, coarse to fine.
            scan_pyramid: Scan clouds at the same levels.
            seeds: SeedPose objects or raw 4 x 4 poses, best first.
            params_per_level: ICPParams per level, coarse to fine.
            progress_callback: Called as (seed_index, level, iterations).
            cancel_event: Polled between iterations; set to abandon the attempt.

        Returns:
            RegistrationResult of the lowest-RMSE seed (ties: lowest seed index).

        Raises:
            NoSeedFoundError: If ``seeds`` is empty.
            NoCorrespondenceFoundError: If no seed produced any correspondence.
            RegistrationCancelledError: If ``cancel_event`` was set.
        """
        poses = [self._seed_pose(s) for s in seeds]
        if not poses:
            raise NoSeedFoundError("ICP refinement called without seeds")
        self._check_levels(model_pyramid, scan_pyramid, params_per_level)

        logger.info(
            "Starting ICP refinement: %d seeds, %d levels, mode=%s%s.",
            len(poses),
            self._n_levels(model_pyramid, scan_pyramid, params_per_level),
            "axis" if self.axis_constrained else "full",
            " +scale" if self.estimate_scale else "",
        )
        start = time.time()

        if self.n_workers > 1 and len(poses) > 1:
            if progress_callback is not None or cancel_event is not None:
                logger.info("Progress and cancellation are checked per batch when seeds run in parallel.")
            if cancel_event is not None and cancel_event.is_set():
                raise RegistrationCancelledError("Alignment cancelled before refinement")
            executor = SeedParallelExecutor(n_workers=self.n_workers)
            outcomes = executor.map_seeds(
                list(enumerate(poses)),
                _refine_seed_worker,
                {
                    "refiner": self,
                    "model_pyramid": model_pyramid,
                    "scan_pyramid": scan_pyramid,
                    "params_per_level": list(params_per_level),
                },
                progress_callback=lambda done, total: logger.debug("Refined %d/%d seeds.", done, total),
            )
            if cancel_event is not None and cancel_event.is_set():
                raise RegistrationCancelledError("Alignment cancelled during refinement")
        else:
            trees = [build_neighbor_index(cloud.points) for cloud in scan_pyramid if len(cloud)]
            if len(trees) != len(scan_pyramid):
                trees = None
            outcomes = [
                self.refine_seed(
                    model_pyramid,
                    scan_pyramid,
                    pose,
                    params_per_level,
                    seed_index=i,
                    trees=trees,
                    progress_callback=progress_callback,
                    cancel_event=cancel_event,
                )
                for i, pose in enumerate(poses)
            ]

        valid = [o for o in outcomes if o is not None]
        if not valid:
            raise NoCorrespondenceFoundError(
                f"None of {len(poses)} seeds produced a correspondence at any pyramid level"
            )

        best = min(valid, key=lambda o: (o.rmse, o.seed_index))
        metrics = RegistrationMetrics(
            rmse=best.rmse,
            inlier_fraction=best.inlier_fraction,
            iterations=best.iterations,
        )
        logger.info(
            "ICP refinement finished in %.3f s: best seed %d of %d, RMSE=%.6f, inliers=%.3f, iterations=%d.",
            time.time() - start,
            best.seed_index,
            len(poses),
            metrics.rmse,
            metrics.inlier_fraction,
            metrics.iterations,
        )
        return RegistrationResult(transform=best.pose, metrics=metrics, seed_index=best.seed_index)

    def refine_seed(
        self,
        model_pyramid: Pyramid,
        scan_pyramid: Pyramid,
        seed_pose: np.ndarray,
        params_per_level: Sequence[ICPParams],
        *,
        seed_index: int = 0,
        trees: Optional[Sequence[NearestNeighbors]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[_SeedOutcome]:
        """
        Run coarse-to-fine ICP from one seed.

        Returns:
            The seed's outcome, or None if it never found a correspondence.
        """
        n_levels = self._n_levels(model_pyramid, scan_pyramid, params_per_level)
        pose = np.asarray(seed_pose, dtype=float).copy()
        total_iterations = 0
        found_any = False

        for level in range(n_levels):
            model = model_pyramid[level]
            scan = scan_pyramid[level]
            if len(model) == 0 or len(scan) == 0:
                continue
            nbrs = trees[level] if trees is not None else build_neighbor_index(scan.points)

            def report(lvl: int, its: int, _base=total_iterations) -> None:
                if progress_callback is not None:
                    progress_callback(seed_index, lvl, _base + its)

            outcome = self.icp_level(
                model,
                scan,
                pose,
                params_per_level[level],
                nbrs=nbrs,
                level=level,
                report=report,
                cancel_event=cancel_event,
            )
            pose = outcome.pose
            total_iterations += outcome.iterations
            found_any = found_any or outcome.found_correspondences

        finest = n_levels - 1
        finest_nbrs = trees[finest] if trees is not None else None
        rmse, inlier_fraction, n_valid = self.evaluate_pose(
            model_pyramid[finest], scan_pyramid[finest], pose, params_per_level[finest], nbrs=finest_nbrs
        )
        if not found_any and n_valid == 0:
            logger.debug("Seed %d found no correspondences at any level.", seed_index)
            return None

        logger.debug(
            "Seed %d: RMSE=%.6f, inliers=%.3f, iterations=%d.",
            seed_index,
            rmse,
            inlier_fraction,
            total_iterations,
        )
        return _SeedOutcome(seed_index, pose, rmse, inlier_fraction, total_iterations)

    def icp_level(
        self,
        model: PointCloud,
        scan: PointCloud,
        initial_pose: np.ndarray,
        params: ICPParams,
        *,
        nbrs: Optional[NearestNeighbors] = None,
        level: int = 0,
        report: Optional[Callable[[int, int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> _LevelOutcome:
        """Iterate ICP at a single pyramid level starting from ``initial_pose``."""
        if nbrs is None:
            nbrs = build_neighbor_index(scan.points)

        pose = np.asarray(initial_pose, dtype=float).copy()
        previous_rmse = float("inf")
        rmse = float("inf")
        iterations = 0
        found = False

        for iteration in range(params.max_iterations):
            if cancel_event is not None and cancel_event.is_set():
                raise RegistrationCancelledError(f"Alignment cancelled at level {level}, iteration {iteration}")

            corr = self.correspondences(model, scan, pose, params, nbrs)
            if len(corr.distances) < self.min_correspondences:
                logger.debug(
                    "Level %d iteration %d: %d valid correspondences; stopping level.",
                    level,
                    iteration + 1,
                    len(corr.distances),
                )
                break
            found = True

            kept = trim_correspondences(corr.distances, params.trim_fraction)
            residuals = corr.distances[kept]
            weights = huber_weights(residuals, params.robust_loss_delta)
            delta = self.solve_increment(corr.source[kept], corr.target[kept], weights)

            # Update transformation: new_transform = delta_transform * current_transform
            pose = delta @ pose
            rmse = compute_rmse(residuals)
            iterations = iteration + 1

            logger.debug(
                "Level %d iteration %d: RMSE=%.6f, kept=%d/%d.",
                level,
                iterations,
                rmse,
                len(kept),
                corr.n_candidates,
            )
            if report is not None:
                report(level, iterations)

            if abs(previous_rmse - rmse) < self.convergence_threshold:
                logger.debug("Level %d converged after %d iterations.", level, iterations)
                break
            previous_rmse = rmse

        return _LevelOutcome(pose, rmse, iterations, found)

    def correspondences(
        self,
        model: PointCloud,
        scan: PointCloud,
        pose: np.ndarray,
        params: ICPParams,
        nbrs: NearestNeighbors,
    ) -> Correspondences:
        """Nearest-neighbour pairs for ``pose``, gated by distance and normal compatibility."""
        moved = apply_transformation(model.points, pose)
        indices, distances = find_correspondences(moved, nbrs)
        valid = self.gate(model, scan, pose, indices, distances, params)

        return Correspondences(
            source=moved[valid],
            target=scan.points[indices[valid]],
            distances=distances[valid],
            n_candidates=len(moved),
        )

    @staticmethod
    def gate(
        model: PointCloud,
        scan: PointCloud,
        pose: np.ndarray,
        indices: np.ndarray,
        distances: np.ndarray,
        params: ICPParams,
    ) -> np.ndarray:
        """Boolean mask of nearest-neighbour pairs that pass the distance and normal gates."""
        valid = distances <= params.max_correspondence_distance
        if model.has_normals and scan.has_normals and params.min_normal_alignment > -1.0:
            model_normals = rotate_directions(model.normals, pose)
            # Normals are unoriented; compare the lines they span
            dots = np.abs(np.einsum("ij,ij->i", model_normals, scan.normals[indices]))
            valid &= dots >= params.min_normal_alignment
        return valid

    def solve_increment(self, src: np.ndarray, dst: np.ndarray, weights: np.ndarray) -> np.ndarray:
        if self.axis_constrained:
            return estimate_axis_constrained_transform(src, dst, self.axis, weights, self.estimate_scale)
        return estimate_rigid_transform(src, dst, weights, self.estimate_scale)

    def evaluate_pose(
        self,
        model: PointCloud,
        scan: PointCloud,
        pose: np.ndarray,
        params: ICPParams,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> Tuple[float, float, int]:
        """
        Quality of ``pose`` at one level.

        The RMSE is the trimmed objective over every model point: the best
        ``trim_fraction`` of all nearest-neighbour residuals, gated or not. Model
        points without a scan counterpart count once the overlap drops below
        ``trim_fraction``.

        Returns:
            Tuple of (trimmed rmse, gated correspondences / model points,
            number of gated correspondences).
        """
        if len(model) == 0 or len(scan) == 0:
            return float("inf"), 0.0, 0
        if nbrs is None:
            nbrs = build_neighbor_index(scan.points)
        moved = apply_transformation(model.points, pose)
        indices, distances = find_correspondences(moved, nbrs)
        n_valid = int(np.count_nonzero(self.gate(model, scan, pose, indices, distances, params)))
        if n_valid == 0:
            return float("inf"), 0.0, 0
        kept = trim_correspondences(distances, params.trim_fraction)
        return compute_rmse(distances[kept]), n_valid / len(moved), n_valid

    # ------------------------ Helpers ------------------------
    @staticmethod
    def _seed_pose(seed) -> np.ndarray:
        pose = seed.pose if isinstance(seed, SeedPose) else seed
        pose = np.asarray(pose, dtype=float)
        if pose.shape != (4, 4) or not np.all(np.isfinite(pose)):
            raise InvalidInputError(f"Seed pose must be a finite 4x4 matrix, got shape {pose.shape}")
        return pose

    @staticmethod
    def _n_levels(model_pyramid: Pyramid, scan_pyramid: Pyramid, params_per_level: Sequence[ICPParams]) -> int:
        return min(len(model_pyramid), len(scan_pyramid), len(params_per_level))

    def _check_levels(self, model_pyramid: Pyramid, scan_pyramid: Pyramid,
                      params_per_level: Sequence[ICPParams]) -> None:
        n = self._n_levels(model_pyramid, scan_pyramid, params_per_level)
        if n == 0:
            raise InvalidInputError("ICP refinement needs at least one level with parameters")
        if not (len(model_pyramid) == len(scan_pyramid) == len(params_per_level)):
            logger.warning(
                "Pyramid/parameter level mismatch (model=%d, scan=%d, params=%d); using %d levels.",
                len(model_pyramid),
                len(scan_pyramid),
                len(params_per_level),
                n,
            )
        if len(model_pyramid[n - 1]) == 0 or len(scan_pyramid[n - 1]) == 0:
            raise InvalidInputError("The finest pyramid level is empty")
