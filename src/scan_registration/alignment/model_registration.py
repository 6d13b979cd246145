"""
Interactive Model Registration

Single-resolution fast path for latency-sensitive use: a yaw sweep against
the full clouds followed by yaw-constrained ICP with plain nearest neighbours
(no pyramid, no normal gating, no trimming). Speed/accuracy is chosen through
named quality presets.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional, Union
import threading
import time

import numpy as np

from ..errors import InsufficientGeometryError, InvalidInputError, NoSeedFoundError, RegistrationCancelledError
from ..preprocessing.point_cloud import PointCloud
from ..preprocessing.sampler import MeshSource, PointCloudSampler
from ..utils.config import AppConfig, PresetParameters
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, normalize_axis
from .coarse_registration import CoarsePoseEstimator
from .fine_registration import (
    RegistrationMetrics,
    RegistrationResult,
    build_neighbor_index,
    compute_rmse,
    estimate_axis_constrained_transform,
    estimate_rigid_transform,
    find_correspondences,
)

logger = setup_logger(__name__)


class QualityPreset(str, Enum):
    INSTANT = "instant"
    ULTRA_FAST = "ultra_fast"
    FAST = "fast"
    BALANCED = "balanced"
    ACCURATE = "accurate"

    @property
    def parameters(self) -> PresetParameters:
        return PRESET_PARAMETERS[self]


PRESET_PARAMETERS = {
    QualityPreset.INSTANT: PresetParameters(
        model_points_sample_count=1000,
        scan_points_sample_count=3000,
        max_iterations=10,
        convergence_threshold=0.005,
    ),
    QualityPreset.ULTRA_FAST: PresetParameters(
        model_points_sample_count=2000,
        scan_points_sample_count=5000,
        max_iterations=15,
        convergence_threshold=0.003,
    ),
    QualityPreset.FAST: PresetParameters(
        model_points_sample_count=3000,
        scan_points_sample_count=8000,
        max_iterations=20,
        convergence_threshold=0.002,
    ),
    QualityPreset.BALANCED: PresetParameters(
        model_points_sample_count=5000,
        scan_points_sample_count=10000,
        max_iterations=30,
        convergence_threshold=0.001,
    ),
    QualityPreset.ACCURATE: PresetParameters(
        model_points_sample_count=8000,
        scan_points_sample_count=15000,
        max_iterations=50,
        convergence_threshold=0.0001,
    ),
}

PresetLike = Union[QualityPreset, str, PresetParameters]


def resolve_preset(preset: PresetLike) -> PresetParameters:
    """
    Parameters of a named preset, or ``preset`` itself for custom parameters.

    Raises:
        ValueError: If ``preset`` is an unknown name.
    """
    if isinstance(preset, PresetParameters):
        return preset
    try:
        return QualityPreset(preset).parameters
    except ValueError:
        names = ", ".join(p.value for p in QualityPreset)
        raise ValueError(f"Unknown quality preset '{preset}' (expected one of: {names})") from None


class ModelRegistrationService:
    """Fast yaw-constrained registration of a model against a scan."""

    def __init__(
        self,
        up=(0.0, 1.0, 0.0),
        yaw_steps: int = 36,
        score_samples: int = 500,
        min_points: int = 100,
        inlier_threshold: float = 0.1,
        sampler: Optional[PointCloudSampler] = None,
    ):
        """
        Initialize the service.

        Args:
            up: Gravity-up axis shared by model and scan.
            yaw_steps: Number of headings in the initial yaw sweep.
            score_samples: Model points used to score each heading.
            min_points: Minimum usable points on either side.
            inlier_threshold: Distance under which a model point counts as an inlier.
            sampler: Mesh sampler (vertex-stride sampling by default).
        """
        if yaw_steps < 1:
            raise ValueError("yaw_steps must be >= 1")
        self.up = normalize_axis(up)
        self.yaw_steps = int(yaw_steps)
        self.score_samples = int(score_samples)
        self.min_points = int(min_points)
        self.inlier_threshold = float(inlier_threshold)
        self.sampler = sampler or PointCloudSampler(method="vertices")
        self._coarse = CoarsePoseEstimator(yaw_step_deg=360.0 / self.yaw_steps, max_score_samples=self.score_samples)

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "ModelRegistrationService":
        return cls(
            up=cfg.up_axis,
            yaw_steps=cfg.interactive.yaw_steps,
            score_samples=cfg.interactive.score_samples,
            min_points=cfg.interactive.min_points,
            inlier_threshold=cfg.interactive.inlier_threshold,
        )

    def extract_point_cloud(self, mesh: MeshSource, sample_count: int) -> PointCloud:
        """World-space point cloud of at most ``sample_count`` points from a mesh."""
        return self.sampler.extract(mesh, sample_count)

    def register_models(
        self,
        model_points,
        scan_points,
        max_iterations: int = 50,
        convergence_threshold: float = 1e-4,
        progress_callback: Optional[Callable[[str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RegistrationResult:
        """
        Register model points against scan points.

        Args:
            model_points: (N, 3) array or PointCloud in model coordinates.
            scan_points: (M, 3) array or PointCloud in scan coordinates.
            max_iterations: ICP iteration cap.
            convergence_threshold: Stop when the RMSE changes by less.
            progress_callback: Receives status strings ``"Iteration i/N"``.
            cancel_event: Polled before every iteration.

        Returns:
            RegistrationResult whose RMSE is measured over all model points and
            whose inlier fraction counts model points within ``inlier_threshold``.

        Raises:
            InsufficientGeometryError: Fewer than ``min_points`` on either side.
            RegistrationCancelledError: If ``cancel_event`` was set.
        """
        if max_iterations < 1:
            raise InvalidInputError("max_iterations must be >= 1")
        model = self._as_points(model_points, "model")
        scan = self._as_points(scan_points, "scan")
        logger.info("Starting fast registration with %d model points and %d scan points", len(model), len(scan))
        start = time.time()

        seeds = self._coarse.seeds(PointCloud(model), PointCloud(scan), self.up)
        if not seeds:
            raise NoSeedFoundError("Yaw sweep produced no candidates")
        pose = seeds[0].pose.copy()
        logger.info("Initial yaw search result: %.1f deg", seeds[0].yaw_deg)

        nbrs = build_neighbor_index(scan)
        previous_rmse = float("inf")
        iterations = 0
        for iteration in range(max_iterations):
            if cancel_event is not None and cancel_event.is_set():
                raise RegistrationCancelledError(f"Registration cancelled at iteration {iteration + 1}")
            if progress_callback is not None:
                progress_callback(f"Iteration {iteration + 1}/{max_iterations}")
            iterations = iteration + 1

            moved = apply_transformation(model, pose)
            indices, distances = find_correspondences(moved, nbrs)
            rmse = compute_rmse(distances)
            logger.debug("Iteration %d: RMSE = %.6f", iterations, rmse)

            if abs(previous_rmse - rmse) < convergence_threshold:
                logger.info("Converged at iteration %d", iterations)
                break
            previous_rmse = rmse

            delta = estimate_axis_constrained_transform(
                moved, scan[indices], self.up, fallback=estimate_rigid_transform
            )
            pose = delta @ pose

        rmse, inlier_fraction = self._final_metrics(model, nbrs, pose)
        logger.info(
            "Fast registration finished in %.3f s: RMSE=%.6f, inliers=%.3f, iterations=%d",
            time.time() - start,
            rmse,
            inlier_fraction,
            iterations,
        )
        return RegistrationResult(
            transform=pose,
            metrics=RegistrationMetrics(rmse=rmse, inlier_fraction=inlier_fraction, iterations=iterations),
        )

    def register_meshes(
        self,
        model_mesh: MeshSource,
        scan_mesh: MeshSource,
        preset: PresetLike = QualityPreset.BALANCED,
        progress_callback: Optional[Callable[[str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RegistrationResult:
        """Sample both meshes with the preset's counts and register them."""
        params = resolve_preset(preset)
        model = self.extract_point_cloud(model_mesh, params.model_points_sample_count)
        scan = self.extract_point_cloud(scan_mesh, params.scan_points_sample_count)
        return self.register_models(
            model,
            scan,
            max_iterations=params.max_iterations,
            convergence_threshold=params.convergence_threshold,
            progress_callback=progress_callback,
            cancel_event=cancel_event,
        )

    # ------------------------ Helpers ------------------------
    def _as_points(self, source, name: str) -> np.ndarray:
        cloud = source if isinstance(source, PointCloud) else PointCloud.from_points(source)
        if len(cloud) < self.min_points:
            raise InsufficientGeometryError(
                f"{name.capitalize()} has {len(cloud)} points, at least {self.min_points} required"
            )
        return cloud.points

    def _final_metrics(self, model: np.ndarray, nbrs, pose: np.ndarray):
        moved = apply_transformation(model, pose)
        _, distances = find_correspondences(moved, nbrs)
        inliers = int(np.count_nonzero(distances < self.inlier_threshold))
        return compute_rmse(distances), inliers / len(model)
