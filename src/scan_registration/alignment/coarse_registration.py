"""
Coarse Pose Search

Provides the yaw sweep that seeds ICP. The scan and the model share a
gravity-up axis, so the only unknown rotational degree of freedom at this
stage is the heading about that axis.

For each candidate heading the model is rotated about its centroid and its
centroid moved onto the scan centroid; the candidate is scored by how close a
subsample of the rotated model lies to the scan.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..preprocessing.point_cloud import PointCloud
from ..utils.config import CoarseAlignmentConfig
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, make_transform, normalize_axis, rotation_about_axis

logger = setup_logger(__name__)


@dataclass(frozen=True, eq=False)
class SeedPose:
    """Candidate initial pose (model -> scan); higher score = more plausible."""

    pose: np.ndarray
    score: float
    yaw_deg: float


def strided_subsample(points: np.ndarray, max_samples: int) -> np.ndarray:
    """Every k-th point so that at most ``max_samples`` remain."""
    if len(points) <= max_samples:
        return points
    step = int(np.ceil(len(points) / max_samples))
    return points[::step]


def centroid_yaw_pose(model_centroid: np.ndarray, scan_centroid: np.ndarray, up: np.ndarray, yaw_deg: float) -> np.ndarray:
    """Rotate by ``yaw_deg`` about ``up`` and move the model centroid onto the scan centroid."""
    R = rotation_about_axis(up, np.radians(yaw_deg))
    return make_transform(R, scan_centroid - R @ model_centroid)


def score_pose(sample: np.ndarray, nbrs: NearestNeighbors, pose: np.ndarray) -> float:
    """``1 / (1 + rmse)`` of nearest-neighbour distances from the posed sample to the scan."""
    distances, _ = nbrs.kneighbors(apply_transformation(sample, pose))
    rmse = float(np.sqrt(np.mean(np.square(distances))))
    return 1.0 / (1.0 + rmse)


class CoarsePoseEstimator:
    """Generate ranked yaw-sweep seed poses for ICP."""

    def __init__(self, yaw_step_deg: float = 10.0, max_score_samples: int = 500):
        if not 0 < yaw_step_deg <= 360:
            raise ValueError(f"yaw_step_deg must be within (0, 360], got {yaw_step_deg}")
        if max_score_samples < 1:
            raise ValueError("max_score_samples must be >= 1")
        self.yaw_step_deg = float(yaw_step_deg)
        self.max_score_samples = int(max_score_samples)

    @classmethod
    def from_config(cls, cfg: CoarseAlignmentConfig) -> "CoarsePoseEstimator":
        return cls(yaw_step_deg=cfg.yaw_step_deg, max_score_samples=cfg.max_score_samples)

    @property
    def n_candidates(self) -> int:
        return max(1, int(round(360.0 / self.yaw_step_deg)))

    def candidate_yaws(self) -> List[float]:
        """Candidate headings in degrees, ``k * yaw_step_deg`` for k = 0, 1, ..."""
        return [k * self.yaw_step_deg for k in range(self.n_candidates)]

    def seeds(self, model: PointCloud, scan: PointCloud, up) -> List[SeedPose]:
        """
        Score every yaw candidate and return them best first.

        Args:
            model: Model cloud (usually the coarsest pyramid level).
            scan: Scan cloud at the same level.
            up: Gravity-up axis shared by both clouds.

        Returns:
            SeedPoses sorted by descending score; ties keep yaw order. Empty
            when either cloud is empty.
        """
        if len(model) == 0 or len(scan) == 0:
            logger.warning("Coarse pose search: empty model or scan; no seeds generated.")
            return []

        up = normalize_axis(up)
        c_model = model.centroid()
        c_scan = scan.centroid()
        sample = strided_subsample(model.points, self.max_score_samples)
        nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(scan.points)

        candidates: List[SeedPose] = []
        for yaw in self.candidate_yaws():
            pose = centroid_yaw_pose(c_model, c_scan, up, yaw)
            candidates.append(SeedPose(pose=pose, score=score_pose(sample, nbrs, pose), yaw_deg=yaw))

        # Python's sort is stable, so equal scores keep ascending yaw order
        candidates.sort(key=lambda s: s.score, reverse=True)
        best = candidates[0]
        logger.info(
            "Coarse pose search: %d yaw candidates (step %.1f deg), best yaw=%.1f deg score=%.4f",
            len(candidates),
            self.yaw_step_deg,
            best.yaw_deg,
            best.score,
        )
        return candidates
