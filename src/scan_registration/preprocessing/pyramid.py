"""
Scan Preprocessing

Builds the coarse-to-fine Pyramid consumed by the coarse search and ICP:
optional confidence and range filtering, voxel-grid downsampling and PCA normal estimation
per level. This is the most CPU-intensive step of an alignment attempt and is
meant to run on a background worker.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..errors import InsufficientGeometryError, InvalidInputError
from ..utils.config import PreprocessingConfig
from ..utils.logging import setup_logger
from ..utils.transforms import normalize_axis
from .point_cloud import PointCloud, Pyramid

logger = setup_logger(__name__)


@dataclass(frozen=True)
class PreprocessParams:
    """
    Pyramid construction parameters.

    Attributes:
        voxel_sizes: Coarse-to-fine voxel sizes (strictly decreasing; only the
            finest size may repeat).
        min_range: Drop raw points closer than this to the sensor origin.
        max_range: Drop raw points farther than this from the sensor origin.
        min_confidence: Drop raw points whose confidence is below this value
            (only applied when confidences are supplied).
        normal_radius_factor: Normal neighbourhood radius in voxel units.
        normal_neighbors: Maximum neighbours used per PCA normal.
    """

    voxel_sizes: Tuple[float, ...] = (0.04, 0.02, 0.01)
    min_range: Optional[float] = None
    max_range: Optional[float] = None
    min_confidence: int = 128
    normal_radius_factor: float = 3.0
    normal_neighbors: int = 16

    def __post_init__(self) -> None:
        voxels = tuple(float(v) for v in self.voxel_sizes)
        if not voxels or any(v <= 0 or not np.isfinite(v) for v in voxels):
            raise ValueError(f"voxel_sizes must be positive, got {self.voxel_sizes}")
        finest = min(voxels)
        if any(b > a or (b == a and b != finest) for a, b in zip(voxels, voxels[1:])):
            raise ValueError(f"voxel_sizes must be strictly decreasing, got {voxels}")
        if self.normal_neighbors < 3:
            raise ValueError("normal_neighbors must be >= 3")
        object.__setattr__(self, "voxel_sizes", voxels)

    @classmethod
    def geometric(cls, finest: float, levels: int = 3, factor: float = 2.0, **kwargs) -> "PreprocessParams":
        """Voxel sizes ``finest * factor**k`` ordered coarse to fine."""
        if levels < 1 or factor <= 1.0:
            raise ValueError("levels must be >= 1 and factor > 1")
        voxels = tuple(finest * factor ** (levels - 1 - i) for i in range(levels))
        return cls(voxel_sizes=voxels, **kwargs)

    @classmethod
    def from_config(cls, cfg: PreprocessingConfig) -> "PreprocessParams":
        return cls(
            voxel_sizes=tuple(cfg.resolved_voxel_sizes()),
            min_range=cfg.min_range,
            max_range=cfg.max_range,
            min_confidence=cfg.min_confidence,
            normal_radius_factor=cfg.normal_radius_factor,
            normal_neighbors=cfg.normal_neighbors,
        )


def voxel_downsample(points: np.ndarray, voxel_size: float) -> np.ndarray:
    """
    Replace the points of every occupied voxel by their centroid.

    Voxel keys are ``floor(p / voxel_size)``; the output is ordered by key, so
    the result does not depend on input order beyond floating-point summation.

    Args:
        points: Nx3 array
        voxel_size: Edge length of the voxel grid

    Returns:
        Mx3 array of voxel centroids, M <= N
    """
    if len(points) == 0:
        return np.empty((0, 3))
    keys = np.floor(points / voxel_size).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), 3))
    np.add.at(sums, inverse, points)
    return sums / counts[:, None]


def estimate_normals(points: np.ndarray, up: np.ndarray, radius: float, max_neighbors: int = 16) -> np.ndarray:
    """
    PCA normals over the nearest neighbours within ``radius``.

    The normal is the eigenvector of the smallest eigenvalue of the local
    covariance. Points with fewer than 3 neighbours get ``up``; all normals are
    flipped so that ``dot(n, up) >= 0``.
    """
    n = len(points)
    up = normalize_axis(up)
    if n == 0:
        return np.empty((0, 3))
    if n < 3:
        return np.tile(up, (n, 1))

    k = min(max_neighbors, n)
    nbrs = NearestNeighbors(n_neighbors=k, algorithm="kd_tree").fit(points)
    distances, indices = nbrs.kneighbors(points)

    mask = distances <= radius
    counts = mask.sum(axis=1)
    neigh = points[indices]  # (N, k, 3)
    w = mask[..., None].astype(float)
    mean = (neigh * w).sum(axis=1) / np.maximum(counts, 1)[:, None]
    centered = (neigh - mean[:, None, :]) * w
    cov = np.einsum("nki,nkj->nij", centered, centered) / np.maximum(counts, 1)[:, None, None]

    _, eigvecs = np.linalg.eigh(cov)
    normals = eigvecs[:, :, 0]

    sparse = counts < 3
    normals[sparse] = up
    flip = normals @ up < 0
    normals[flip] *= -1.0
    return normals


class PreprocessService:
    """Builds scan (and model) pyramids: confidence and range filter, voxel downsample, normals."""

    def build_pyramid(
        self,
        raw_points,
        up_axis,
        params: Optional[PreprocessParams] = None,
        confidences=None,
    ) -> Pyramid:
        """
        Build a coarse-to-fine Pyramid from raw captured points.

        Args:
            raw_points: Nx3 array of raw samples (sensor/world frame).
            up_axis: Gravity-up direction used to orient ambiguous normals.
            params: Pyramid parameters (defaults to PreprocessParams()).
            confidences: Optional per-point capture confidence (length N);
                points below ``params.min_confidence`` are dropped.

        Returns:
            Pyramid with one level per voxel size, coarsest first.

        Raises:
            InvalidInputError: Empty or non-finite input, confidences of the
                wrong length, or zero-length up axis.
            InsufficientGeometryError: No points survive confidence and range filtering.
        """
        params = params or PreprocessParams()
        points = np.asarray(raw_points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3 or len(points) == 0:
            raise InvalidInputError(f"raw_points must be a non-empty (N, 3) array, got shape {points.shape}")
        if not np.all(np.isfinite(points)):
            raise InvalidInputError("raw_points contain non-finite values")
        if confidences is not None:
            confidences = np.asarray(confidences).reshape(-1)
            if len(confidences) != len(points):
                raise InvalidInputError(
                    f"Got {len(confidences)} confidences for {len(points)} raw points"
                )
        try:
            up = normalize_axis(up_axis)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        start = time.time()
        points = self._filter(points, confidences, params)
        if len(points) == 0:
            raise InsufficientGeometryError("No raw points left after confidence and range filtering")

        levels = []
        for voxel in params.voxel_sizes:
            level_start = time.time()
            down = voxel_downsample(points, voxel)
            normals = estimate_normals(
                down, up, radius=params.normal_radius_factor * voxel, max_neighbors=params.normal_neighbors
            )
            levels.append(PointCloud(down, normals, voxel))
            logger.debug(
                "Pyramid level voxel=%.4f: %d -> %d points in %.3f s",
                voxel,
                len(points),
                len(down),
                time.time() - level_start,
            )

        pyramid = Pyramid(tuple(levels))
        logger.info(
            "Built %d-level pyramid from %d raw points in %.3f s (counts=%s)",
            len(pyramid),
            len(points),
            time.time() - start,
            pyramid.point_counts,
        )
        return pyramid

    @staticmethod
    def _filter(points: np.ndarray, confidences, params: PreprocessParams) -> np.ndarray:
        keep = np.ones(len(points), dtype=bool)
        if confidences is not None:
            keep &= confidences >= params.min_confidence
        if params.min_range is not None or params.max_range is not None:
            dist = np.linalg.norm(points, axis=1)
            if params.min_range is not None:
                keep &= dist >= params.min_range
            if params.max_range is not None:
                keep &= dist <= params.max_range
        if keep.all():
            return points
        logger.debug("Confidence/range filter kept %d of %d points.", int(keep.sum()), len(points))
        return points[keep]


def pyramid_from_cloud(cloud: PointCloud, up_axis, voxel_sizes: Sequence[float],
                       service: Optional[PreprocessService] = None,
                       params: Optional[PreprocessParams] = None) -> Pyramid:
    """Re-voxelize an existing cloud (e.g. the model) at the given voxel sizes."""
    service = service or PreprocessService()
    base = params or PreprocessParams()
    level_params = PreprocessParams(
        voxel_sizes=tuple(voxel_sizes),
        normal_radius_factor=base.normal_radius_factor,
        normal_neighbors=base.normal_neighbors,
    )
    return service.build_pyramid(cloud.points, up_axis, level_params)
