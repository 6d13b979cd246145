"""
Point cloud data types shared by every registration stage.

A PointCloud is immutable once constructed: its arrays are copied to float64
and flagged read-only, so clouds and pyramids can be shared between seed
evaluations without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

from ..errors import InvalidInputError
from ..utils.transforms import apply_transformation, rotate_directions


def _frozen_array(values, name: str) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True)
    if arr.size == 0:
        arr = arr.reshape(0, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise InvalidInputError(f"{name} must be an (N, 3) array, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidInputError(f"{name} contains non-finite values")
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class PointCloud:
    """
    Ordered collection of 3D points with optional unit normals.

    Attributes:
        points: (N, 3) float64 array, read-only.
        normals: Optional (N, 3) float64 array of unit vectors, read-only.
        voxel_size: Downsample resolution that produced this cloud, if any.
    """

    points: np.ndarray
    normals: Optional[np.ndarray] = None
    voxel_size: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", _frozen_array(self.points, "points"))
        if self.normals is not None:
            normals = _frozen_array(self.normals, "normals")
            if len(normals) != len(self.points):
                raise InvalidInputError(
                    f"normals length {len(normals)} does not match points length {len(self.points)}"
                )
            object.__setattr__(self, "normals", normals)
        if self.voxel_size is not None:
            voxel = float(self.voxel_size)
            if not np.isfinite(voxel) or voxel <= 0:
                raise InvalidInputError(f"voxel_size must be positive, got {self.voxel_size}")
            object.__setattr__(self, "voxel_size", voxel)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    @property
    def is_empty(self) -> bool:
        return len(self.points) == 0

    def centroid(self) -> np.ndarray:
        if self.is_empty:
            raise InvalidInputError("Cannot compute the centroid of an empty point cloud")
        return self.points.mean(axis=0)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounding box as ``(min_corner, max_corner)``."""
        if self.is_empty:
            raise InvalidInputError("Cannot compute the bounds of an empty point cloud")
        return self.points.min(axis=0), self.points.max(axis=0)

    def transformed(self, transform: np.ndarray) -> "PointCloud":
        """New cloud with points (and normals) mapped by a 4 x 4 transform."""
        normals = None if self.normals is None else rotate_directions(self.normals, transform)
        return PointCloud(apply_transformation(self.points, transform), normals, self.voxel_size)

    @classmethod
    def from_points(cls, points, voxel_size: Optional[float] = None) -> "PointCloud":
        return cls(np.asarray(points, dtype=float), None, voxel_size)


@dataclass(frozen=True, eq=False)
class Pyramid:
    """
    Coarse-to-fine sequence of PointClouds built from one raw scan.

    Index 0 holds the coarsest (largest voxel) level. Voxel sizes must be
    strictly decreasing from index 0 to the last index, except that trailing
    levels may repeat the finest size.
    """

    levels: Tuple[PointCloud, ...]

    def __post_init__(self) -> None:
        levels = tuple(self.levels)
        if not levels:
            raise InvalidInputError("A pyramid needs at least one level")
        voxels = [lvl.voxel_size for lvl in levels]
        if any(v is None for v in voxels):
            raise InvalidInputError("Every pyramid level must carry a voxel size")
        finest = min(voxels)
        if any(b > a or (b == a and b != finest) for a, b in zip(voxels, voxels[1:])):
            raise InvalidInputError(f"Pyramid voxel sizes must be strictly decreasing, got {voxels}")
        object.__setattr__(self, "levels", levels)

    def __len__(self) -> int:
        return len(self.levels)

    def __getitem__(self, index: int) -> PointCloud:
        return self.levels[index]

    def __iter__(self) -> Iterator[PointCloud]:
        return iter(self.levels)

    @property
    def coarsest(self) -> PointCloud:
        return self.levels[0]

    @property
    def finest(self) -> PointCloud:
        return self.levels[-1]

    @property
    def voxel_sizes(self) -> Sequence[float]:
        return [lvl.voxel_size for lvl in self.levels]

    @property
    def point_counts(self) -> Sequence[int]:
        return [len(lvl) for lvl in self.levels]
