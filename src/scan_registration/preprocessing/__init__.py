"""
Point Cloud Preprocessing Module

This module turns raw geometry into registration-ready point clouds:
- Immutable PointCloud and Pyramid types
- Mesh surface sampling (area-weighted or vertex stride)
- Voxel-grid downsampling and PCA normal estimation per pyramid level
- Loading raw points from LAS/LAZ, NumPy and text files
"""

from .point_cloud import PointCloud, Pyramid
from .sampler import PointCloudSampler, TriangleMesh
from .pyramid import (
    PreprocessParams,
    PreprocessService,
    estimate_normals,
    pyramid_from_cloud,
    voxel_downsample,
)
from .loader import load_raw_points

__all__ = [
    "PointCloud",
    "Pyramid",
    "PointCloudSampler",
    "TriangleMesh",
    "PreprocessParams",
    "PreprocessService",
    "estimate_normals",
    "pyramid_from_cloud",
    "voxel_downsample",
    "load_raw_points",
]
