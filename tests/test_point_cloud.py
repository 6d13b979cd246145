"""
Tests for the immutable PointCloud and Pyramid types.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.errors import InvalidInputError
from scan_registration.preprocessing.point_cloud import PointCloud, Pyramid
from scan_registration.utils.transforms import make_transform, rotation_about_axis


def test_point_cloud_copies_and_freezes_arrays():
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]])
    cloud = PointCloud(pts)

    pts[0, 0] = 99.0
    assert cloud.points[0, 0] == 0.0
    assert cloud.points.dtype == np.float64
    with pytest.raises(ValueError):
        cloud.points[0, 0] = 1.0


def test_point_cloud_rejects_mismatched_normals():
    with pytest.raises(InvalidInputError):
        PointCloud(np.zeros((3, 3)), normals=np.zeros((2, 3)))


def test_point_cloud_rejects_non_finite_and_bad_shape():
    with pytest.raises(InvalidInputError):
        PointCloud(np.array([[0.0, np.nan, 1.0]]))
    with pytest.raises(InvalidInputError):
        PointCloud(np.zeros((4, 2)))
    with pytest.raises(InvalidInputError):
        PointCloud(np.zeros((4, 3)), voxel_size=0.0)


def test_empty_cloud_has_no_centroid():
    cloud = PointCloud(np.empty((0, 3)))
    assert cloud.is_empty
    assert len(cloud) == 0
    with pytest.raises(InvalidInputError):
        cloud.centroid()


def test_centroid_and_bounds():
    cloud = PointCloud(np.array([[0.0, 0.0, 0.0], [2.0, 4.0, -2.0]]))
    np.testing.assert_allclose(cloud.centroid(), [1.0, 2.0, -1.0])
    lo, hi = cloud.bounds()
    np.testing.assert_allclose(lo, [0.0, 0.0, -2.0])
    np.testing.assert_allclose(hi, [2.0, 4.0, 0.0])


def test_transformed_moves_points_and_rotates_normals():
    T = make_transform(rotation_about_axis((0, 0, 1), np.pi / 2), (1.0, 0.0, 0.0))
    cloud = PointCloud(np.array([[1.0, 0.0, 0.0]]), normals=np.array([[1.0, 0.0, 0.0]]), voxel_size=0.1)

    moved = cloud.transformed(T)

    np.testing.assert_allclose(moved.points, [[1.0, 1.0, 0.0]], atol=1e-12)
    np.testing.assert_allclose(moved.normals, [[0.0, 1.0, 0.0]], atol=1e-12)
    assert moved.voxel_size == 0.1
    # Original is untouched
    np.testing.assert_allclose(cloud.points, [[1.0, 0.0, 0.0]])


def test_pyramid_requires_decreasing_voxels():
    a = PointCloud(np.zeros((1, 3)), voxel_size=0.2)
    b = PointCloud(np.zeros((2, 3)), voxel_size=0.1)

    pyramid = Pyramid((a, b))
    assert len(pyramid) == 2
    assert pyramid.coarsest is a
    assert pyramid.finest is b
    assert pyramid.voxel_sizes == [0.2, 0.1]
    assert pyramid.point_counts == [1, 2]

    with pytest.raises(InvalidInputError):
        Pyramid((b, a))
    with pytest.raises(InvalidInputError):
        Pyramid((a, PointCloud(np.zeros((1, 3)), voxel_size=0.2), b))
    with pytest.raises(InvalidInputError):
        Pyramid(())
    with pytest.raises(InvalidInputError):
        Pyramid((PointCloud(np.zeros((1, 3))),))


def test_pyramid_may_repeat_the_finest_voxel_size():
    a = PointCloud(np.zeros((1, 3)), voxel_size=0.2)
    b = PointCloud(np.zeros((2, 3)), voxel_size=0.1)
    c = PointCloud(np.zeros((2, 3)), voxel_size=0.1)

    pyramid = Pyramid((a, b, c))
    assert pyramid.voxel_sizes == [0.2, 0.1, 0.1]
    assert pyramid.finest is c
