"""
Tests for scan preprocessing: voxel downsampling, normals and pyramids.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.errors import InsufficientGeometryError, InvalidInputError
from scan_registration.preprocessing.point_cloud import PointCloud
from scan_registration.preprocessing.pyramid import (
    PreprocessParams,
    PreprocessService,
    estimate_normals,
    pyramid_from_cloud,
    voxel_downsample,
)

from conftest import UP, make_room


def test_voxel_downsample_replaces_voxel_by_centroid():
    pts = np.array(
        [
            [0.1, 0.1, 0.1],
            [0.3, 0.3, 0.3],
            [1.5, 0.5, 0.5],
        ]
    )
    down = voxel_downsample(pts, 1.0)

    assert down.shape == (2, 3)
    np.testing.assert_allclose(down[0], [0.2, 0.2, 0.2])
    np.testing.assert_allclose(down[1], [1.5, 0.5, 0.5])


def test_voxel_downsample_is_order_independent():
    pts = np.random.default_rng(0).random((500, 3))
    a = voxel_downsample(pts, 0.2)
    b = voxel_downsample(pts[::-1], 0.2)
    np.testing.assert_allclose(a, b, atol=1e-12)


def test_normals_of_a_plane_point_up():
    rng = np.random.default_rng(1)
    pts = np.column_stack([rng.random(400), rng.random(400), np.zeros(400)])
    normals = estimate_normals(pts, UP, radius=0.2)

    np.testing.assert_allclose(normals[:, 2], 1.0, atol=1e-6)


def test_isolated_points_get_the_up_normal():
    pts = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0], [10.0, 10.0, 0.0]])
    normals = estimate_normals(pts, (0.0, 1.0, 0.0), radius=0.5)
    np.testing.assert_allclose(normals, np.tile([0.0, 1.0, 0.0], (4, 1)))


def test_pyramid_voxel_sizes_decrease_and_counts_grow(room_points):
    params = PreprocessParams.geometric(0.05, levels=3)
    pyramid = PreprocessService().build_pyramid(room_points, UP, params)

    voxels = pyramid.voxel_sizes
    counts = pyramid.point_counts
    assert len(pyramid) == 3
    assert all(a > b for a, b in zip(voxels, voxels[1:]))
    assert all(a <= b for a, b in zip(counts, counts[1:]))
    for level in pyramid:
        assert level.has_normals
        assert np.all(level.normals @ UP >= 0.0)


def test_geometric_params():
    params = PreprocessParams.geometric(0.01, levels=3, factor=2.0)
    np.testing.assert_allclose(params.voxel_sizes, (0.04, 0.02, 0.01))
    with pytest.raises(ValueError):
        PreprocessParams(voxel_sizes=(0.01, 0.02))
    with pytest.raises(ValueError):
        PreprocessParams(voxel_sizes=(0.02, 0.02, 0.01))
    assert PreprocessParams(voxel_sizes=(0.02, 0.01, 0.01)).voxel_sizes == (0.02, 0.01, 0.01)


def test_range_filter_drops_far_points():
    rng = np.random.default_rng(2)
    near = rng.random((300, 3))
    far = near + 100.0
    params = PreprocessParams(voxel_sizes=(0.2,), max_range=10.0)

    pyramid = PreprocessService().build_pyramid(np.vstack([near, far]), UP, params)
    assert pyramid.finest.points.max() < 10.0

    with pytest.raises(InsufficientGeometryError):
        PreprocessService().build_pyramid(far, UP, params)


def test_confidence_filter_drops_low_confidence_points():
    rng = np.random.default_rng(5)
    good = rng.random((300, 3))
    bad = good + np.array([50.0, 0.0, 0.0])
    points = np.vstack([good, bad])
    confidences = np.r_[np.full(300, 200, dtype=np.uint8), np.full(300, 64, dtype=np.uint8)]
    params = PreprocessParams(voxel_sizes=(0.2,), min_confidence=128)

    pyramid = PreprocessService().build_pyramid(points, UP, params, confidences=confidences)
    assert pyramid.finest.points[:, 0].max() < 1.0

    # Without confidences nothing is dropped
    unfiltered = PreprocessService().build_pyramid(points, UP, params)
    assert unfiltered.finest.points[:, 0].max() > 50.0

    with pytest.raises(InsufficientGeometryError):
        PreprocessService().build_pyramid(bad, UP, params, confidences=confidences[300:])


def test_confidences_must_match_point_count():
    points = np.random.default_rng(6).random((100, 3))
    with pytest.raises(InvalidInputError):
        PreprocessService().build_pyramid(points, UP, confidences=np.full(99, 255))


def test_invalid_raw_input_raises():
    service = PreprocessService()
    with pytest.raises(InvalidInputError):
        service.build_pyramid(np.empty((0, 3)), UP)
    with pytest.raises(InvalidInputError):
        service.build_pyramid(np.array([[0.0, np.inf, 0.0]]), UP)
    with pytest.raises(InvalidInputError):
        service.build_pyramid(np.zeros((10, 3)), (0.0, 0.0, 0.0))


def test_pyramid_from_cloud_matches_requested_voxels():
    cloud = PointCloud(make_room(density=50.0, seed=3))
    pyramid = pyramid_from_cloud(cloud, UP, (0.4, 0.2))
    assert pyramid.voxel_sizes == [0.4, 0.2]
