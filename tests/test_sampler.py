"""
Tests for mesh surface sampling.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.errors import InsufficientGeometryError, InvalidInputError
from scan_registration.preprocessing.sampler import PointCloudSampler, TriangleMesh
from scan_registration.utils.transforms import make_transform


def _unit_square(world_transform=None) -> TriangleMesh:
    vertices = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
    faces = np.array([[0, 1, 2], [0, 2, 3]])
    return TriangleMesh(vertices, faces, world_transform)


def test_area_sampling_stays_on_surface():
    cloud = PointCloudSampler(seed=1).extract(_unit_square(), 2000)

    assert len(cloud) == 2000
    assert cloud.has_normals
    np.testing.assert_allclose(cloud.points[:, 2], 0.0, atol=1e-12)
    assert cloud.points[:, :2].min() >= 0.0
    assert cloud.points[:, :2].max() <= 1.0
    np.testing.assert_allclose(np.abs(cloud.normals[:, 2]), 1.0)


def test_area_sampling_applies_world_transform():
    mesh = _unit_square(make_transform(t=(5.0, 0.0, 2.0)))
    cloud = PointCloudSampler(seed=2).extract(mesh, 500)

    assert cloud.points[:, 0].min() >= 5.0
    assert cloud.points[:, 0].max() <= 6.0
    np.testing.assert_allclose(cloud.points[:, 2], 2.0)


def test_area_sampling_is_area_weighted():
    small = TriangleMesh(np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]), np.array([[0, 1, 2]]))
    # Three times the area, far away along x
    large = TriangleMesh(
        np.array([[10.0, 0.0, 0.0], [13.0, 0.0, 0.0], [10.0, 1.0, 0.0]]), np.array([[0, 1, 2]])
    )
    cloud = PointCloudSampler(seed=3).extract([small, large], 8000)

    frac_small = np.mean(cloud.points[:, 0] < 5.0)
    assert frac_small == pytest.approx(0.25, abs=0.03)


def test_sampling_is_deterministic_for_a_seed():
    a = PointCloudSampler(seed=7).extract(_unit_square(), 100)
    b = PointCloudSampler(seed=7).extract(_unit_square(), 100)
    np.testing.assert_array_equal(a.points, b.points)


def test_vertex_sampling_strides_to_sample_count():
    vertices = np.random.default_rng(0).random((1000, 3))
    cloud = PointCloudSampler(method="vertices").extract(TriangleMesh(vertices), 300)

    assert 0 < len(cloud) <= 300
    np.testing.assert_array_equal(cloud.points[0], vertices[0])
    assert not cloud.has_normals


def test_faceless_mesh_falls_back_to_vertices():
    vertices = np.random.default_rng(0).random((50, 3))
    cloud = PointCloudSampler().extract(TriangleMesh(vertices), 1000)
    assert len(cloud) == 50


def test_zero_geometry_raises():
    with pytest.raises(InsufficientGeometryError):
        PointCloudSampler().extract(TriangleMesh(np.empty((0, 3))), 10)

    degenerate = TriangleMesh(
        np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]]), np.array([[0, 1, 2]])
    )
    with pytest.raises(InsufficientGeometryError):
        PointCloudSampler().extract(degenerate, 10)


def test_invalid_inputs_raise():
    with pytest.raises(InvalidInputError):
        PointCloudSampler().extract(_unit_square(), 0)
    with pytest.raises(InvalidInputError):
        TriangleMesh(np.zeros((3, 3)), np.array([[0, 1, 5]]))
    with pytest.raises(ValueError):
        PointCloudSampler(method="poisson")
