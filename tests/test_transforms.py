"""
Tests for rigid transform helpers and transform file I/O.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.utils.transforms import (
    apply_transformation,
    load_transform_matrix,
    make_transform,
    normalize_axis,
    orthonormal_basis,
    rotation_about_axis,
    rotation_angle_deg,
    save_transform_matrix,
    transform_scale,
    yaw_about_axis_deg,
)


def test_rotation_about_axis_is_proper_rotation():
    R = rotation_about_axis((1.0, 2.0, 3.0), 0.7)
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_rotation_about_z_matches_right_hand_rule():
    R = rotation_about_axis((0.0, 0.0, 1.0), np.pi / 2)
    np.testing.assert_allclose(R @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12)


@pytest.mark.parametrize("axis", [(0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (1.0, 1.0, 0.0)])
def test_yaw_about_axis_round_trips(axis):
    T = make_transform(rotation_about_axis(axis, np.radians(-37.0)), (1.0, 2.0, 3.0))
    assert yaw_about_axis_deg(T, axis) == pytest.approx(-37.0)
    assert rotation_angle_deg(T) == pytest.approx(37.0)


def test_make_transform_with_scale():
    T = make_transform(np.eye(3), (0.0, 0.0, 1.0), scale=2.0)
    assert transform_scale(T) == pytest.approx(2.0)
    np.testing.assert_allclose(apply_transformation(np.array([[1.0, 0.0, 0.0]]), T), [[2.0, 0.0, 1.0]])


def test_orthonormal_basis_is_right_handed():
    u, v, a = orthonormal_basis((0.0, 3.0, 0.0))
    np.testing.assert_allclose(a, [0.0, 1.0, 0.0])
    np.testing.assert_allclose(np.cross(u, v), a, atol=1e-12)
    assert u @ v == pytest.approx(0.0)


def test_normalize_axis_rejects_zero():
    with pytest.raises(ValueError):
        normalize_axis((0.0, 0.0, 0.0))


def test_save_and_load_transform(tmp_path):
    T = make_transform(rotation_about_axis((0.0, 0.0, 1.0), 0.3), (1.5, -2.0, 0.25))
    out = tmp_path / "nested" / "transform.txt"

    save_transform_matrix(T, out)
    loaded = load_transform_matrix(out)

    np.testing.assert_allclose(loaded, T, atol=1e-15)


def test_load_transform_rejects_wrong_shape(tmp_path):
    bad = tmp_path / "bad.txt"
    np.savetxt(bad, np.eye(3))
    with pytest.raises(ValueError):
        load_transform_matrix(bad)
