"""
Tests for the yaw-sweep coarse pose search.
"""

import numpy as np
from pathlib import Path
import sys

import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.alignment.coarse_registration import CoarsePoseEstimator, SeedPose, strided_subsample
from scan_registration.preprocessing.point_cloud import PointCloud
from scan_registration.utils.transforms import apply_transformation, yaw_about_axis_deg

from conftest import UP, known_transform, make_room


def _angle_diff(a: float, b: float) -> float:
    return abs((a - b + 180.0) % 360.0 - 180.0)


def test_candidates_cover_full_turn():
    est = CoarsePoseEstimator(yaw_step_deg=10.0)
    yaws = est.candidate_yaws()
    assert len(yaws) == 36
    assert yaws[0] == 0.0
    assert yaws[-1] == 350.0


def test_finer_step_is_a_superset_of_coarser_step():
    coarse = set(CoarsePoseEstimator(yaw_step_deg=10.0).candidate_yaws())
    fine = set(CoarsePoseEstimator(yaw_step_deg=5.0).candidate_yaws())
    assert coarse <= fine
    assert len(fine) == 72


def test_seeds_are_sorted_by_score_and_complete():
    model = PointCloud(make_room(density=60.0, seed=1))
    T = known_transform(yaw_deg=40.0, t=(0.5, -1.0, 0.0))
    scan = PointCloud(apply_transformation(model.points, T))

    seeds = CoarsePoseEstimator(yaw_step_deg=10.0).seeds(model, scan, UP)

    assert len(seeds) == 36
    assert all(isinstance(s, SeedPose) for s in seeds)
    scores = [s.score for s in seeds]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 < s <= 1.0 for s in scores)


def test_best_seed_is_near_true_yaw():
    model = PointCloud(make_room(density=60.0, seed=2))
    T = known_transform(yaw_deg=40.0, t=(0.5, -1.0, 0.0))
    scan = PointCloud(apply_transformation(model.points, T))

    best = CoarsePoseEstimator(yaw_step_deg=10.0).seeds(model, scan, UP)[0]

    assert _angle_diff(best.yaw_deg, 40.0) <= 10.0
    assert _angle_diff(yaw_about_axis_deg(best.pose, UP), best.yaw_deg) < 1e-6


def test_seed_pose_maps_model_centroid_onto_scan_centroid():
    model = PointCloud(make_room(density=30.0, seed=3))
    scan = PointCloud(model.points + np.array([3.0, 1.0, 0.0]))

    for seed in CoarsePoseEstimator(yaw_step_deg=45.0).seeds(model, scan, UP):
        moved = apply_transformation(model.centroid()[None, :], seed.pose)[0]
        np.testing.assert_allclose(moved, scan.centroid(), atol=1e-9)


def test_empty_input_yields_no_seeds():
    empty = PointCloud(np.empty((0, 3)))
    full = PointCloud(np.random.default_rng(0).random((20, 3)))
    est = CoarsePoseEstimator()
    assert est.seeds(empty, full, UP) == []
    assert est.seeds(full, empty, UP) == []


def test_strided_subsample_caps_sample_count():
    pts = np.arange(3000, dtype=float).reshape(1000, 3)
    sub = strided_subsample(pts, 300)
    assert len(sub) <= 300
    np.testing.assert_array_equal(sub[0], pts[0])
    assert strided_subsample(pts, 5000) is pts


def test_invalid_step_raises():
    with pytest.raises(ValueError):
        CoarsePoseEstimator(yaw_step_deg=0.0)
