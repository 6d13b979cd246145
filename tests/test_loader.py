"""
Tests for loading raw point sets from disk.
"""

from pathlib import Path
import sys

import laspy
import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.preprocessing.loader import load_raw_points


def _points(n: int = 25) -> np.ndarray:
    rng = np.random.default_rng(0)
    return np.round(rng.random((n, 3)) * 10.0, 3)


def test_load_npy(tmp_path):
    pts = _points()
    path = tmp_path / "scan.npy"
    np.save(path, pts)

    np.testing.assert_allclose(load_raw_points(path), pts)


def test_load_xyz_keeps_first_three_columns(tmp_path):
    pts = _points()
    path = tmp_path / "scan.xyz"
    np.savetxt(path, np.column_stack([pts, np.ones(len(pts))]))

    loaded = load_raw_points(path)
    assert loaded.shape == (len(pts), 3)
    np.testing.assert_allclose(loaded, pts)


def test_load_csv(tmp_path):
    pts = _points()
    path = tmp_path / "scan.csv"
    np.savetxt(path, pts, delimiter=",")

    np.testing.assert_allclose(load_raw_points(path), pts)


def test_load_las(tmp_path):
    pts = _points(100)
    hdr = laspy.LasHeader(point_format=6, version="1.4")
    hdr.offsets = np.min(pts, axis=0)
    hdr.scales = np.array([0.001, 0.001, 0.001])
    las = laspy.LasData(hdr)
    las.x = pts[:, 0]
    las.y = pts[:, 1]
    las.z = pts[:, 2]
    path = tmp_path / "scan.las"
    las.write(str(path))

    np.testing.assert_allclose(load_raw_points(path), pts, atol=1e-3)


def test_missing_and_unsupported_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_raw_points(tmp_path / "missing.npy")

    path = tmp_path / "scan.ply"
    path.write_text("ply\n")
    with pytest.raises(ValueError):
        load_raw_points(path)


def test_rejects_non_xyz_arrays(tmp_path):
    path = tmp_path / "flat.npy"
    np.save(path, np.zeros((10, 2)))
    with pytest.raises(ValueError):
        load_raw_points(path)
