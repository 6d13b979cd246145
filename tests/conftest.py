"""Shared synthetic scenes for registration tests."""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.utils.transforms import apply_transformation, make_transform, rotation_about_axis

UP = np.array([0.0, 0.0, 1.0])


def _rectangle(rng, origin, edge_u, edge_v, density):
    area = np.linalg.norm(np.cross(edge_u, edge_v))
    n = max(1, int(area * density))
    a = rng.random((n, 1))
    b = rng.random((n, 1))
    return np.asarray(origin) + a * np.asarray(edge_u) + b * np.asarray(edge_v)


def make_room(density: float = 200.0, seed: int = 0) -> np.ndarray:
    """
    Asymmetric room corner: floor, two walls and a box off-centre.

    Floor spans x in [0, 4], y in [0, 3]; walls stand on x = 0 and y = 0 with
    height 2.5; the box occupies x in [2.5, 3.3], y in [1.5, 2.2], z in [0, 0.8].
    Z is up.
    """
    rng = np.random.default_rng(seed)
    parts = [
        _rectangle(rng, (0, 0, 0), (4, 0, 0), (0, 3, 0), density),
        _rectangle(rng, (0, 0, 0), (0, 3, 0), (0, 0, 2.5), density),
        _rectangle(rng, (0, 0, 0), (4, 0, 0), (0, 0, 2.5), density),
        # box: top and four sides
        _rectangle(rng, (2.5, 1.5, 0.8), (0.8, 0, 0), (0, 0.7, 0), density),
        _rectangle(rng, (2.5, 1.5, 0), (0.8, 0, 0), (0, 0, 0.8), density),
        _rectangle(rng, (2.5, 2.2, 0), (0.8, 0, 0), (0, 0, 0.8), density),
        _rectangle(rng, (2.5, 1.5, 0), (0, 0.7, 0), (0, 0, 0.8), density),
        _rectangle(rng, (3.3, 1.5, 0), (0, 0.7, 0), (0, 0, 0.8), density),
    ]
    return np.vstack(parts)


def known_transform(yaw_deg: float = 15.0, t=(1.0, 0.0, 0.5), tilt_deg: float = 0.0) -> np.ndarray:
    R = rotation_about_axis(UP, np.radians(yaw_deg))
    if tilt_deg:
        R = rotation_about_axis((1.0, 0.0, 0.0), np.radians(tilt_deg)) @ R
    return make_transform(R, np.asarray(t, dtype=float))


def make_scan(model_points: np.ndarray, transform: np.ndarray, crop_y: float = 2.4) -> np.ndarray:
    """Scan = model mapped by ``transform``, with the part beyond y > crop_y (model frame) missing."""
    kept = model_points[model_points[:, 1] <= crop_y]
    return apply_transformation(kept, transform)


@pytest.fixture(scope="session")
def room_points() -> np.ndarray:
    return make_room()
