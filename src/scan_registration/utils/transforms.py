"""
Rigid Transform Utilities

Helpers for building, applying and inspecting 4x4 homogeneous transforms.
All transforms in the engine map model coordinates into scan coordinates:

    p_scan = T[:3, :3] @ p_model + T[:3, 3]
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import numpy as np

from .logging import setup_logger

logger = setup_logger(__name__)


def normalize_axis(axis) -> np.ndarray:
    """Return ``axis`` as a unit float64 3-vector.

    Raises:
        ValueError: If the axis has zero length or is not finite.
    """
    a = np.asarray(axis, dtype=float).reshape(3)
    n = float(np.linalg.norm(a))
    if not np.isfinite(n) or n < 1e-12:
        raise ValueError(f"Axis must be a finite non-zero 3-vector, got {a}")
    return a / n


def rotation_about_axis(axis, angle_rad: float) -> np.ndarray:
    """Rotation matrix (3 x 3) for a right-handed rotation about ``axis`` (Rodrigues)."""
    x, y, z = normalize_axis(axis)
    c = float(np.cos(angle_rad))
    s = float(np.sin(angle_rad))
    C = 1.0 - c
    return np.array(
        [
            [c + x * x * C, x * y * C - z * s, x * z * C + y * s],
            [y * x * C + z * s, c + y * y * C, y * z * C - x * s],
            [z * x * C - y * s, z * y * C + x * s, c + z * z * C],
        ]
    )


def make_transform(R: Optional[np.ndarray] = None,
                   t: Optional[np.ndarray] = None,
                   scale: float = 1.0) -> np.ndarray:
    """Assemble a 4 x 4 homogeneous transform from rotation, translation and uniform scale."""
    T = np.eye(4)
    if R is not None:
        T[:3, :3] = scale * np.asarray(R, dtype=float)
    elif scale != 1.0:
        T[:3, :3] *= scale
    if t is not None:
        T[:3, 3] = np.asarray(t, dtype=float).reshape(3)
    return T


def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return np.asarray(points, dtype=float).reshape(0, 3)
    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def rotate_directions(vectors: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """Rotate direction vectors (e.g. normals) by the linear part of ``transform``, re-normalized."""
    if vectors.size == 0:
        return np.asarray(vectors, dtype=float).reshape(0, 3)
    out = vectors @ transform[:3, :3].T
    norms = np.linalg.norm(out, axis=1, keepdims=True)
    norms[norms < 1e-12] = 1.0
    return out / norms


def transform_scale(transform: np.ndarray) -> float:
    """Uniform scale factor embedded in the linear part of ``transform``."""
    return float(np.cbrt(abs(np.linalg.det(transform[:3, :3]))))


def rotation_angle_deg(transform: np.ndarray) -> float:
    """Magnitude of the rotation contained in ``transform``, in degrees."""
    s = transform_scale(transform)
    R = transform[:3, :3] / (s if s > 0 else 1.0)
    # Clamp argument to arccos to valid range to avoid NaNs
    cos_theta = max(min((float(np.trace(R)) - 1.0) * 0.5, 1.0), -1.0)
    return float(np.degrees(np.arccos(cos_theta)))


def yaw_about_axis_deg(transform: np.ndarray, axis) -> float:
    """
    Signed rotation angle about ``axis`` (degrees, in (-180, 180]).

    Computed by rotating a vector perpendicular to the axis and measuring its
    angle in the plane orthogonal to the axis.
    """
    u, v, _ = orthonormal_basis(axis)
    s = transform_scale(transform)
    R = transform[:3, :3] / (s if s > 0 else 1.0)
    ru = R @ u
    return float(np.degrees(np.arctan2(ru @ v, ru @ u)))


def orthonormal_basis(axis) -> tuple:
    """Right-handed orthonormal basis ``(u, v, axis)`` with ``axis`` normalized."""
    a = normalize_axis(axis)
    helper = np.array([1.0, 0.0, 0.0]) if abs(a[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(helper, a)
    u /= np.linalg.norm(u)
    v = np.cross(a, u)
    return u, v, a


def save_transform_matrix(transform: np.ndarray, output_file: Union[str, Path]) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: 4x4 transformation matrix
        output_file: Path to output file
    """
    Path(output_file).parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(output_file, transform, fmt='%.18e', header='4x4 model-to-scan transformation matrix')
    logger.info("Saved transformation matrix to %s", output_file)


def load_transform_matrix(input_file: Union[str, Path]) -> np.ndarray:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        4x4 transformation matrix
    """
    transform = np.loadtxt(input_file)
    if transform.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {transform.shape}")
    logger.info("Loaded transformation matrix from %s", input_file)
    return transform
