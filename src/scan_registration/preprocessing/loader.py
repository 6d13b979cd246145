"""
Raw Point Loader

Thin pass-through that reads a raw vertex set from disk. Supported formats:
LAS/LAZ (via laspy), NumPy ``.npy`` and delimited text (``.xyz``, ``.txt``,
``.csv``) with X, Y, Z in the first three columns.
"""

from pathlib import Path
from typing import Union

import laspy
import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

SUPPORTED_SUFFIXES = (".las", ".laz", ".npy", ".xyz", ".txt", ".csv")


def load_raw_points(file_path: Union[str, Path]) -> np.ndarray:
    """
    Load an (N, 3) float64 array of points from a file.

    Args:
        file_path: Path to a LAS/LAZ, .npy or delimited text file

    Returns:
        Nx3 array of point coordinates

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file format is unsupported or the data is not Nx3
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported file format: {file_path.suffix}")

    logger.info(f"Loading raw points from {file_path}")

    if suffix in (".las", ".laz"):
        las = laspy.read(file_path)
        points = np.column_stack([
            np.array(las.x, dtype=np.float64),
            np.array(las.y, dtype=np.float64),
            np.array(las.z, dtype=np.float64),
        ])
    elif suffix == ".npy":
        points = np.asarray(np.load(file_path), dtype=np.float64)
    else:
        delimiter = "," if suffix == ".csv" else None
        points = np.loadtxt(file_path, delimiter=delimiter, ndmin=2, dtype=np.float64)

    if points.size == 0:
        points = points.reshape(0, 3)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"Expected an Nx3 point array in {file_path}, got shape {points.shape}")

    points = points[:, :3]
    logger.info(f"Loaded {len(points)} points from {file_path.name}")
    return points
