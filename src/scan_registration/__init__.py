"""
Scan Registration Package

A Python package for registering freshly captured 3D surface scans against a
previously authored reference model. It computes the rigid (optionally
similarity) transform that maps model coordinates into scan coordinates.
Preprocessing builds a voxel pyramid with PCA normals, a yaw sweep seeds the
search, and a robust coarse-to-fine ICP (trimmed, Huber-weighted, optionally
restricted to the gravity axis) refines the pose. The ICP is implemented from
scratch on top of NumPy and scikit-learn neighbour search.
"""

__version__ = "0.1.0"

from .errors import *
from .preprocessing import *
from .alignment import *
from .utils import *

__all__ = [
    "errors",
    "preprocessing",
    "alignment",
    "utils",
]
