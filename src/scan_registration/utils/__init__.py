"""
Utility Functions Module

This module provides common utilities used across the scan registration project.
- Logging setup
- Typed configuration loading
- Rigid transform helpers and transform file I/O
"""

from .logging import setup_logger
from .config import AppConfig, load_config
from .transforms import (
    apply_transformation,
    load_transform_matrix,
    make_transform,
    rotation_about_axis,
    rotation_angle_deg,
    save_transform_matrix,
    yaw_about_axis_deg,
)

__all__ = [
    "setup_logger",
    "AppConfig",
    "load_config",
    "apply_transformation",
    "load_transform_matrix",
    "make_transform",
    "rotation_about_axis",
    "rotation_angle_deg",
    "save_transform_matrix",
    "yaw_about_axis_deg",
]
