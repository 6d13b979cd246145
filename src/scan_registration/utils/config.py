"""
Configuration management for scan-registration.

Provides typed pydantic models and a YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class PreprocessingConfig(BaseModel):
    voxel_sizes: Optional[List[float]] = Field(
        default=None,
        description="Explicit coarse-to-fine voxel sizes; overrides finest_voxel_size/levels/level_factor",
    )
    finest_voxel_size: float = Field(default=0.01, gt=0, description="Voxel size of the finest pyramid level")
    levels: int = Field(default=3, ge=1, description="Number of pyramid levels")
    level_factor: float = Field(default=2.0, gt=1.0, description="Voxel size ratio between adjacent levels")
    min_range: Optional[float] = Field(default=None, ge=0, description="Drop raw points closer than this to the sensor origin")
    max_range: Optional[float] = Field(default=None, gt=0, description="Drop raw points farther than this from the sensor origin")
    min_confidence: int = Field(default=128, ge=0, description="Drop raw points whose capture confidence is below this (when confidences are given)")
    normal_radius_factor: float = Field(default=3.0, gt=0, description="Normal neighbourhood radius as a multiple of the voxel size")
    normal_neighbors: int = Field(default=16, ge=3, description="Maximum neighbours used for PCA normals")
    model_sample_count: int = Field(default=20000, ge=1, description="Surface samples drawn from a model mesh")
    min_points: int = Field(default=100, ge=1, description="Minimum usable points in the model cloud and the raw scan")

    @field_validator("voxel_sizes")
    @classmethod
    def _strictly_decreasing(cls, v: Optional[List[float]]) -> Optional[List[float]]:
        if v is None:
            return v
        if not v or any(x <= 0 for x in v):
            raise ValueError("voxel_sizes must be a non-empty list of positive values")
        finest = min(v)
        if any(b > a or (b == a and b != finest) for a, b in zip(v, v[1:])):
            raise ValueError("voxel_sizes must be strictly decreasing (coarse to fine)")
        return v

    def resolved_voxel_sizes(self) -> List[float]:
        if self.voxel_sizes is not None:
            return list(self.voxel_sizes)
        return [
            self.finest_voxel_size * self.level_factor ** (self.levels - 1 - i)
            for i in range(self.levels)
        ]


class CoarseAlignmentConfig(BaseModel):
    yaw_step_deg: float = Field(default=10.0, gt=0, le=360, description="Angular step of the yaw sweep (degrees)")
    max_score_samples: int = Field(default=500, ge=1, description="Model points used to score each yaw candidate")


class ICPLevelConfig(BaseModel):
    max_iterations: int = Field(default=20, ge=1)
    max_correspondence_distance: float = Field(gt=0)
    min_normal_alignment: float = Field(default=0.75, ge=-1.0, le=1.0)
    trim_fraction: float = Field(default=0.7, gt=0.0, le=1.0)
    robust_loss_delta: float = Field(gt=0)


class ICPConfig(BaseModel):
    mode: Literal["axis", "full"] = Field(
        default="axis",
        description="'axis' restricts rotation to the up axis (yaw-only); 'full' solves all rotational DoF",
    )
    estimate_scale: bool = Field(default=False, description="Opt-in uniform scale estimation (similarity transform)")
    convergence_threshold: float = Field(default=1e-6, ge=0, description="Stop when RMSE improves by less than this")
    min_correspondences: int = Field(default=1, ge=1)
    correspondence_distance_factor: float = Field(default=4.0, gt=0, description="max_correspondence_distance = factor * voxel")
    robust_loss_factor: float = Field(default=2.0, gt=0, description="Huber delta = factor * voxel")
    trim_fraction: float = Field(default=0.7, gt=0.0, le=1.0)
    levels: Optional[List[ICPLevelConfig]] = Field(
        default=None,
        description="Explicit per-level parameters (coarse to fine); derived from voxel sizes when omitted",
    )
    n_workers: int = Field(default=1, ge=1, description="Worker processes for parallel seed evaluation")


class PresetParameters(BaseModel):
    """Parameter bundle of one interactive quality preset."""

    model_config = ConfigDict(frozen=True)

    model_points_sample_count: int = Field(ge=1)
    scan_points_sample_count: int = Field(ge=1)
    max_iterations: int = Field(ge=1)
    convergence_threshold: float = Field(gt=0)


class InteractiveConfig(BaseModel):
    preset: Literal["instant", "ultra_fast", "fast", "balanced", "accurate", "custom"] = Field(default="balanced")
    custom: Optional[PresetParameters] = Field(default=None, description="Used when preset == 'custom'")
    yaw_steps: int = Field(default=36, ge=1)
    score_samples: int = Field(default=500, ge=1)
    min_points: int = Field(default=100, ge=1)
    inlier_threshold: float = Field(default=0.1, gt=0)

    @model_validator(mode="after")
    def _custom_requires_parameters(self) -> "InteractiveConfig":
        if self.preset == "custom" and self.custom is None:
            raise ValueError("interactive.custom must be set when interactive.preset is 'custom'")
        return self


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class PerformanceConfig(BaseModel):
    numpy_threads: Literal["auto"] | int = Field(default="auto")


class AppConfig(BaseModel):
    up_axis: Tuple[float, float, float] = Field(default=(0.0, 1.0, 0.0), description="Gravity-up direction of the scan frame")
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    coarse: CoarseAlignmentConfig = Field(default_factory=CoarseAlignmentConfig)
    icp: ICPConfig = Field(default_factory=ICPConfig)
    interactive: InteractiveConfig = Field(default_factory=InteractiveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/scan_registration/utils/config.py
    parents sequence:
      0 -> .../src/scan_registration/utils
      1 -> .../src/scan_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
