"""
Spatial Alignment Module

This module registers a reference model against a preprocessed scan:
- Yaw-sweep coarse pose search that seeds the refinement
- Coarse-to-fine robust ICP (trimmed, Huber-weighted, optional yaw-only mode)
- A coordinator state machine that drives one alignment attempt
- A single-resolution fast path with quality presets for interactive use
"""

from .coarse_registration import CoarsePoseEstimator, SeedPose
from .fine_registration import (
    ICPParams,
    ICPRefiner,
    RegistrationMetrics,
    RegistrationResult,
    params_for_pyramid,
)
from .coordinator import AlignmentCoordinator, AlignmentPhase, AlignmentState
from .model_registration import (
    ModelRegistrationService,
    QualityPreset,
    resolve_preset,
)

__all__ = [
    "CoarsePoseEstimator",
    "SeedPose",
    "ICPParams",
    "ICPRefiner",
    "RegistrationMetrics",
    "RegistrationResult",
    "params_for_pyramid",
    "AlignmentCoordinator",
    "AlignmentPhase",
    "AlignmentState",
    "ModelRegistrationService",
    "QualityPreset",
    "resolve_preset",
]
