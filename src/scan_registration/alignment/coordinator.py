"""
Alignment Coordinator

Owns one alignment attempt and drives it through its phases:

    idle -> loadingModel -> idle
    idle -> scanning -> preprocessing -> idle
    idle -> coarseAlignment -> icpRefinement* -> completed | failed

Every phase change is published as an immutable AlignmentState to the
registered listeners. ``completed`` and ``failed`` are terminal; call
``start_new_attempt()`` to retry with the same model.

The coordinator is synchronous. Callers run it on their own worker thread and
may cancel a running alignment through a ``threading.Event``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import threading
import time

import numpy as np

from ..errors import (
    AlignmentStateError,
    CoordinatorBusyError,
    InsufficientGeometryError,
    InvalidInputError,
    NoSeedFoundError,
    RegistrationCancelledError,
    RegistrationError,
)
from ..preprocessing.point_cloud import PointCloud, Pyramid
from ..preprocessing.pyramid import PreprocessParams, PreprocessService, pyramid_from_cloud
from ..preprocessing.sampler import PointCloudSampler, TriangleMesh
from ..utils.config import AppConfig
from ..utils.logging import setup_logger
from ..utils.transforms import normalize_axis
from .coarse_registration import CoarsePoseEstimator
from .fine_registration import ICPParams, ICPRefiner, RegistrationResult, params_for_pyramid

logger = setup_logger(__name__)


class AlignmentPhase(str, Enum):
    IDLE = "idle"
    LOADING_MODEL = "loadingModel"
    SCANNING = "scanning"
    PREPROCESSING = "preprocessing"
    COARSE_ALIGNMENT = "coarseAlignment"
    ICP_REFINEMENT = "icpRefinement"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PHASES = (AlignmentPhase.COMPLETED, AlignmentPhase.FAILED)


@dataclass(frozen=True)
class AlignmentState:
    """
    Snapshot of the coordinator's progress.

    Attributes:
        phase: Current pipeline phase.
        level: Pyramid level being refined (icpRefinement only).
        iterations: ICP iterations so far for the current seed.
        reason: Failure cause (failed only).
        message: Human-readable status line.
    """

    phase: AlignmentPhase
    level: Optional[int] = None
    iterations: int = 0
    reason: Optional[RegistrationError] = None
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


StateListener = Callable[[AlignmentState], None]


class AlignmentCoordinator:
    """
    Pipeline state machine around preprocessing, coarse search and ICP.

    All collaborators are injectable; defaults are built from ``config``.
    """

    def __init__(
        self,
        preprocess_service: Optional[PreprocessService] = None,
        coarse_estimator: Optional[CoarsePoseEstimator] = None,
        refiner: Optional[ICPRefiner] = None,
        sampler: Optional[PointCloudSampler] = None,
        config: Optional[AppConfig] = None,
        *,
        preprocess_params: Optional[PreprocessParams] = None,
        params_per_level: Optional[Sequence[ICPParams]] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            preprocess_service: Pyramid builder for scan and model.
            coarse_estimator: Yaw-sweep seed generator.
            refiner: ICP refiner; when None one is built per attempt from
                ``config.icp`` using the scan's up axis.
            sampler: Mesh sampler used by ``load_model``.
            config: Application configuration (defaults to AppConfig()).
            preprocess_params: Overrides the pyramid parameters from config.
            params_per_level: Overrides the per-level ICP parameters.
        """
        self.config = config or AppConfig()
        self._preprocess = preprocess_service or PreprocessService()
        self._preprocess_params = preprocess_params or PreprocessParams.from_config(self.config.preprocessing)
        self._coarse = coarse_estimator or CoarsePoseEstimator.from_config(self.config.coarse)
        self._refiner = refiner
        self._sampler = sampler or PointCloudSampler()
        self._params_per_level = list(params_per_level) if params_per_level is not None else None

        self._listeners: List[StateListener] = []
        self._busy = threading.Lock()
        self._state = AlignmentState(AlignmentPhase.IDLE, message="Ready")

        self._model: Optional[PointCloud] = None
        self._model_pyramids: Dict[Tuple, Pyramid] = {}
        self._scan_pyramid: Optional[Pyramid] = None
        self._up: Optional[np.ndarray] = None
        self._result: Optional[RegistrationResult] = None

    @classmethod
    def from_config(cls, config: AppConfig) -> "AlignmentCoordinator":
        return cls(config=config)

    # ------------------------ Properties ------------------------
    @property
    def state(self) -> AlignmentState:
        return self._state

    @property
    def result(self) -> Optional[RegistrationResult]:
        return self._result

    @property
    def model_cloud(self) -> Optional[PointCloud]:
        return self._model

    @property
    def scan_pyramid(self) -> Optional[Pyramid]:
        return self._scan_pyramid

    def add_listener(self, callback: StateListener) -> None:
        """Register ``callback`` to receive every new AlignmentState."""
        self._listeners.append(callback)

    # ------------------------ Requests ------------------------
    def load_model(self, source, sample_count: Optional[int] = None) -> Optional[PointCloud]:
        """
        Set the reference model.

        Args:
            source: A TriangleMesh, a sequence of mesh parts, a PointCloud or
                an (N, 3) array in the model's coordinate space.
            sample_count: Surface samples for mesh sources (defaults to
                ``preprocessing.model_sample_count``).

        Returns:
            The model cloud, or None if loading failed (see ``state.reason``).
        """

        def work() -> PointCloud:
            cloud = self._model_cloud_from(source, sample_count)
            if len(cloud) < self.config.preprocessing.min_points:
                raise InsufficientGeometryError(
                    f"Model yields {len(cloud)} points, at least "
                    f"{self.config.preprocessing.min_points} required"
                )
            self._model = cloud
            self._model_pyramids.clear()
            self._set_state(AlignmentState(AlignmentPhase.IDLE, message=f"Model loaded ({len(cloud)} points)"))
            return cloud

        return self._run(AlignmentPhase.LOADING_MODEL, (AlignmentPhase.IDLE,), work, "Loading model")

    def begin_scanning(self) -> None:
        """Signal that the capture collaborator has started collecting points."""
        with self._request():
            self._check_transition(AlignmentPhase.SCANNING, (AlignmentPhase.IDLE,))
            self._set_state(AlignmentState(AlignmentPhase.SCANNING, message="Scanning"))

    def preprocess_scan(self, raw_points, up, confidences=None) -> Optional[Pyramid]:
        """
        Build the scan pyramid from raw captured points.

        Args:
            raw_points: (N, 3) raw samples in the scan frame.
            up: Gravity-up axis of the scan frame.
            confidences: Optional per-point capture confidence, filtered
                against ``preprocessing.min_confidence``.

        Returns:
            The scan pyramid, or None if preprocessing failed.
        """

        def work() -> Pyramid:
            try:
                up_axis = normalize_axis(up)
            except ValueError as e:
                raise InvalidInputError(str(e)) from e
            arr = np.asarray(raw_points)
            n_raw = arr.shape[0] if arr.ndim == 2 else 0
            if 0 < n_raw < self.config.preprocessing.min_points:
                raise InsufficientGeometryError(
                    f"Scan has {n_raw} points, at least {self.config.preprocessing.min_points} required"
                )
            pyramid = self._preprocess.build_pyramid(
                raw_points, up_axis, self._preprocess_params, confidences=confidences
            )
            self._scan_pyramid = pyramid
            self._up = up_axis
            self._result = None
            self._set_state(
                AlignmentState(AlignmentPhase.IDLE, message=f"Scan preprocessed ({pyramid.point_counts} points)")
            )
            return pyramid

        return self._run(
            AlignmentPhase.PREPROCESSING,
            (AlignmentPhase.IDLE, AlignmentPhase.SCANNING),
            work,
            "Preprocessing scan",
        )

    def run_alignment(self, cancel_event: Optional[threading.Event] = None) -> Optional[RegistrationResult]:
        """
        Register the loaded model against the preprocessed scan.

        Args:
            cancel_event: Set from another thread to abandon the attempt.

        Returns:
            The RegistrationResult, or None when the attempt failed (the cause
            is in ``state.reason``).
        """

        def work() -> RegistrationResult:
            if self._model is None:
                raise InvalidInputError("No model loaded")
            if self._scan_pyramid is None or self._up is None:
                raise InvalidInputError("No preprocessed scan available")

            start = time.time()
            scan_pyramid = self._scan_pyramid
            up = self._up
            model_pyramid = self._model_pyramid_for(tuple(scan_pyramid.voxel_sizes), up)

            seeds = self._coarse.seeds(model_pyramid.coarsest, scan_pyramid.coarsest, up)
            if not seeds:
                raise NoSeedFoundError("Coarse pose search produced no candidates")
            if cancel_event is not None and cancel_event.is_set():
                raise RegistrationCancelledError("Alignment cancelled after coarse pose search")

            refiner = self._refiner or ICPRefiner.from_config(self.config.icp, up)
            params = self._params_per_level or params_for_pyramid(scan_pyramid.voxel_sizes, self.config.icp)
            n_seeds = len(seeds)

            def on_progress(seed_index: int, level: int, iterations: int) -> None:
                self._set_state(
                    AlignmentState(
                        AlignmentPhase.ICP_REFINEMENT,
                        level=level,
                        iterations=iterations,
                        message=f"Seed {seed_index + 1}/{n_seeds}, level {level + 1}/{len(params)}, "
                                f"iteration {iterations}",
                    )
                )

            self._set_state(
                AlignmentState(AlignmentPhase.ICP_REFINEMENT, level=0, iterations=0, message="Refining")
            )
            result = refiner.refine(
                model_pyramid,
                scan_pyramid,
                seeds,
                params,
                progress_callback=on_progress,
                cancel_event=cancel_event,
            )

            self._result = result
            logger.info(
                "Alignment completed in %.3f s: RMSE=%.6f, inliers=%.3f",
                time.time() - start,
                result.metrics.rmse,
                result.metrics.inlier_fraction,
            )
            self._set_state(
                AlignmentState(
                    AlignmentPhase.COMPLETED,
                    level=len(params) - 1,
                    iterations=result.metrics.iterations,
                    message=f"Aligned (RMSE {result.metrics.rmse:.4f}, "
                            f"inliers {result.metrics.inlier_fraction:.0%})",
                )
            )
            return result

        return self._run(
            AlignmentPhase.COARSE_ALIGNMENT,
            (AlignmentPhase.IDLE,),
            work,
            "Searching coarse pose",
        )

    def start_new_attempt(self) -> None:
        """Return to a fresh idle state, keeping the loaded model."""
        with self._request():
            self._scan_pyramid = None
            self._up = None
            self._result = None
            self._set_state(AlignmentState(AlignmentPhase.IDLE, message="Ready"))

    # ------------------------ Helpers ------------------------
    def _request(self):
        if not self._busy.acquire(blocking=False):
            raise CoordinatorBusyError(f"A request is already running (phase {self._state.phase.value})")
        return _Release(self._busy)

    def _check_transition(self, target: AlignmentPhase, allowed: Iterable[AlignmentPhase]) -> None:
        current = self._state.phase
        if self._state.is_terminal:
            raise AlignmentStateError(
                f"Attempt already {current.value}; call start_new_attempt() before {target.value}"
            )
        if current not in allowed:
            raise AlignmentStateError(f"Cannot enter {target.value} from {current.value}")

    def _run(self, phase: AlignmentPhase, allowed: Sequence[AlignmentPhase], work: Callable, message: str):
        with self._request():
            self._check_transition(phase, allowed)
            self._set_state(AlignmentState(phase, message=message))
            try:
                return work()
            except RegistrationError as e:
                logger.warning("Alignment %s failed: %s", phase.value, e)
                self._set_state(AlignmentState(AlignmentPhase.FAILED, reason=e, message=str(e)))
                return None
            except Exception as e:
                logger.error("Unexpected error during %s: %s", phase.value, e, exc_info=True)
                self._set_state(AlignmentState(AlignmentPhase.FAILED, message=f"{type(e).__name__}: {e}"))
                raise

    def _set_state(self, state: AlignmentState) -> None:
        self._state = state
        logger.debug("State -> %s %s", state.phase.value, state.message)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("State listener %r failed: %s", listener, e, exc_info=True)

    def _model_cloud_from(self, source, sample_count: Optional[int]) -> PointCloud:
        if isinstance(source, PointCloud):
            return source
        is_mesh = isinstance(source, TriangleMesh) or (
            isinstance(source, (list, tuple)) and len(source) > 0 and all(isinstance(p, TriangleMesh) for p in source)
        )
        if is_mesh:
            count = sample_count or self.config.preprocessing.model_sample_count
            return self._sampler.extract(source, count)
        return PointCloud.from_points(np.asarray(source, dtype=float))

    def _model_pyramid_for(self, voxel_sizes: Tuple[float, ...], up: np.ndarray) -> Pyramid:
        """Model pyramid at the scan's voxel sizes, built once per set of sizes."""
        key = (voxel_sizes, tuple(np.round(up, 9)))
        pyramid = self._model_pyramids.get(key)
        if pyramid is None:
            pyramid = pyramid_from_cloud(self._model, up, voxel_sizes, self._preprocess, self._preprocess_params)
            self._model_pyramids[key] = pyramid
        return pyramid


class _Release:
    """Context manager releasing an already-acquired lock."""

    def __init__(self, lock: threading.Lock):
        self._lock = lock

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
        return False
