"""
Register a reference model against a captured scan.

Two modes are available:
- pipeline: voxel pyramid + yaw sweep + robust coarse-to-fine ICP
- interactive: single-resolution fast path driven by a quality preset

The model may be a point file (.las/.laz/.npy/.xyz/.txt/.csv) or a mesh
stored as .npz with ``vertices`` and ``faces`` arrays.
"""

import sys
import argparse
import logging
import os
from pathlib import Path

import numpy as np

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.alignment import AlignmentCoordinator, ModelRegistrationService, resolve_preset
from scan_registration.alignment.coarse_registration import strided_subsample
from scan_registration.preprocessing import TriangleMesh, load_raw_points
from scan_registration.utils.config import AppConfig, load_config
from scan_registration.utils.logging import log_stage, set_package_level, setup_logger
from scan_registration.utils.transforms import rotation_angle_deg, save_transform_matrix, yaw_about_axis_deg


def load_model_source(path: Path):
    """A TriangleMesh for .npz meshes, otherwise an (N, 3) point array."""
    if path.suffix.lower() == ".npz":
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        with np.load(path) as data:
            faces = data["faces"] if "faces" in data.files else None
            return TriangleMesh(data["vertices"], faces)
    return load_raw_points(path)


def run_pipeline(cfg: AppConfig, model_source, scan_points: np.ndarray, up, logger):
    coordinator = AlignmentCoordinator.from_config(cfg)
    coordinator.add_listener(lambda state: logger.debug(f"[{state.phase.value}] {state.message}"))

    with log_stage(logger, "Model loading"):
        coordinator.load_model(model_source)
    if coordinator.state.reason is None:
        coordinator.begin_scanning()
        with log_stage(logger, "Scan preprocessing"):
            coordinator.preprocess_scan(scan_points, up)
    if coordinator.state.reason is None:
        with log_stage(logger, "Alignment"):
            coordinator.run_alignment()

    if coordinator.result is None:
        logger.error(f"Registration failed: {coordinator.state.reason}")
        return None
    return coordinator.result


def run_interactive(cfg: AppConfig, model_source, scan_points: np.ndarray, preset_name: str, logger):
    service = ModelRegistrationService.from_config(cfg)
    if preset_name == "custom":
        preset = cfg.interactive.custom
        if preset is None:
            raise ValueError("--preset custom requires interactive.custom in the configuration")
    else:
        preset = preset_name
    params = resolve_preset(preset)
    logger.info(f"Quality preset: {preset_name} ({params})")

    if isinstance(model_source, TriangleMesh):
        model = service.extract_point_cloud(model_source, params.model_points_sample_count).points
    else:
        model = strided_subsample(model_source, params.model_points_sample_count)
    scan = strided_subsample(scan_points, params.scan_points_sample_count)

    with log_stage(logger, "Interactive registration"):
        return service.register_models(
            model,
            scan,
            max_iterations=params.max_iterations,
            convergence_threshold=params.convergence_threshold,
            progress_callback=lambda msg: logger.debug(msg),
        )


def main():
    """
    Main function to run a single model-to-scan registration.
    """
    parser = argparse.ArgumentParser(description="Scan-to-Model Registration")
    parser.add_argument("--model", type=str, required=True, help="Reference model (point file or .npz mesh)")
    parser.add_argument("--scan", type=str, required=True, help="Captured scan point file")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--up",
        type=float,
        nargs=3,
        default=None,
        metavar=("X", "Y", "Z"),
        help="Gravity-up axis of the scan frame (overrides up_axis in the configuration)",
    )
    parser.add_argument(
        "--mode",
        choices=["pipeline", "interactive"],
        default="pipeline",
        help="Multi-resolution pipeline or single-resolution interactive fast path",
    )
    parser.add_argument(
        "--preset",
        choices=["instant", "ultra_fast", "fast", "balanced", "accurate", "custom"],
        default=None,
        help="Quality preset for --mode interactive (defaults to interactive.preset)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write the 4x4 model-to-scan transform to this text file",
    )
    args = parser.parse_args()

    # Load configuration
    cfg: AppConfig = load_config(args.config)
    if args.up is not None:
        cfg.up_axis = tuple(args.up)

    # Setup logging from config
    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)
    set_package_level(log_level)

    # Performance: set thread env vars if configured
    threads = cfg.performance.numpy_threads
    if threads == "auto":
        threads = os.cpu_count() or 1
    if isinstance(threads, int) and threads > 0:
        os.environ.setdefault("OMP_NUM_THREADS", str(threads))
        os.environ.setdefault("MKL_NUM_THREADS", str(threads))

    logger.info("Scan-to-Model Registration")
    logger.info("==========================")

    model_source = load_model_source(Path(args.model))
    scan_points = load_raw_points(args.scan)

    if args.mode == "pipeline":
        result = run_pipeline(cfg, model_source, scan_points, cfg.up_axis, logger)
    else:
        result = run_interactive(cfg, model_source, scan_points, args.preset or cfg.interactive.preset, logger)

    if result is None:
        sys.exit(1)

    logger.info(f"RMSE: {result.metrics.rmse:.6f}")
    logger.info(f"Inlier fraction: {result.metrics.inlier_fraction:.3f}")
    logger.info(f"Iterations: {result.metrics.iterations}")
    logger.info(f"Rotation: {rotation_angle_deg(result.transform):.3f} deg "
                f"(yaw about up: {yaw_about_axis_deg(result.transform, cfg.up_axis):.3f} deg)")
    logger.info(f"Translation: {np.round(result.transform[:3, 3], 6)}")
    logger.info(f"Transform:\n{result.transform}")

    if args.output:
        save_transform_matrix(result.transform, args.output)


if __name__ == "__main__":
    main()
