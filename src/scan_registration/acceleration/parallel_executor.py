"""
Parallel execution infrastructure for seed evaluation.

Provides SeedParallelExecutor for distributing independent ICP seed
refinements across multiple CPU cores using multiprocessing. Callers with a
single worker refine seeds in-process and never reach this module.
"""

from __future__ import annotations

import time
from multiprocessing import Pool, cpu_count
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def _worker_wrapper(args: Tuple[int, Any, Callable, Dict[str, Any]]) -> Tuple[int, Any, Optional[str]]:
    """
    Run one seed in a worker process.

    Must be at module level for pickling.

    Returns:
        Tuple of (seed_position, result, error_message)
    """
    idx, seed, worker_fn, worker_kwargs = args
    try:
        return (idx, worker_fn(seed, **worker_kwargs), None)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.error("Worker error on seed %d: %s", idx, error_msg)
        return (idx, None, error_msg)


class SeedParallelExecutor:
    """
    Process pool over independent seeds.

    Seeds share read-only pyramids, so each one can be refined in its own
    process. Results come back in input order regardless of completion order.

    Example:
        executor = SeedParallelExecutor(n_workers=4)
        outcomes = executor.map_seeds(
            seeds=list(enumerate(poses)),
            worker_fn=_refine_seed_worker,
            worker_kwargs={'refiner': refiner, 'params_per_level': params},
        )
    """

    def __init__(self, n_workers: Optional[int] = None):
        """
        Args:
            n_workers: Number of worker processes. If None, uses cpu_count - 1
                to leave one core for the caller. Minimum is 1.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count() - 1)
        self.n_workers = max(1, int(n_workers))
        logger.debug("Initialized SeedParallelExecutor with %d workers (total CPUs: %d)", self.n_workers, cpu_count())

    def map_seeds(
        self,
        seeds: List[Any],
        worker_fn: Callable,
        worker_kwargs: Dict[str, Any],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[Any]:
        """
        Map a picklable ``worker_fn(seed, **worker_kwargs)`` over seeds.

        Args:
            seeds: Items to process (e.g. ``(seed_index, pose)`` tuples)
            worker_fn: Module-level function returning one result per seed
            worker_kwargs: Fixed keyword arguments passed to each call
            progress_callback: Optional ``callback(completed_count, total_count)``

        Returns:
            List of results in the same order as ``seeds``

        Raises:
            RuntimeError: If any seed failed in its worker
        """
        n_seeds = len(seeds)
        if n_seeds == 0:
            return []

        start_time = time.time()
        worker_args = [(i, seed, worker_fn, worker_kwargs) for i, seed in enumerate(seeds)]
        results: Dict[int, Any] = {}
        errors: List[Tuple[int, str]] = []

        with Pool(processes=min(self.n_workers, n_seeds)) as pool:
            for completed, (idx, result, error) in enumerate(
                pool.imap_unordered(_worker_wrapper, worker_args), start=1
            ):
                if error:
                    errors.append((idx, error))
                else:
                    results[idx] = result
                if progress_callback:
                    progress_callback(completed, n_seeds)

        if errors:
            error_msg = f"{len(errors)} seeds failed out of {n_seeds}"
            logger.error(error_msg)
            for idx, error in sorted(errors)[:5]:
                logger.error("  Seed %d: %s", idx, error)
            raise RuntimeError(f"{error_msg}: {sorted(errors)[0][1]}")

        logger.info(
            "Parallel seed processing complete: %d seeds on %d workers in %.2fs",
            n_seeds,
            min(self.n_workers, n_seeds),
            time.time() - start_time,
        )
        return [results[i] for i in range(n_seeds)]
