"""
Unit tests for parallel seed processing infrastructure.

Tests SeedParallelExecutor for ordering, error handling and progress
reporting.
"""

from pathlib import Path
import sys

import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from scan_registration.acceleration import SeedParallelExecutor
from scan_registration.errors import NoCorrespondenceFoundError


# Module-level worker functions for pickling compatibility
def _square_worker(seed, exp=2):
    return seed ** exp


def _slow_worker(seed, scale=1):
    """Worker that finishes out of order."""
    import time
    import random
    time.sleep(random.uniform(0.001, 0.01))
    return seed * scale


def _error_worker(seed):
    raise ValueError(f"Intentional error on seed {seed}")


def _registration_error_worker(seed):
    raise NoCorrespondenceFoundError(f"No overlap for seed {seed}")


class TestSeedParallelExecutor:
    """Test suite for SeedParallelExecutor."""

    def test_executor_initialization(self):
        executor = SeedParallelExecutor()
        assert executor.n_workers >= 1

        executor = SeedParallelExecutor(n_workers=4)
        assert executor.n_workers == 4

        # Minimum workers (should be at least 1)
        executor = SeedParallelExecutor(n_workers=0)
        assert executor.n_workers == 1

    def test_parallel_results_keep_input_order(self):
        executor = SeedParallelExecutor(n_workers=2)
        results = executor.map_seeds(list(range(12)), _slow_worker, {"scale": 3})
        assert results == [i * 3 for i in range(12)]

    def test_parallel_square(self):
        executor = SeedParallelExecutor(n_workers=2)
        assert executor.map_seeds([1, 2, 3, 4], _square_worker, {"exp": 2}) == [1, 4, 9, 16]

    def test_more_workers_than_seeds(self):
        executor = SeedParallelExecutor(n_workers=8)
        assert executor.map_seeds([3], _square_worker, {}) == [9]

    def test_worker_error_raises_runtime_error(self):
        with pytest.raises(RuntimeError, match="3 seeds failed"):
            SeedParallelExecutor(n_workers=2).map_seeds([1, 2, 3], _error_worker, {})

    def test_registration_error_in_worker_is_reported(self):
        with pytest.raises(RuntimeError, match="NoCorrespondenceFoundError"):
            SeedParallelExecutor(n_workers=2).map_seeds([1, 2], _registration_error_worker, {})

    def test_empty_input(self):
        assert SeedParallelExecutor(n_workers=2).map_seeds([], _square_worker, {}) == []

    def test_progress_callback(self):
        calls = []
        SeedParallelExecutor(n_workers=2).map_seeds(
            [1, 2, 3, 4, 5],
            _square_worker,
            {},
            progress_callback=lambda done, total: calls.append((done, total)),
        )
        assert calls == [(i, 5) for i in range(1, 6)]
