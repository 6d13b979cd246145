"""
Acceleration Module

Parallel processing infrastructure for independent ICP seed refinements.
"""

from .parallel_executor import SeedParallelExecutor

__all__ = ["SeedParallelExecutor"]
