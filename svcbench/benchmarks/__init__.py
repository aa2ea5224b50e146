"""
Benchmarking harness for request/response services.

This package drives operations against a target under controlled concurrency,
records per-operation latencies, derives nearest-rank percentile statistics
and sweeps scenarios across concurrency levels and target configurations into
comparable result tables.
"""

from .main import main

__all__ = ["main"]
