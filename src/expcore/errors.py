"""
Error taxonomy for the statistics engine.

Hard errors subclass `ValueError`, so callers that already guard numeric
helpers with `except ValueError` keep working.
"""

from __future__ import annotations


class DomainError(ValueError):
    """Argument outside the mathematically valid range (e.g. p <= 0 for an inverse CDF)."""


class InvalidInput(ValueError):
    """Malformed observations: non-positive sample sizes, conversions > visitors, etc."""


class InvalidDesignError(ValueError):
    """Experiment design that cannot be analyzed (no control, allocations != 100, ...)."""


class NonConvergence(RuntimeWarning):
    """Iterative solver hit its iteration cap; the best estimate is still returned."""


class SimulationCancelled(RuntimeError):
    """A Monte Carlo run set was cancelled before all trials finished."""
