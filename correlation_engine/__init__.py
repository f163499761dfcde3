"""
Correlation Engine Package.

Pairwise Pearson correlation of cached mid prices, stored
per symbol and day for the risk manager's correlation gate.
"""

from .engine import (
    DEFAULT_LOOKBACK_DAYS,
    MIN_POINTS,
    CorrelationEngine,
    compute_correlation_matrix,
    pearson,
)


__all__ = [
    "CorrelationEngine",
    "compute_correlation_matrix",
    "pearson",
    "MIN_POINTS",
    "DEFAULT_LOOKBACK_DAYS",
]
