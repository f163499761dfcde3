"""
Risk Manager - Correlation Risk.

============================================================
PURPOSE
============================================================
Exposure concentration of a candidate symbol against the
currently open book:

    risk = sum(|corr(candidate, s_i)| x w_i) / sum(w_i)

where w_i is the size of open position i (1 when unknown).
Positions in the candidate symbol itself are ignored.

============================================================
LOOKUP ORDER (per pair)
============================================================
1. Today's stored matrix, key "A_B" then "B_A"
2. Static reference table
3. Default unknown-pair correlation (0.1)

Missing data is never a failure; it always resolves to a
documented fallback.

============================================================
"""

from typing import Iterable, Mapping, Optional

from .config import MarketReference
from .types import OpenPositionView


def pair_key(a: str, b: str) -> str:
    return f"{a}_{b}"


class CorrelationRiskAssessor:
    """Weighted-average absolute correlation against open positions."""

    def __init__(self, reference: Optional[MarketReference] = None):
        self.reference = reference or MarketReference()

    def correlation(self, a: str, b: str, matrix: Mapping[str, float]) -> float:
        stored = matrix.get(pair_key(a, b))
        if stored is None:
            stored = matrix.get(pair_key(b, a))
        if stored is not None:
            return float(stored)

        static = self.reference.static_correlation(a, b)
        if static is not None:
            return static
        return self.reference.default_correlation

    def assess(
        self,
        symbol: str,
        open_positions: Iterable[OpenPositionView],
        matrix: Optional[Mapping[str, float]] = None,
    ) -> float:
        matrix = matrix or {}
        weighted = 0.0
        total_weight = 0.0

        for position in open_positions:
            if position.symbol == symbol:
                continue
            weight = position.size if position.size > 0 else 1.0
            weighted += abs(self.correlation(symbol, position.symbol, matrix)) * weight
            total_weight += weight

        if total_weight == 0:
            return 0.0
        return weighted / total_weight
