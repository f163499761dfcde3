"""
Correlation Engine.

============================================================
PURPOSE
============================================================
Batch job computing pairwise Pearson correlation of mid
prices over the last 30 days of cached ticks. Results are
stored per (symbol, date) in symbol_stats and consumed by
the correlation gate of the risk manager.

============================================================
RULES
============================================================
- Population Pearson; 0 when either series is constant
- Pairs are aligned to the last min(len) points
- Pairs with fewer than 10 aligned points are skipped
- Key format "A_B" with A before B in input order
- A recompute replaces the whole stored matrix

============================================================
"""

import logging
import math
import statistics
from datetime import timedelta
from typing import Dict, List, Mapping, Optional, Sequence

from core.clock import ClockProtocol, SystemClock
from storage.database import Database
from storage.repositories import MarketTickRepository, SymbolStatsRepository


logger = logging.getLogger(__name__)


MIN_POINTS = 10
DEFAULT_LOOKBACK_DAYS = 30


# ============================================================
# MATH
# ============================================================

def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Population Pearson correlation of two equal-length series."""
    n = min(len(xs), len(ys))
    if n == 0:
        return 0.0
    xs, ys = list(xs[-n:]), list(ys[-n:])

    std_x = statistics.pstdev(xs)
    std_y = statistics.pstdev(ys)
    if std_x == 0 or std_y == 0:
        return 0.0

    mean_x = statistics.fmean(xs)
    mean_y = statistics.fmean(ys)
    cov = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys)) / n
    value = cov / (std_x * std_y)

    if math.isnan(value):
        return 0.0
    return max(-1.0, min(1.0, value))


def compute_correlation_matrix(
    series: Mapping[str, Sequence[float]],
    min_points: int = MIN_POINTS,
) -> Dict[str, float]:
    """
    Pairwise correlations keyed "A_B".

    Args:
        series: chronological price series per symbol
        min_points: pairs with fewer aligned points are skipped
    """
    symbols = list(series.keys())
    matrix: Dict[str, float] = {}

    for i, a in enumerate(symbols):
        for b in symbols[i + 1:]:
            n = min(len(series[a]), len(series[b]))
            if n < min_points:
                logger.debug(f"Skipping {a}_{b}: {n} aligned points")
                continue
            matrix[f"{a}_{b}"] = pearson(series[a][-n:], series[b][-n:])

    return matrix


def _matrix_for_symbol(symbol: str, symbols: Sequence[str], matrix: Mapping[str, float]) -> Dict[str, float]:
    """Entries of matrix pairing symbol with one of symbols, matched on the whole pair key."""
    entries: Dict[str, float] = {}
    for other in symbols:
        if other == symbol:
            continue
        for key in (f"{symbol}_{other}", f"{other}_{symbol}"):
            if key in matrix:
                entries[key] = matrix[key]
    return entries


# ============================================================
# ENGINE
# ============================================================

class CorrelationEngine:
    """Recomputes and stores the correlation matrix."""

    def __init__(self, database: Database, clock: Optional[ClockProtocol] = None):
        self._database = database
        self._clock = clock or SystemClock()

    def recompute(self, symbols: List[str], days: int = DEFAULT_LOOKBACK_DAYS) -> Dict[str, float]:
        """
        Load mid prices, compute the matrix and store one
        symbol_stats row per symbol for today.

        Returns:
            The full matrix
        """
        symbols = list(dict.fromkeys(s.upper() for s in symbols))
        since = self._clock.now() - timedelta(days=days)
        today = self._clock.today()

        with self._database.transaction_scope() as session:
            prices = MarketTickRepository(session).mid_prices_since(symbols, since)
            series = {symbol: prices.get(symbol, []) for symbol in symbols}
            matrix = compute_correlation_matrix(series)

            stats = SymbolStatsRepository(session)
            for symbol in symbols:
                stats.replace_matrix(symbol, today, _matrix_for_symbol(symbol, symbols, matrix))

        logger.info(
            f"Correlation matrix recomputed for {len(symbols)} symbols "
            f"({len(matrix)} pairs, {days}d lookback)"
        )
        return matrix
