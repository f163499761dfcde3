"""
Trading Session Package.

============================================================
PURPOSE
============================================================
Session and position bookkeeping that the risk gates read,
plus the supervisor that enforces kill-switch Level 3 and
applies position-health recommendations.

============================================================
"""

from .manager import TradingSessionManager, position_pnl
from .supervisor import RiskSupervisor


__all__ = [
    "TradingSessionManager",
    "RiskSupervisor",
    "position_pnl",
]
