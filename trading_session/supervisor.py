"""
Trading Session - Risk Supervisor.

============================================================
RESPONSIBILITY
============================================================
Periodically evaluates the kill switch and the health of
open positions, and acts on the results:

- Level 3 (EMERGENCY): close every open position at its
  last marked price and stop the session
- CLOSE: close the position
- ADJUST_SL: tighten the stop to the suggested level
- PARTIAL_CLOSE: close part of the position

Level 1 and 2 are enforced by RiskManager.validate_trade
(smaller sizes, then no new trades); nothing is closed.

============================================================
"""

import asyncio
import logging
from typing import List, Optional

from core.exceptions import TradingException
from risk_manager.engine import RiskManager
from risk_manager.types import KillSwitchStatus, PositionAction, PositionAssessment
from storage.repositories import RepositoryException

from .manager import TradingSessionManager


logger = logging.getLogger(__name__)


class RiskSupervisor:
    """Acts on kill-switch and position-health evaluations."""

    def __init__(
        self,
        risk_manager: RiskManager,
        session_manager: TradingSessionManager,
        kill_switch_interval_seconds: float = 30.0,
        health_interval_seconds: float = 60.0,
    ):
        self._risk_manager = risk_manager
        self._sessions = session_manager
        self._kill_switch_interval = kill_switch_interval_seconds
        self._health_interval = health_interval_seconds

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._last_status: Optional[KillSwitchStatus] = None

    @property
    def last_status(self) -> Optional[KillSwitchStatus]:
        return self._last_status

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(self.check_kill_switch, self._kill_switch_interval, "kill switch")),
            asyncio.create_task(self._loop(self.review_positions, self._health_interval, "position health")),
        ]
        logger.info("RiskSupervisor STARTED")

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("RiskSupervisor STOPPED")

    async def _loop(self, check, interval: float, name: str) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                await loop.run_in_executor(None, check)
            except TradingException as e:
                if e.is_recoverable:
                    logger.error(f"{name} check failed: {e}")
                else:
                    logger.critical(f"{name} check failed: {e.to_dict()}")
            except RepositoryException as e:
                logger.error(f"{name} check failed: {e}")
            await asyncio.sleep(interval)

    # --------------------------------------------------------
    # KILL SWITCH
    # --------------------------------------------------------

    def check_kill_switch(self) -> KillSwitchStatus:
        status = self._risk_manager.kill_switch_status()
        self._last_status = status
        if status.requires_liquidation:
            self.emergency_shutdown(status.reason)
        return status

    def emergency_shutdown(self, reason: str) -> int:
        """Close every open position at its last price and stop the session."""
        logger.critical(f"EMERGENCY SHUTDOWN: {reason}")

        closed = 0
        for position in self._sessions.open_positions():
            price = position.current_price if position.current_price is not None else position.entry_price
            try:
                self._sessions.close_position(position.deal_id, price, reason="kill switch level 3")
                closed += 1
            except (TradingException, RepositoryException) as e:
                logger.error(f"Failed to close deal {position.deal_id} during shutdown: {e}")

        self._sessions.stop(reason=f"Kill switch: {reason}")
        logger.critical(f"Emergency shutdown complete: {closed} positions closed")
        return closed

    # --------------------------------------------------------
    # POSITION HEALTH
    # --------------------------------------------------------

    def review_positions(self) -> List[PositionAssessment]:
        assessments = self._risk_manager.assess_open_positions()
        if not assessments:
            return assessments

        prices = {p.deal_id: p.current_price for p in self._sessions.open_positions()}
        for assessment in assessments:
            try:
                self._apply(assessment, prices.get(assessment.deal_id))
            except (TradingException, RepositoryException) as e:
                logger.error(f"Failed to apply {assessment.action.value} to deal {assessment.deal_id}: {e}")
        return assessments

    def _apply(self, assessment: PositionAssessment, price: Optional[float]) -> None:
        if assessment.action == PositionAction.HOLD:
            return

        logger.info(f"{assessment.symbol} deal {assessment.deal_id}: {assessment.action.value} ({assessment.reason})")

        if assessment.action == PositionAction.ADJUST_SL:
            if assessment.suggested_stop_loss is not None:
                self._sessions.apply_trailing_stop(assessment.deal_id, assessment.suggested_stop_loss)
            return

        if price is None:
            logger.warning(f"No price for deal {assessment.deal_id}, skipping {assessment.action.value}")
            return

        if assessment.action == PositionAction.CLOSE:
            self._sessions.close_position(assessment.deal_id, price, reason=assessment.reason)
        elif assessment.action == PositionAction.PARTIAL_CLOSE:
            self._sessions.partial_close(assessment.deal_id, price, reason=assessment.reason)
