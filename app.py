#!/usr/bin/env python3
"""
Trading Risk Core - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Wires the risk manager, the market data feed, the session
bookkeeping and the maintenance jobs into one runtime.

============================================================
USAGE
============================================================
    python app.py run --balance 10000
    python app.py correlations EURUSD GBPUSD USDJPY
    python app.py prune
    python app.py kill-switch

Environment (.env honoured):
    DATABASE_URL, MARKET_DATA_WS_URL, MARKET_DATA_API_KEY,
    MARKET_DATA_API_SECRET, MARKET_DATA_SYMBOLS, LOG_LEVEL

============================================================
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import TradingException
from correlation_engine import CorrelationEngine
from market_data import FeedConfig, MarketDataFeed, MarketTick, TickCacheWriter, TickRetentionJob
from risk_manager import AlertSeverity, RiskManager
from storage import Database, init_database
from storage.repositories import RepositoryException
from trading_session import RiskSupervisor, TradingSessionManager


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


# ============================================================
# ALERTS
# ============================================================

def log_alert_callback(severity: AlertSeverity, title: str, message: str) -> None:
    """Alert sink used until a notifier is wired in."""
    tag = {
        AlertSeverity.INFO: "[INFO]",
        AlertSeverity.WARNING: "[WARN]",
        AlertSeverity.CRITICAL: "[CRIT]",
    }.get(severity, "[ALERT]")
    level = logging.CRITICAL if severity == AlertSeverity.CRITICAL else logging.WARNING
    logger.log(level, f"[ALERT] {tag} {title}: {message}")


# ============================================================
# COMMANDS
# ============================================================

async def _mark_prices(feed: MarketDataFeed, sessions: TradingSessionManager) -> None:
    loop = asyncio.get_running_loop()
    async for tick in feed.stream():
        await loop.run_in_executor(None, _mark, sessions, tick)


def _mark(sessions: TradingSessionManager, tick: MarketTick) -> None:
    try:
        sessions.mark_price(tick.symbol, tick.bid, tick.ask)
    except (TradingException, RepositoryException) as e:
        logger.error(f"Failed to mark {tick.symbol}: {e}")


async def run_command(args, database: Database) -> int:
    sessions = TradingSessionManager(database)
    active = sessions.active_session()
    if active is None or args.new_session:
        active = sessions.start(args.balance, mode=args.mode)
    else:
        logger.info(f"Resuming trading session {active.id}")

    risk_manager = RiskManager(database, session_id=active.id, alert_callback=log_alert_callback)
    supervisor = RiskSupervisor(risk_manager, sessions)
    retention = TickRetentionJob(database)

    feed_config = FeedConfig.from_env()
    if args.symbols:
        feed_config.symbols = tuple(s.upper() for s in args.symbols)
    feed = MarketDataFeed(feed_config, cache_sink=TickCacheWriter(database).write)

    await feed.start()
    await supervisor.start()
    background = [
        asyncio.create_task(retention.run_forever()),
        asyncio.create_task(_mark_prices(feed, sessions)),
    ]

    try:
        await feed.join()
        logger.critical(f"Market data feed ended in state {feed.state.value}")
        return 1
    except asyncio.CancelledError:
        logger.info("Interrupted, shutting down")
        return 130
    finally:
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        await supervisor.stop()
        await feed.stop()


def correlations_command(args, database: Database) -> int:
    symbols: List[str] = args.symbols or list(FeedConfig.from_env().symbols)
    if len(symbols) < 2:
        print("Error: at least two symbols are required", file=sys.stderr)
        return 1
    matrix = CorrelationEngine(database).recompute(symbols, days=args.days)
    for key, value in sorted(matrix.items()):
        print(f"{key:<20} {value:+.4f}")
    return 0


def prune_command(args, database: Database) -> int:
    deleted = TickRetentionJob(database, retention_days=args.days).run_once()
    print(f"Pruned {deleted} cached ticks")
    return 0


def kill_switch_command(args, database: Database) -> int:
    status = RiskManager(database, alert_callback=log_alert_callback).kill_switch_status()
    print(f"Level:              {int(status.level)} ({status.level.name})")
    print(f"Reason:             {status.reason}")
    print(f"Drawdown:           {status.drawdown * 100:.2f}%")
    print(f"Daily loss:         {status.daily_loss_pct * 100:.2f}%")
    print(f"Consecutive losses: {status.consecutive_losses}")
    return 0 if status.allows_new_trades else 2


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Trading risk core",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run feed, supervisor and maintenance jobs")
    run.add_argument("--balance", type=float, default=10000.0, help="Initial balance of a new session")
    run.add_argument("--mode", choices=("paper", "live"), default="paper")
    run.add_argument("--new-session", action="store_true", help="Stop the active session and start a new one")
    run.add_argument("--symbols", nargs="*", default=None, help="Overrides MARKET_DATA_SYMBOLS")

    correlations = commands.add_parser("correlations", help="Recompute the correlation matrix")
    correlations.add_argument("symbols", nargs="*")
    correlations.add_argument("--days", type=int, default=30)

    prune = commands.add_parser("prune", help="Delete expired cached ticks")
    prune.add_argument("--days", type=int, default=3)

    commands.add_parser("kill-switch", help="Print the current kill-switch status")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = create_parser().parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        database = init_database(args.database_url)
    except TradingException as e:
        logger.critical(f"Database unavailable: {e}")
        return 1

    try:
        if args.command == "run":
            return asyncio.run(run_command(args, database))
        if args.command == "correlations":
            return correlations_command(args, database)
        if args.command == "prune":
            return prune_command(args, database)
        if args.command == "kill-switch":
            return kill_switch_command(args, database)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    finally:
        database.dispose()

    return 1


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
