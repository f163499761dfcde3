"""
Market Data - Type Definitions.

============================================================
PURPOSE
============================================================
Types of the streaming market data feed:

- FeedConfig: venue endpoint, credentials, symbols, backoff
  and queue sizing
- FeedState: connection state machine
- MarketTick: normalized quote/trade tick
- Feed events: decoded inbound records

============================================================
STATE MACHINE
============================================================
DISCONNECTED -> CONNECTING -> AUTHENTICATING -> SUBSCRIBED
     ^                                              |
     +------------- (error / close) ----------------+

FAILED:  reconnect attempts exhausted, offline until start()
STOPPED: stop() was called

============================================================
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ============================================================
# STATE
# ============================================================

class FeedState(str, Enum):
    """Connection state of the market data feed."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AUTHENTICATING = "AUTHENTICATING"
    SUBSCRIBED = "SUBSCRIBED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


class TickKind(str, Enum):
    QUOTE = "q"
    TRADE = "t"


# ============================================================
# CONFIGURATION
# ============================================================

DEFAULT_FEED_URL = "wss://stream.data.alpaca.markets/v2/iex"


@dataclass
class FeedConfig:
    """Market data feed configuration."""

    url: str = DEFAULT_FEED_URL
    api_key: str = ""
    api_secret: str = ""

    symbols: Tuple[str, ...] = ()
    subscribe_quotes: bool = True
    subscribe_trades: bool = True
    subscribe_bars: bool = True

    # Reconnection
    max_reconnect_attempts: int = 5
    base_backoff_seconds: float = 1.0
    """delay = base_backoff_seconds x 2^attempt."""

    heartbeat_seconds: float = 20.0

    # Backpressure
    consumer_queue_size: int = 1000
    """Bounded tick queue for consumers; the oldest tick is dropped when full."""

    cache_queue_size: int = 10000
    cache_batch_size: int = 100

    @classmethod
    def from_env(cls, **overrides: Any) -> "FeedConfig":
        """
        Build from MARKET_DATA_* environment variables.

        MARKET_DATA_SYMBOLS is a comma separated list.
        """
        symbols = tuple(
            s.strip().upper()
            for s in os.getenv("MARKET_DATA_SYMBOLS", "").split(",")
            if s.strip()
        )
        values: Dict[str, Any] = {
            "url": os.getenv("MARKET_DATA_WS_URL", DEFAULT_FEED_URL),
            "api_key": os.getenv("MARKET_DATA_API_KEY", ""),
            "api_secret": os.getenv("MARKET_DATA_API_SECRET", ""),
            "symbols": symbols,
        }
        values.update(overrides)
        return cls(**values)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (0-based)."""
        return self.base_backoff_seconds * (2 ** attempt)


# ============================================================
# TICKS & EVENTS
# ============================================================

@dataclass(frozen=True)
class MarketTick:
    """Normalized quote or trade."""

    symbol: str
    bid: float
    ask: float
    volume: float
    timestamp: datetime
    kind: TickKind = TickKind.QUOTE

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2


@dataclass(frozen=True)
class ControlEvent:
    """Non-tick record: success, error or subscription acknowledgement."""

    tag: str
    message: str = ""
    code: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.tag == "success" and self.message == "authenticated"

    @property
    def is_connected(self) -> bool:
        return self.tag == "success" and self.message == "connected"

    @property
    def is_error(self) -> bool:
        return self.tag == "error"


@dataclass
class FeedStats:
    """Counters exposed for monitoring."""

    messages_received: int = 0
    ticks_received: int = 0
    malformed_records: int = 0
    ticks_dropped: int = 0
    cache_ticks_dropped: int = 0
    ticks_cached: int = 0
    cache_write_failures: int = 0
    connections: int = 0
    reconnect_attempts: int = 0
    last_tick_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages_received": self.messages_received,
            "ticks_received": self.ticks_received,
            "malformed_records": self.malformed_records,
            "ticks_dropped": self.ticks_dropped,
            "cache_ticks_dropped": self.cache_ticks_dropped,
            "ticks_cached": self.ticks_cached,
            "cache_write_failures": self.cache_write_failures,
            "connections": self.connections,
            "reconnect_attempts": self.reconnect_attempts,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
        }
