"""
Market Data Package.

============================================================
PURPOSE
============================================================
Streaming market data from the venue websocket:

- codec: auth/subscribe messages, inbound frame decoding
- feed: connection state machine, backoff, bounded queues
- cache: tick persistence for price history
- retention: tick cache pruning

============================================================
"""

from .cache import TickCacheWriter
from .codec import FeedEvent, auth_message, decode_frame, decode_record, subscribe_message
from .feed import MarketDataFeed
from .retention import DEFAULT_RETENTION, TickRetentionJob, prune_tick_cache
from .types import (
    DEFAULT_FEED_URL,
    ControlEvent,
    FeedConfig,
    FeedState,
    FeedStats,
    MarketTick,
    TickKind,
)


__all__ = [
    "MarketDataFeed",
    "FeedConfig",
    "FeedState",
    "FeedStats",
    "MarketTick",
    "TickKind",
    "ControlEvent",
    "FeedEvent",
    "DEFAULT_FEED_URL",
    "auth_message",
    "subscribe_message",
    "decode_frame",
    "decode_record",
    "TickCacheWriter",
    "TickRetentionJob",
    "prune_tick_cache",
    "DEFAULT_RETENTION",
]
