"""
Market Data - Wire Codec.

============================================================
PROTOCOL
============================================================
Outbound (JSON objects):
    {"action": "auth", "key": "...", "secret": "..."}
    {"action": "subscribe", "trades": [...], "quotes": [...], "bars": [...]}

Inbound (JSON array of records tagged by "T"):
    {"T": "success", "msg": "connected" | "authenticated"}
    {"T": "error", "code": 402, "msg": "auth failed"}
    {"T": "subscription", "trades": [...], ...}
    {"T": "q", "S": "AAPL", "bp": 1.0, "ap": 1.1, "bs": 2, "as": 3, "t": "..."}
    {"T": "t", "S": "AAPL", "p": 1.05, "s": 100, "t": "..."}
    {"T": "b", ...}  bars, acknowledged and ignored

============================================================
TOLERANCE
============================================================
A frame that is not JSON raises MessageDecodeError; the
caller logs it and keeps reading. Inside a valid frame,
each malformed record is skipped on its own.

============================================================
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Tuple, Union

from core.clock import parse_timestamp
from core.exceptions import MessageDecodeError

from .types import ControlEvent, MarketTick, TickKind


logger = logging.getLogger(__name__)

FeedEvent = Union[MarketTick, ControlEvent]

CONTROL_TAGS = ("success", "error", "subscription")
IGNORED_TAGS = ("b", "d", "u")


# ============================================================
# OUTBOUND
# ============================================================

def auth_message(key: str, secret: str) -> Dict[str, Any]:
    return {"action": "auth", "key": key, "secret": secret}


def subscribe_message(
    symbols: Iterable[str],
    quotes: bool = True,
    trades: bool = True,
    bars: bool = True,
) -> Dict[str, Any]:
    symbols = list(symbols)
    return {
        "action": "subscribe",
        "trades": symbols if trades else [],
        "quotes": symbols if quotes else [],
        "bars": symbols if bars else [],
    }


# ============================================================
# INBOUND
# ============================================================

def _quote(record: Dict[str, Any]) -> MarketTick:
    return MarketTick(
        symbol=str(record["S"]),
        bid=float(record["bp"]),
        ask=float(record["ap"]),
        volume=float(record.get("bs", 0) or 0) + float(record.get("as", 0) or 0),
        timestamp=parse_timestamp(record["t"]),
        kind=TickKind.QUOTE,
    )


def _trade(record: Dict[str, Any]) -> MarketTick:
    price = float(record["p"])
    return MarketTick(
        symbol=str(record["S"]),
        bid=price,
        ask=price,
        volume=float(record.get("s", 0) or 0),
        timestamp=parse_timestamp(record["t"]),
        kind=TickKind.TRADE,
    )


def _control(tag: str, record: Dict[str, Any]) -> ControlEvent:
    code = record.get("code")
    return ControlEvent(
        tag=tag,
        message=str(record.get("msg", "")),
        code=int(code) if code is not None else None,
        payload={k: v for k, v in record.items() if k not in ("T", "msg", "code")},
    )


def decode_record(record: Any) -> FeedEvent:
    """
    Decode one tagged record.

    Raises:
        MessageDecodeError: missing tag, unknown tag or bad fields
    """
    if not isinstance(record, dict):
        raise MessageDecodeError(f"Record is not an object: {type(record).__name__}")

    tag = record.get("T")
    try:
        if tag == "q":
            return _quote(record)
        if tag == "t":
            return _trade(record)
        if tag in CONTROL_TAGS:
            return _control(tag, record)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise MessageDecodeError(f"Malformed '{tag}' record: {e}", raw=json.dumps(record)[:200]) from e

    raise MessageDecodeError(f"Unknown record type: {tag!r}")


def decode_frame(raw: Union[str, bytes]) -> Tuple[List[FeedEvent], int]:
    """
    Decode an inbound frame.

    Returns:
        (events, malformed_count)

    Raises:
        MessageDecodeError: the frame itself is not valid JSON
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else str(raw)
        raise MessageDecodeError(f"Invalid JSON frame: {e}", raw=text) from e

    records = payload if isinstance(payload, list) else [payload]

    events: List[FeedEvent] = []
    malformed = 0
    for record in records:
        if isinstance(record, dict) and record.get("T") in IGNORED_TAGS:
            continue
        try:
            events.append(decode_record(record))
        except MessageDecodeError as e:
            malformed += 1
            logger.warning(f"Skipping record: {e.message}")

    return events, malformed
