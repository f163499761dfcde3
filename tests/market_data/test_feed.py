"""
Tests for the Market Data Feed.

============================================================
PURPOSE
============================================================
Drives the feed with scripted websockets:
1. Auth -> subscribe handshake
2. Reconnect backoff and give-up
3. Drop-oldest consumer queue
4. Tick cache writer

============================================================
"""

import asyncio
import json
import logging

import aiohttp
import pytest

from market_data.feed import MarketDataFeed
from market_data.types import FeedConfig, FeedState
from storage.repositories import QueryError


# ============================================================
# FIXTURES
# ============================================================

class FakeMessage:
    def __init__(self, data, type=aiohttp.WSMsgType.TEXT):
        self.type = type
        self.data = data


class FakeWebSocket:
    """Replays scripted frames, then ends as if the server closed."""

    def __init__(self, frames=()):
        self.frames = [f if isinstance(f, FakeMessage) else FakeMessage(f) for f in frames]
        self.sent = []
        self.closed = False

    async def send_json(self, payload):
        self.sent.append(payload)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        await asyncio.sleep(0)
        if not self.frames:
            raise StopAsyncIteration
        return self.frames.pop(0)


def frame(*records):
    return json.dumps(list(records))


CONNECTED = frame({"T": "success", "msg": "connected"})
AUTHENTICATED = frame({"T": "success", "msg": "authenticated"})


def quote(symbol="AAPL", bid=189.5, ask=189.6):
    return {"T": "q", "S": symbol, "bp": bid, "ap": ask, "bs": 1, "as": 1, "t": "2026-03-10T14:30:00Z"}


class HangingWebSocket(FakeWebSocket):
    """Never delivers a frame."""

    async def __anext__(self):
        await asyncio.Event().wait()


class ScriptedConnector:
    """Hands out the given sockets in order, then empty sockets."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.calls = 0

    async def __call__(self, url):
        self.calls += 1
        if self.sockets:
            item = self.sockets.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return FakeWebSocket()


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_config(**overrides):
    values = {"symbols": ("AAPL",), "api_key": "key", "api_secret": "secret"}
    values.update(overrides)
    return FeedConfig(**values)


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


# ============================================================
# HANDSHAKE
# ============================================================

class TestHandshake:

    @pytest.mark.asyncio
    async def test_auth_then_subscribe(self):
        ws = FakeWebSocket([
            CONNECTED,
            AUTHENTICATED,
            frame({"T": "subscription", "quotes": ["AAPL"]}),
            frame(quote(), {"T": "t", "S": "AAPL", "p": 190.0, "s": 10, "t": "2026-03-10T14:30:01Z"}),
        ])
        feed = MarketDataFeed(make_config(max_reconnect_attempts=0), connector=ScriptedConnector(ws))

        await feed.start()
        await feed.join()

        assert ws.sent == [
            {"action": "auth", "key": "key", "secret": "secret"},
            {"action": "subscribe", "trades": ["AAPL"], "quotes": ["AAPL"], "bars": ["AAPL"]},
        ]
        assert feed.ticks.qsize() == 2
        assert feed.stats.ticks_received == 2
        assert ws.closed

    @pytest.mark.asyncio
    async def test_no_subscribe_before_authenticated(self):
        ws = FakeWebSocket([CONNECTED])
        feed = MarketDataFeed(make_config(max_reconnect_attempts=0), connector=ScriptedConnector(ws))

        await feed.start()
        await feed.join()

        assert [m["action"] for m in ws.sent] == ["auth"]

    @pytest.mark.asyncio
    async def test_auth_error_counts_as_failed_attempt(self, caplog):
        ws = FakeWebSocket([CONNECTED, frame({"T": "error", "code": 402, "msg": "auth failed"})])
        sleep = RecordingSleep()
        feed = MarketDataFeed(
            make_config(max_reconnect_attempts=1),
            connector=ScriptedConnector(ws),
            sleep=sleep,
        )

        with caplog.at_level(logging.ERROR):
            await feed.start()
            await feed.join()

        assert "authentication failed" in caplog.text
        assert sleep.delays == [1.0]
        assert feed.state == FeedState.FAILED

    @pytest.mark.asyncio
    async def test_malformed_frames_are_skipped(self):
        ws = FakeWebSocket([CONNECTED, AUTHENTICATED, "garbage", frame({"T": "q", "S": "AAPL"}), frame(quote())])
        feed = MarketDataFeed(make_config(max_reconnect_attempts=0), connector=ScriptedConnector(ws))

        await feed.start()
        await feed.join()

        assert feed.stats.malformed_records == 2
        assert feed.ticks.qsize() == 1


# ============================================================
# RECONNECTION
# ============================================================

class TestReconnection:

    @pytest.mark.asyncio
    async def test_gives_up_after_five_attempts(self, caplog):
        connector = ScriptedConnector()
        sleep = RecordingSleep()
        feed = MarketDataFeed(make_config(), connector=connector, sleep=sleep)

        with caplog.at_level(logging.CRITICAL):
            await feed.start()
            await feed.join()

        assert sleep.delays == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert connector.calls == 6
        assert feed.state == FeedState.FAILED
        assert "max attempts reached" in caplog.text

    @pytest.mark.asyncio
    async def test_no_attempts_after_failure(self):
        connector = ScriptedConnector()
        feed = MarketDataFeed(make_config(), connector=connector, sleep=RecordingSleep())

        await feed.start()
        await feed.join()
        await asyncio.sleep(0.05)

        assert connector.calls == 6
        assert not feed.is_running

    @pytest.mark.asyncio
    async def test_counter_resets_after_authentication(self):
        connector = ScriptedConnector(
            FakeWebSocket(),
            FakeWebSocket([CONNECTED, AUTHENTICATED]),
        )
        sleep = RecordingSleep()
        feed = MarketDataFeed(make_config(), connector=connector, sleep=sleep)

        await feed.start()
        await feed.join()

        assert sleep.delays == [1.0, 1.0, 2.0, 4.0, 8.0, 16.0]

    @pytest.mark.asyncio
    async def test_connection_errors_back_off(self):
        connector = ScriptedConnector(aiohttp.ClientConnectionError("refused"))
        sleep = RecordingSleep()
        feed = MarketDataFeed(make_config(max_reconnect_attempts=2), connector=connector, sleep=sleep)

        await feed.start()
        await feed.join()

        assert sleep.delays == [1.0, 2.0]
        assert connector.calls == 3

    @pytest.mark.asyncio
    async def test_restart_after_failure(self):
        connector = ScriptedConnector()
        feed = MarketDataFeed(make_config(max_reconnect_attempts=0), connector=connector)

        await feed.start()
        await feed.join()
        assert feed.state == FeedState.FAILED

        await feed.start()
        await feed.join()
        assert connector.calls == 2

    @pytest.mark.asyncio
    async def test_stop(self):
        ws = HangingWebSocket()
        feed = MarketDataFeed(make_config(), connector=ScriptedConnector(ws))

        await feed.start()
        await wait_for(lambda: feed.state == FeedState.AUTHENTICATING)
        await feed.stop()

        assert feed.state == FeedState.STOPPED
        assert not feed.is_running
        assert ws.closed


# ============================================================
# BACKPRESSURE
# ============================================================

class TestBackpressure:

    @pytest.mark.asyncio
    async def test_drop_oldest(self):
        ws = FakeWebSocket([
            CONNECTED,
            AUTHENTICATED,
            frame(quote(bid=1.0, ask=1.0), quote(bid=2.0, ask=2.0), quote(bid=3.0, ask=3.0)),
        ])
        feed = MarketDataFeed(
            make_config(max_reconnect_attempts=0, consumer_queue_size=2),
            connector=ScriptedConnector(ws),
        )

        await feed.start()
        await feed.join()

        assert feed.stats.ticks_dropped == 1
        assert [feed.ticks.get_nowait().bid for _ in range(2)] == [2.0, 3.0]

    @pytest.mark.asyncio
    async def test_stream_yields_ticks(self):
        ws = FakeWebSocket([CONNECTED, AUTHENTICATED, frame(quote(symbol="AAPL"), quote(symbol="NVDA"))])
        feed = MarketDataFeed(make_config(max_reconnect_attempts=0), connector=ScriptedConnector(ws))

        await feed.start()
        stream = feed.stream()
        first = await asyncio.wait_for(stream.__anext__(), timeout=1)
        second = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert [first.symbol, second.symbol] == ["AAPL", "NVDA"]
        await feed.stop()


# ============================================================
# TICK CACHE
# ============================================================

class TestCacheWriter:

    @pytest.mark.asyncio
    async def test_ticks_written_in_batches(self):
        written = []

        def sink(batch):
            written.extend(batch)
            return len(batch)

        ws = FakeWebSocket([CONNECTED, AUTHENTICATED, frame(*[quote() for _ in range(5)])])
        feed = MarketDataFeed(
            make_config(max_reconnect_attempts=0, cache_batch_size=2),
            cache_sink=sink,
            connector=ScriptedConnector(ws),
        )

        await feed.start()
        await feed.join()
        await wait_for(lambda: feed.stats.ticks_cached == 5)
        await feed.stop()

        assert len(written) == 5

    @pytest.mark.asyncio
    async def test_write_failure_does_not_stop_feed(self):
        def sink(batch):
            raise QueryError("MarketTickRepository", "add_ticks", "disk full")

        ws = FakeWebSocket([CONNECTED, AUTHENTICATED, frame(quote())])
        feed = MarketDataFeed(
            make_config(max_reconnect_attempts=0),
            cache_sink=sink,
            connector=ScriptedConnector(ws),
        )

        await feed.start()
        await feed.join()
        await wait_for(lambda: feed.stats.cache_write_failures == 1)

        assert feed.ticks.qsize() == 1
        await feed.stop()


class TestFeedConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MARKET_DATA_SYMBOLS", "eurusd, GBPUSD,")
        monkeypatch.setenv("MARKET_DATA_API_KEY", "key")

        config = FeedConfig.from_env(max_reconnect_attempts=3)

        assert config.symbols == ("EURUSD", "GBPUSD")
        assert config.api_key == "key"
        assert config.max_reconnect_attempts == 3

    def test_env_file_left_to_entry_point(self, monkeypatch, tmp_path):
        (tmp_path / ".env").write_text("MARKET_DATA_API_KEY=from-file\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("MARKET_DATA_API_KEY", raising=False)

        assert FeedConfig.from_env().api_key == ""
