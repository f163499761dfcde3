"""
Market Data - Streaming Feed.

============================================================
PURPOSE
============================================================
Maintains one authenticated websocket connection to the
venue, publishes normalized ticks to consumers and hands
them to the tick cache writer.

FLOW:
1. Connect, send the auth message
2. Wait for {"T": "success", "msg": "authenticated"}
3. Send the subscribe message, state SUBSCRIBED
4. Read frames until the connection drops
5. Back off (1s, 2s, 4s, 8s, 16s) and reconnect

After the last reconnect attempt fails the feed goes
FAILED and stays offline until start() is called again.

============================================================
BACKPRESSURE
============================================================
Consumers read from a bounded queue. When it is full the
oldest tick is dropped and counted. Database writes happen
on a separate task so a slow database never stalls the
reader.

============================================================
USAGE
============================================================
```python
feed = MarketDataFeed(FeedConfig.from_env(), cache_sink=TickCacheWriter(db).write)
await feed.start()
async for tick in feed.stream():
    ...
await feed.stop()
```

============================================================
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

import aiohttp

from core.exceptions import FeedAuthenticationError, MessageDecodeError

from .codec import auth_message, decode_frame, subscribe_message
from .types import ControlEvent, FeedConfig, FeedState, FeedStats, MarketTick


logger = logging.getLogger(__name__)


Connector = Callable[[str], Awaitable[Any]]
"""Opens a websocket for a URL. The result must behave like ClientWebSocketResponse."""

TickSink = Callable[[Sequence[MarketTick]], int]
"""Blocking batch writer, run in the default executor."""

SleepFn = Callable[[float], Awaitable[Any]]


def _offer(queue: asyncio.Queue, item: Any) -> bool:
    """Put without blocking, evicting the oldest item when full. Returns True on eviction."""
    evicted = False
    if queue.full():
        try:
            queue.get_nowait()
            evicted = True
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(item)
    return evicted


# ============================================================
# FEED
# ============================================================

class MarketDataFeed:
    """
    Streaming market data client.

    Only one connection attempt is ever in flight: connect,
    read and backoff all run inside a single task.
    """

    def __init__(
        self,
        config: FeedConfig,
        cache_sink: Optional[TickSink] = None,
        connector: Optional[Connector] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._config = config
        self._cache_sink = cache_sink
        self._connector = connector or self._open_websocket
        self._sleep = sleep

        self._state = FeedState.DISCONNECTED
        self._stats = FeedStats()
        self._attempt = 0
        self._stopping = False

        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[Any] = None

        self._ticks: asyncio.Queue = asyncio.Queue(maxsize=config.consumer_queue_size)
        self._cache_queue: asyncio.Queue = asyncio.Queue(maxsize=config.cache_queue_size)

        self._run_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def stats(self) -> FeedStats:
        return self._stats

    @property
    def ticks(self) -> asyncio.Queue:
        """Bounded consumer queue of MarketTick."""
        return self._ticks

    @property
    def reconnect_attempt(self) -> int:
        """Failed attempts since the last successful authentication."""
        return self._attempt

    @property
    def is_running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start (or restart after FAILED) the connection loop."""
        if self.is_running:
            return

        if not self._config.symbols:
            logger.warning("Market data feed started without symbols")

        self._stopping = False
        self._attempt = 0
        self._state = FeedState.DISCONNECTED

        self._run_task = asyncio.create_task(self._run())
        if self._cache_sink is not None and (self._writer_task is None or self._writer_task.done()):
            self._writer_task = asyncio.create_task(self._cache_writer())

        logger.info(f"Market data feed starting: {self._config.url} {list(self._config.symbols)}")

    async def stop(self) -> None:
        """Close the connection, flush cached ticks and stop all tasks."""
        self._stopping = True

        await self._close_ws()
        await self._cancel(self._run_task)
        self._run_task = None

        await self._cancel(self._writer_task)
        self._writer_task = None
        if self._cache_sink is not None:
            await self._flush_cache()

        if self._http is not None:
            await self._http.close()
            self._http = None

        self._state = FeedState.STOPPED
        logger.info(f"Market data feed stopped: {self._stats.to_dict()}")

    async def join(self) -> None:
        """Wait for the connection loop to end (FAILED or stopped)."""
        if self._run_task is not None:
            await asyncio.shield(self._run_task)

    async def stream(self) -> AsyncIterator[MarketTick]:
        """Yield ticks from the consumer queue until cancelled."""
        while True:
            yield await self._ticks.get()

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # --------------------------------------------------------
    # CONNECTION LOOP
    # --------------------------------------------------------

    async def _run(self) -> None:
        while not self._stopping:
            try:
                await self._connect_and_stream()
                if not self._stopping:
                    logger.warning(f"Market data connection closed by server (state {self._state.value})")
            except asyncio.CancelledError:
                raise
            except FeedAuthenticationError as e:
                logger.error(f"Market data authentication failed: {e.message}")
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.error(f"Market data connection error: {e}")
            except Exception as e:
                logger.error(f"Unexpected market data feed error: {e}", exc_info=True)
            finally:
                await self._close_ws()

            if self._stopping:
                break

            self._state = FeedState.DISCONNECTED

            if self._attempt >= self._config.max_reconnect_attempts:
                self._state = FeedState.FAILED
                logger.critical(
                    f"Market data feed max attempts reached "
                    f"({self._config.max_reconnect_attempts}), feed is offline"
                )
                return

            delay = self._config.backoff_delay(self._attempt)
            self._attempt += 1
            self._stats.reconnect_attempts += 1
            logger.info(
                f"Reconnecting market data feed in {delay:.0f}s "
                f"(attempt {self._attempt}/{self._config.max_reconnect_attempts})"
            )
            await self._sleep(delay)

    async def _connect_and_stream(self) -> None:
        self._state = FeedState.CONNECTING
        self._ws = await self._connector(self._config.url)
        self._stats.connections += 1

        self._state = FeedState.AUTHENTICATING
        await self._ws.send_json(auth_message(self._config.api_key, self._config.api_secret))

        async for msg in self._ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                await self._handle_frame(msg.data)

            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.warning(f"Market data websocket closed: {msg.data}")
                break

            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"Market data websocket error: {msg.data}")
                break

    async def _open_websocket(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return await self._http.ws_connect(url, heartbeat=self._config.heartbeat_seconds)

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.debug(f"Error closing market data websocket: {e}")

    # --------------------------------------------------------
    # MESSAGE HANDLING
    # --------------------------------------------------------

    async def _handle_frame(self, raw: Any) -> None:
        self._stats.messages_received += 1
        try:
            events, malformed = decode_frame(raw)
        except MessageDecodeError as e:
            self._stats.malformed_records += 1
            logger.warning(f"Dropping malformed frame: {e.message}")
            return

        self._stats.malformed_records += malformed

        for event in events:
            if isinstance(event, ControlEvent):
                await self._handle_control(event)
            else:
                self._publish(event)

    async def _handle_control(self, event: ControlEvent) -> None:
        if event.is_connected:
            logger.info("Market data venue accepted connection")

        elif event.is_authenticated:
            if self._state == FeedState.AUTHENTICATING:
                await self._ws.send_json(subscribe_message(
                    self._config.symbols,
                    quotes=self._config.subscribe_quotes,
                    trades=self._config.subscribe_trades,
                    bars=self._config.subscribe_bars,
                ))
                self._state = FeedState.SUBSCRIBED
                self._attempt = 0
                logger.info(f"Market data feed authenticated, subscribed to {list(self._config.symbols)}")

        elif event.is_error:
            logger.error(f"Market data venue error {event.code}: {event.message}")
            if self._state == FeedState.AUTHENTICATING:
                raise FeedAuthenticationError(
                    f"Venue rejected authentication ({event.code}): {event.message}",
                    endpoint=self._config.url,
                )

        elif event.tag == "subscription":
            logger.info(f"Market data subscription confirmed: {event.payload}")

    def _publish(self, tick: MarketTick) -> None:
        self._stats.ticks_received += 1
        self._stats.last_tick_at = tick.timestamp

        if _offer(self._ticks, tick):
            self._stats.ticks_dropped += 1
            if self._stats.ticks_dropped % 1000 == 1:
                logger.warning(f"Consumer queue full, dropped {self._stats.ticks_dropped} ticks so far")

        if self._cache_sink is not None and _offer(self._cache_queue, tick):
            self._stats.cache_ticks_dropped += 1

    # --------------------------------------------------------
    # CACHE WRITER
    # --------------------------------------------------------

    def _drain_batch(self, first: Optional[MarketTick] = None) -> List[MarketTick]:
        batch = [first] if first is not None else []
        while len(batch) < self._config.cache_batch_size:
            try:
                batch.append(self._cache_queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _write_batch(self, batch: List[MarketTick]) -> None:
        loop = asyncio.get_running_loop()
        try:
            written = await loop.run_in_executor(None, self._cache_sink, batch)
            self._stats.ticks_cached += written
        except Exception as e:
            self._stats.cache_write_failures += 1
            logger.error(f"Tick cache write failed ({len(batch)} ticks dropped): {e}")

    async def _cache_writer(self) -> None:
        while True:
            first = await self._cache_queue.get()
            await self._write_batch(self._drain_batch(first))

    async def _flush_cache(self) -> None:
        while not self._cache_queue.empty():
            await self._write_batch(self._drain_batch())
