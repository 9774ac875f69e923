#!/usr/bin/env python3
"""
Stream Supervisor
Owns the Misskey streaming websocket: subscribes the main channel,
redelivers channel events to registered handlers and reconnects with
Fibonacci backoff (1, 1, 2, 3, 5, 8 ... seconds, capped at 60).

At most one connection and one pending reconnect exist at any time: the
previous connection is closed before every attempt and the only reconnect
timer is the single backoff wait of the run loop.
"""

import asyncio
import json
import uuid
from typing import Optional, Dict, Any, List, Callable, Awaitable, Set

import websockets
import websockets.exceptions

from emoji_gateway.common.logging import setup_logging
from emoji_gateway.common.metrics import GatewayMetrics
from emoji_gateway.common import stream_events

logger = setup_logging("stream")

MAX_RECONNECT_DELAY = 60  # seconds
PING_INTERVAL = 20
PING_TIMEOUT = 20

EventHandler = Callable[[Any], Awaitable[None]]


def fibonacci_backoff(attempt: int, max_delay: int = MAX_RECONNECT_DELAY) -> int:
    """Delay in seconds before reconnect attempt `attempt` (1-based)."""
    a, b = 1, 1
    for _ in range(max(attempt, 1) - 1):
        if a >= max_delay:
            break
        a, b = b, a + b
    return min(a, max_delay)


class StreamSupervisor:
    """Long-lived streaming connection with automatic reconnect."""

    def __init__(
        self,
        url: str,
        connect: Optional[Callable[..., Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_delay: int = MAX_RECONNECT_DELAY,
        metrics: Optional[GatewayMetrics] = None,
        shutdown_grace: float = 10.0,
    ):
        """
        Args:
            url: wss:// streaming URL including the access token
            connect: Websocket connect factory, websockets.connect by default
            sleep: Awaitable used for the backoff wait
            max_delay: Backoff cap in seconds
            metrics: Shared gateway metrics
            shutdown_grace: Seconds stop() waits for in-flight handlers
        """
        self.url = url
        self._connect = connect or websockets.connect
        self._sleep = sleep
        self.max_delay = max_delay
        self.metrics = metrics or GatewayMetrics()
        self.shutdown_grace = shutdown_grace

        self._handlers: Dict[str, List[EventHandler]] = {}
        self._running = False
        self._connected = False
        self._connection = None
        self._reconnect_wait: Optional[asyncio.Future] = None
        self._reconnect_attempt = 0
        self._channel_id = str(uuid.uuid4())
        self._inflight: Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def reconnect_attempt(self) -> int:
        return self._reconnect_attempt

    # --- Handlers ---

    def on(self, event_type: str):
        """Decorator to register a handler for a channel or lifecycle event."""
        def decorator(func: EventHandler):
            self._handlers.setdefault(event_type, []).append(func)
            return func
        return decorator

    async def _emit_lifecycle(self, event_type: str):
        for handler in self._handlers.get(event_type, []):
            try:
                await handler(None)
            except Exception as e:
                logger.error(f"Handler error for {event_type}: {e}", exc_info=True)

    def _spawn(self, event_type: str, payload: Any):
        """Run each handler as its own task so one event never blocks the socket."""
        for handler in self._handlers.get(event_type, []):
            task = asyncio.create_task(handler(payload))
            self._inflight.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Unhandled error in event handler: {exc}", exc_info=exc)

    async def drain(self):
        """Wait for all in-flight handler tasks."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # --- Frames ---

    def _handle_frame(self, raw: Any):
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-JSON frame: {str(raw)[:100]}")
            return

        if not isinstance(frame, dict) or frame.get("type") != stream_events.FRAME_CHANNEL:
            logger.debug(f"Ignoring frame of type {frame.get('type') if isinstance(frame, dict) else None}")
            return

        body = frame.get("body")
        if not isinstance(body, dict) or body.get("id") != self._channel_id:
            logger.debug("Ignoring frame for unknown channel")
            return

        event_type = body.get("type")
        if event_type not in self._handlers:
            logger.debug(f"No handler for channel event {event_type}")
            return

        self._spawn(event_type, body.get("body"))

    # --- Connection ---

    async def _close_connection(self):
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"Error closing previous connection: {e}")

    def _cancel_reconnect(self):
        if self._reconnect_wait is not None and not self._reconnect_wait.done():
            self._reconnect_wait.cancel()
        self._reconnect_wait = None

    async def _connect_and_listen(self):
        logger.info("Connecting to Misskey Streaming API...")
        async with self._connect(self.url, ping_interval=PING_INTERVAL, ping_timeout=PING_TIMEOUT) as ws:
            self._connection = ws
            # stop() may have run while the handshake was in progress
            if not self._running:
                logger.info("Supervisor stopped during connect, closing new connection")
                return

            await ws.send(json.dumps({
                "type": stream_events.FRAME_CONNECT,
                "body": {"channel": stream_events.CHANNEL_MAIN, "id": self._channel_id, "params": {}},
            }))

            self._connected = True
            self._reconnect_attempt = 0
            self.metrics.set("emoji_bot_stream_connected", 1)
            logger.info("Connected to Misskey Streaming API")
            await self._emit_lifecycle(stream_events.CONNECTED)

            async for raw in ws:
                self._handle_frame(raw)

    async def run(self):
        """Connect and keep reconnecting until stop() is called."""
        self._running = True
        while self._running:
            # Never hold two sockets or two timers
            self._cancel_reconnect()
            await self._close_connection()

            try:
                await self._connect_and_listen()
                if self._running:
                    logger.warning("Streaming connection closed by server")
            except asyncio.CancelledError:
                raise
            except websockets.exceptions.ConnectionClosed as e:
                if self._running:
                    logger.warning(f"Disconnected from Misskey Streaming API: {e}")
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                if self._running:
                    logger.warning(f"Streaming connection failed: {e}")
            except Exception as e:
                if self._running:
                    logger.error(f"Streaming error: {e}", exc_info=True)
            finally:
                await self._close_connection()
                if self._connected:
                    self._connected = False
                    self.metrics.set("emoji_bot_stream_connected", 0)
                    await self._emit_lifecycle(stream_events.DISCONNECTED)

            if not self._running:
                break

            self._reconnect_attempt += 1
            delay = fibonacci_backoff(self._reconnect_attempt, self.max_delay)
            self.metrics.inc("emoji_bot_stream_reconnects_total")
            logger.info(f"Scheduling reconnect attempt {self._reconnect_attempt} in {delay}s",
                        extra={"attempt": self._reconnect_attempt, "delay": delay})

            self._reconnect_wait = asyncio.ensure_future(self._sleep(delay))
            try:
                await self._reconnect_wait
            except asyncio.CancelledError:
                if self._running:
                    raise
                break
            finally:
                self._reconnect_wait = None

        logger.info("Stream supervisor stopped")

    async def stop(self):
        """Stop reconnecting, close the socket and let in-flight handlers finish."""
        self._running = False
        self._cancel_reconnect()
        await self._close_connection()

        if self._inflight:
            pending = list(self._inflight)
            done, still_running = await asyncio.wait(pending, timeout=self.shutdown_grace)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"Cancelled {len(still_running)} in-flight handlers on shutdown")
                await asyncio.gather(*still_running, return_exceptions=True)
