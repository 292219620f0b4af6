"""In-process broadcaster — channel → live WebSocket connections.

Learn: Sheet ids are channels (one per sheet), job updates use
"job:{job_id}". The broadcaster owns the connection sets:

1. subscribe() registers a connection and returns a Subscription handle
2. Subscription.close() removes it (idempotent — runs exactly once no
   matter whether the client closed, the network dropped, a send failed
   or the server is shutting down)
3. A channel whose set becomes empty is dropped from the map immediately

Every subscription has its own outbox (an asyncio.Queue) drained by one
writer task. publish() only drops the serialized message into each open
outbox and returns, so a webhook never waits on a socket and a slow
client lags alone. Messages reach each connection in publish order.

A client that can't keep up is disconnected, never skipped: a send that
exceeds send_timeout, or an outbox that fills up, closes the connection
with 1013 (try again later) so the client reconnects and refetches
instead of silently missing an update.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol

import structlog
from starlette.websockets import WebSocketState

logger = structlog.get_logger()

SLOW_CONSUMER_CLOSE_CODE = 1013
SHUTDOWN_CLOSE_CODE = 1001


class Connection(Protocol):
    """What the broadcaster needs from a socket (Starlette's WebSocket fits)."""

    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


def _is_open(connection: Connection) -> bool:
    return (
        connection.client_state == WebSocketState.CONNECTED
        and connection.application_state == WebSocketState.CONNECTED
    )


class Subscription:
    """Handle for one connection on one channel, with its outbox."""

    def __init__(
        self,
        broadcaster: "Broadcaster",
        channel: str,
        connection: Connection,
        outbox_size: int,
    ):
        self.broadcaster = broadcaster
        self.channel = channel
        self.connection = connection
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: dict[str, Any]) -> bool:
        """Queue one message for this connection only (acks, initial state)."""
        return self._enqueue(json.dumps(message, default=str))

    async def flush(self) -> None:
        """Wait until everything queued so far was sent (or the subscription closed)."""
        await self._outbox.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.broadcaster._remove(self.channel, self.connection)

        # Unsent messages are discarded so flush() never waits on them
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

        writer, self._writer = self._writer, None
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()

    # ─── Outbox ────────────────────────────────────────────

    def _enqueue(self, payload: str) -> bool:
        if self._closed or not _is_open(self.connection):
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(
                "broadcast.outbox_full",
                channel=self.channel,
                queued=self._outbox.qsize(),
            )
            self._disconnect_slow_consumer()
            return False
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"ws-writer-{self.channel}"
            )
        return True

    async def _write_loop(self) -> None:
        timeout = self.broadcaster.send_timeout
        while not self._closed:
            payload = await self._outbox.get()
            try:
                await asyncio.wait_for(
                    self.connection.send_text(payload), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning("broadcast.send_timeout", channel=self.channel)
                self._disconnect_slow_consumer()
            except Exception as e:
                # Dead socket — unsubscribe, the endpoint's read loop ends it
                logger.warning("broadcast.send_failed", channel=self.channel, error=str(e))
                self.close()
            finally:
                # close() settles the queued items, this one is ours
                self._outbox.task_done()

    def _disconnect_slow_consumer(self) -> None:
        self.close()
        self.broadcaster._close_later(self.connection, SLOW_CONSUMER_CLOSE_CODE)


class Broadcaster:
    """Fan-out of JSON messages to every connection on a channel."""

    def __init__(self, send_timeout: float = 5.0, outbox_size: int = 256):
        self.send_timeout = send_timeout
        self.outbox_size = outbox_size
        self._channels: dict[str, dict[Connection, Subscription]] = {}
        self._closing: set[asyncio.Task] = set()

    # ─── Subscriptions ─────────────────────────────────────

    def subscribe(self, channel: str, connection: Connection) -> Subscription:
        """Register a connection under a channel. Re-subscribing returns the existing handle."""
        subs = self._channels.setdefault(channel, {})
        existing = subs.get(connection)
        if existing is not None:
            return existing
        sub = Subscription(self, channel, connection, self.outbox_size)
        subs[connection] = sub
        logger.debug("broadcast.subscribed", channel=channel, subscribers=len(subs))
        return sub

    @asynccontextmanager
    async def subscription(
        self, channel: str, connection: Connection
    ) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of a block; always unsubscribes on exit."""
        sub = self.subscribe(channel, connection)
        try:
            yield sub
        finally:
            sub.close()

    def _remove(self, channel: str, connection: Connection) -> None:
        subs = self._channels.get(channel)
        if subs is None:
            return
        subs.pop(connection, None)
        if not subs:
            del self._channels[channel]
        logger.debug("broadcast.unsubscribed", channel=channel, subscribers=len(subs))

    def channels(self) -> list[str]:
        return list(self._channels)

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, {}))

    def total_subscribers(self) -> int:
        return sum(len(subs) for subs in self._channels.values())

    # ─── Publishing ────────────────────────────────────────

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """Queue a message for every open connection on a channel.

        Returns how many outboxes accepted it. Never waits for a socket;
        closed connections are skipped, failures are logged, never raised.
        """
        subs = self._channels.get(channel)
        if not subs:
            return 0

        payload = json.dumps(message, default=str)
        # Snapshot — an overflowing subscriber removes itself mid-loop
        return sum(sub._enqueue(payload) for sub in list(subs.values()))

    async def drain(self, channel: Optional[str] = None) -> None:
        """Wait until queued messages are sent (one channel or all)."""
        if channel is not None:
            subs = list(self._channels.get(channel, {}).values())
        else:
            subs = [s for c in self._channels.values() for s in c.values()]
        await asyncio.gather(*(sub.flush() for sub in subs))

    # ─── Shutdown ──────────────────────────────────────────

    def _close_later(self, connection: Connection, code: int) -> None:
        task = asyncio.create_task(self._close_connection(connection, code))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_connection(self, connection: Connection, code: int) -> None:
        if not _is_open(connection):
            return
        try:
            await asyncio.wait_for(connection.close(code=code), timeout=self.send_timeout)
        except Exception as e:
            logger.warning("broadcast.close_failed", code=code, error=str(e))

    async def close_all(self) -> None:
        """Close every connection and empty the map (server shutdown)."""
        subs = [s for channel in list(self._channels.values()) for s in channel.values()]
        for sub in subs:
            sub.close()
        connections = {sub.connection for sub in subs}
        for connection in connections:
            await self._close_connection(connection, SHUTDOWN_CLOSE_CODE)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        logger.info("broadcast.closed_all", connections=len(connections))
