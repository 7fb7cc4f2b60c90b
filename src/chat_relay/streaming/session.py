"""
Push sessions: one long-lived event stream per browser tab.

A session owns the outbound side of a single ``text/event-stream`` response.
It sends the ``connected`` handshake first, keeps the connection alive with
periodic comment frames and tears itself down when the peer goes away.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

from chat_relay.streaming import events
from chat_relay.streaming.events import ClientEvent
from chat_relay.streaming.sse import HEARTBEAT_FRAME, format_sse_event

if TYPE_CHECKING:
    from chat_relay.streaming.manager import SessionRegistry

logger = logging.getLogger(__name__)

_CLOSE = object()


class SessionState(str, Enum):
    """Push session states. There is no transition back to OPEN."""

    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class TransportClosedError(Exception):
    """Raised when writing to a transport whose response has ended."""

    pass


def generate_client_id() -> str:
    """Millisecond timestamp plus a random suffix, unique under rapid reconnects."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"


class SSETransport:
    """
    Queue-backed outbound side of one event-stream response.

    Writers enqueue complete SSE frames; the response body drains them in
    order via ``frames()``. A frame is only ever enqueued whole, so records
    from different writers never interleave.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._pending_since: float | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def stalled_for(self) -> float:
        """Seconds the oldest undelivered frame has been waiting."""
        if self._pending_since is None:
            return 0.0
        return time.monotonic() - self._pending_since

    async def write(self, frame: str) -> None:
        """
        Queue a frame for delivery.

        Raises:
            TransportClosedError: If the response has already ended
        """
        if self._closed:
            raise TransportClosedError("Event stream is closed")
        if self._pending_since is None:
            self._pending_since = time.monotonic()
        self._queue.put_nowait(frame)

    def close(self) -> None:
        """End the response after frames already queued."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)

    async def frames(
        self,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        poll_interval: float = 1.0,
    ) -> AsyncIterator[str]:
        """
        Yield queued frames until the transport is closed or the peer leaves.

        Args:
            is_disconnected: Optional probe for a peer disconnect, polled
                whenever no frame arrives within ``poll_interval``
            poll_interval: Seconds between disconnect probes while idle
        """
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    logger.debug("Peer disconnected while stream was idle")
                    return
                continue

            if item is _CLOSE:
                self._pending_since = None
                return

            yield item
            self._pending_since = None if self._queue.empty() else time.monotonic()


class PushSession:
    """
    One client's push connection.

    State machine: OPENING -> OPEN -> CLOSING -> CLOSED. Sends and heartbeats
    share a write lock so a single SSE record is never split by another
    writer. Write failures never propagate to callers; the session closes
    itself instead.
    """

    def __init__(
        self,
        transport: SSETransport,
        user_id: int | None = None,
        heartbeat_interval: float = 20.0,
        idle_timeout: float = 60.0,
        retry_ms: int | None = None,
    ) -> None:
        """
        Initialize a push session.

        Args:
            transport: Outbound transport of the event-stream response
            user_id: Authenticated owner of the session
            heartbeat_interval: Seconds between keep-alive frames
            idle_timeout: Close the session if a frame stays undelivered
                this long (0 disables)
            retry_ms: Reconnection delay hint sent with the handshake
        """
        self.transport = transport
        self.user_id = user_id
        self.heartbeat_interval = heartbeat_interval
        self.idle_timeout = idle_timeout
        self.retry_ms = retry_ms
        self.client_id: str | None = None
        self.state = SessionState.OPENING
        self.connected_at = time.time()
        self.events_sent = 0

        self._registry: SessionRegistry | None = None
        self._write_lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    @property
    def connection_duration(self) -> float:
        """Get connection duration in seconds."""
        return time.time() - self.connected_at

    def bind(self, client_id: str, registry: SessionRegistry) -> None:
        """Attach the identifier issued by the registry."""
        self.client_id = client_id
        self._registry = registry

    async def open(self) -> ClientEvent:
        """
        Send the handshake and start the heartbeat.

        The ``connected`` event is the first frame on the transport.

        Returns:
            The handshake event that was sent
        """
        if self.state != SessionState.OPENING:
            raise RuntimeError(f"Cannot open session in state {self.state.value}")
        if self.client_id is None:
            raise RuntimeError("Session must be registered before it is opened")

        handshake = events.connected(self.client_id)
        async with self._write_lock:
            await self.transport.write(format_sse_event(handshake.to_dict(), retry=self.retry_ms))

        self.state = SessionState.OPEN
        if self.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        logger.info(f"Session {self.client_id} opened for user {self.user_id}")
        return handshake

    async def send(self, event: ClientEvent) -> bool:
        """
        Write one event to the client.

        Returns:
            True if the event was queued, False if the session is gone
        """
        if not self.is_open:
            return False

        try:
            async with self._write_lock:
                await self.transport.write(format_sse_event(event.to_dict()))
        except Exception as e:
            logger.warning(f"Failed to send {event.type.value} to client {self.client_id}: {e}")
            await self.close(reason="write failure")
            return False

        self.events_sent += 1
        logger.debug(f"Sent {event.type.value} to client {self.client_id}")
        return True

    async def close(self, reason: str = "closed") -> None:
        """
        Tear the session down. Safe to call any number of times.

        Cancels the heartbeat, ends the transport and removes the session
        from the registry.
        """
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self.state = SessionState.CLOSING

        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        self.transport.close()

        if self._registry is not None and self.client_id is not None:
            self._registry.unregister(self.client_id, session=self)

        self.state = SessionState.CLOSED
        logger.info(
            f"Session {self.client_id} closed ({reason}) after "
            f"{self.connection_duration:.1f}s"
        )

    async def iter_frames(
        self,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        poll_interval: float = 1.0,
    ) -> AsyncIterator[str]:
        """
        Body of the event-stream response.

        Yields queued frames until the session closes or the peer leaves;
        the session is closed however the response ends.
        """
        try:
            async for frame in self.transport.frames(is_disconnected, poll_interval):
                yield frame
        finally:
            await self.close(reason="peer disconnected")

    async def _heartbeat_loop(self) -> None:
        """Send periodic keep-alive frames until the session closes."""
        while self.is_open:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                if not self.is_open:
                    break

                if self.idle_timeout > 0 and self.transport.stalled_for() >= self.idle_timeout:
                    logger.warning(
                        f"Client {self.client_id} stopped reading for "
                        f"{self.transport.stalled_for():.1f}s"
                    )
                    await self.close(reason="idle timeout")
                    break

                async with self._write_lock:
                    await self.transport.write(HEARTBEAT_FRAME)
                logger.debug(f"Heartbeat sent to client {self.client_id}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat to client {self.client_id} failed: {e}")
                await self.close(reason="heartbeat failure")
                break

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "client_id": self.client_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "connected_at": self.connected_at,
            "duration_seconds": round(self.connection_duration, 2),
            "events_sent": self.events_sent,
        }
