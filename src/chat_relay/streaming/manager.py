"""
Session registry for push connections.

Maps client identifiers to open push sessions. This is the only state
shared between sessions. Registration is serialized by a lock; removal
never awaits, so it cannot be interrupted by cancellation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from chat_relay.streaming.events import ClientEvent
from chat_relay.streaming.session import PushSession, generate_client_id

logger = logging.getLogger(__name__)


class SessionLimitError(Exception):
    """Raised when the registry refuses a session at capacity."""

    pass


class SessionRegistry:
    """
    Manages push sessions keyed by client ID.

    Provides:
    - Registration with collision-free client ID issuance
    - Lookup and targeted sends that treat a missing session as a no-op
    - Connection statistics
    - Shutdown of every open session
    """

    def __init__(self, max_sessions: int = 1000) -> None:
        """
        Initialize the session registry.

        Args:
            max_sessions: Maximum concurrent sessions allowed
        """
        self.max_sessions = max_sessions
        self._sessions: dict[str, PushSession] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        """Get current number of sessions."""
        return len(self._sessions)

    @property
    def is_at_capacity(self) -> bool:
        """Check if session limit is reached."""
        return self.connection_count >= self.max_sessions

    async def register(self, session: PushSession) -> str:
        """
        Add a session and issue its client ID.

        Args:
            session: A session that has not been opened yet

        Returns:
            The client ID now bound to the session

        Raises:
            SessionLimitError: If the registry is at capacity
        """
        async with self._lock:
            if self.is_at_capacity:
                logger.warning(f"Session rejected: at capacity ({self.max_sessions})")
                raise SessionLimitError(f"Server at capacity ({self.max_sessions} sessions)")

            client_id = generate_client_id()
            while client_id in self._sessions:
                client_id = generate_client_id()

            session.bind(client_id, self)
            self._sessions[client_id] = session

        logger.info(f"Client {client_id} registered, {self.connection_count} active")
        return client_id

    def lookup(self, client_id: str) -> PushSession | None:
        """
        Get the session for a client ID.

        Returns:
            The session, or None when the peer is gone
        """
        return self._sessions.get(client_id)

    def unregister(self, client_id: str, session: PushSession | None = None) -> bool:
        """
        Remove a client ID from the registry.

        Runs without awaiting, so a session torn down by a cancelled
        response is always removed, even while ``register`` holds the lock.

        Args:
            client_id: The client identifier
            session: If given, only remove the entry when it still maps to
                this session

        Returns:
            True if an entry was removed
        """
        current = self._sessions.get(client_id)
        if current is None or (session is not None and current is not session):
            return False
        del self._sessions[client_id]

        logger.info(f"Client {client_id} unregistered, {self.connection_count} active")
        return True

    async def send(self, client_id: str, event: ClientEvent) -> bool:
        """
        Send an event to one client.

        A missing client is not an error: the event is dropped and the
        caller carries on.

        Returns:
            True if the event was handed to the client's transport
        """
        session = self.lookup(client_id)
        if session is None:
            logger.warning(f"Client {client_id} not found, dropping {event.type.value} event")
            return False
        return await session.send(event)

    def get_all_sessions(self) -> list[PushSession]:
        """Get all registered sessions."""
        return list(self._sessions.values())

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        states: dict[str, int] = {}
        users: set[Any] = set()
        for session in self._sessions.values():
            state = session.state.value
            states[state] = states.get(state, 0) + 1
            users.add(session.user_id)

        return {
            "total_connections": self.connection_count,
            "max_connections": self.max_sessions,
            "at_capacity": self.is_at_capacity,
            "distinct_users": len(users),
            "states": states,
        }

    async def stop(self) -> None:
        """Close every registered session."""
        async with self._lock:
            sessions = list(self._sessions.values())

        for session in sessions:
            await session.close(reason="server shutdown")

        logger.info(f"Session registry stopped, closed {len(sessions)} sessions")
