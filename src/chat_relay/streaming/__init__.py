"""
Streaming module for pushing chat events to browsers.

Provides Server-Sent Events push sessions for:
- Real-time delivery of reasoning and answer tokens
- Keep-alive heartbeats and liveness detection
- A registry of live sessions keyed by client ID
"""

from chat_relay.streaming.events import ClientEvent, EventType
from chat_relay.streaming.manager import SessionLimitError, SessionRegistry
from chat_relay.streaming.session import (
    PushSession,
    SessionState,
    SSETransport,
    TransportClosedError,
    generate_client_id,
)
from chat_relay.streaming.sse import (
    HEARTBEAT_FRAME,
    create_sse_response,
    format_sse_event,
)

__all__ = [
    "ClientEvent",
    "EventType",
    "SessionLimitError",
    "SessionRegistry",
    "PushSession",
    "SessionState",
    "SSETransport",
    "TransportClosedError",
    "generate_client_id",
    "HEARTBEAT_FRAME",
    "create_sse_response",
    "format_sse_event",
]
