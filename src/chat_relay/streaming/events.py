"""Client-visible events pushed over a session's event stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Discriminator for the ``type`` field of every pushed event."""

    CONNECTED = "connected"
    USER_MESSAGE = "user_message"
    AI_THINKING = "ai_thinking"
    AI_THINKING_PROCESS_START = "ai_thinking_process_start"
    AI_THINKING_PROCESS_CHUNK = "ai_thinking_process_chunk"
    AI_THINKING_PROCESS_END = "ai_thinking_process_end"
    AI_MESSAGE_CHUNK = "ai_message_chunk"
    SYSTEM = "system"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ClientEvent:
    """An event in a chat turn, as delivered to the browser."""

    type: EventType
    content: Any = None
    timestamp: str = field(default_factory=_utc_timestamp)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if self.type is EventType.CONNECTED:
            return {"type": self.type.value, **self.extra}

        data: dict[str, Any] = {"type": self.type.value}
        if self.content is not None:
            data["content"] = self.content
        data["timestamp"] = self.timestamp
        return data


def connected(client_id: str, message: str = "Connected") -> ClientEvent:
    return ClientEvent(
        EventType.CONNECTED,
        extra={"message": message, "clientId": client_id},
    )


def user_message(text: str) -> ClientEvent:
    return ClientEvent(EventType.USER_MESSAGE, content=text)


def ai_thinking(active: bool) -> ClientEvent:
    return ClientEvent(EventType.AI_THINKING, content=active)


def thinking_process_start() -> ClientEvent:
    return ClientEvent(EventType.AI_THINKING_PROCESS_START)


def thinking_process_chunk(text: str) -> ClientEvent:
    return ClientEvent(EventType.AI_THINKING_PROCESS_CHUNK, content=text)


def thinking_process_end() -> ClientEvent:
    return ClientEvent(EventType.AI_THINKING_PROCESS_END)


def message_chunk(text: str) -> ClientEvent:
    return ClientEvent(EventType.AI_MESSAGE_CHUNK, content=text)


def system(text: str) -> ClientEvent:
    return ClientEvent(EventType.SYSTEM, content=text)
