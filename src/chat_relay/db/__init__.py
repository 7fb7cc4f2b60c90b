"""Database package for users and chat history."""

from chat_relay.db.base import Base
from chat_relay.db.manager import DatabaseManager
from chat_relay.db.models import Message, User
from chat_relay.db.repository import MessageRepository, UserRepository

__all__ = [
    "Base",
    "DatabaseManager",
    "Message",
    "User",
    "MessageRepository",
    "UserRepository",
]
