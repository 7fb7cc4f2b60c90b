"""
Repositories over the database manager.

UserRepository is the identity store consulted by the auth gate and the
credential endpoints; MessageRepository records chat history.
"""

import logging

from sqlalchemy import select

from chat_relay.db.manager import DatabaseManager
from chat_relay.db.models import Message, User

logger = logging.getLogger(__name__)


class UserRepository:
    """Lookup and creation of user accounts."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    def find_user_by_id(self, user_id: int) -> User | None:
        with self._db.get_session() as session:
            return session.get(User, user_id)

    def find_user_by_username(self, username: str) -> User | None:
        with self._db.get_session() as session:
            return session.scalar(select(User).where(User.username == username))

    def create_user(self, username: str, password_hash: str, email: str | None = None) -> User:
        """
        Insert a new user.

        Raises:
            sqlalchemy.exc.IntegrityError: If the username is already taken
        """
        with self._db.get_session() as session:
            user = User(username=username, password_hash=password_hash, email=email)
            session.add(user)
            session.flush()
            logger.info(f"Created user {username} (ID: {user.id})")
            return user


class MessageRepository:
    """Append-only chat history."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    def save_message(
        self,
        user_id: int,
        role: str,
        content: str,
        client_id: str | None = None,
        reasoning: str | None = None,
    ) -> int:
        """
        Store one message.

        Returns:
            The new message ID
        """
        with self._db.get_session() as session:
            message = Message(
                user_id=user_id,
                role=role,
                content=content,
                reasoning=reasoning,
                client_id=client_id,
            )
            session.add(message)
            session.flush()
            return message.id

    def get_history(self, user_id: int, limit: int = 50) -> list[Message]:
        """Get a user's most recent messages, oldest first."""
        with self._db.get_session() as session:
            rows = session.scalars(
                select(Message)
                .where(Message.user_id == user_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            ).all()
            return list(reversed(rows))
