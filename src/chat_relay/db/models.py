"""SQLAlchemy models for users and chat history."""

from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chat_relay.db.base import Base


class User(Base):
    """A registered account."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="user", cascade="all, delete-orphan"
    )

    def to_public_dict(self) -> dict:
        """Fields safe to return to clients."""
        return {"id": self.id, "username": self.username, "email": self.email}


class Message(Base):
    """One side of a chat turn."""

    __tablename__ = "messages"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # "user" or "ai"
    content: Mapped[str] = mapped_column(Text, nullable=False)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Relationship
    user: Mapped["User"] = relationship("User", back_populates="messages")

    __table_args__ = (Index("ix_messages_user_created", "user_id", "created_at"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "reasoning": self.reasoning,
            "client_id": self.client_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
