"""
ORM Models
==========
SQLAlchemy 2.0 async ORM models backing ``SqlGateway``.

Tables:
    - conversations: Chat conversations with owner, title and archive flag
    - messages: Turns within a conversation, keyed by client correlation id
    - message_reactions: One row per (message, reaction kind, user)
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class ConversationRow(Base):
    """A chat conversation."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class MessageRow(Base):
    """A single message within a conversation."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_order", "conversation_id", "created_at", "id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # "user" | "assistant"
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reply_to: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ReactionRow(Base):
    """Membership of one user in one reaction set of one message."""

    __tablename__ = "message_reactions"

    message_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
