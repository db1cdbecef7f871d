"""
SQL Gateway
===========
``PersistenceGateway`` over async SQLAlchemy (PostgreSQL via asyncpg, SQLite
via aiosqlite).

Reactions live in their own table with one row per (message, kind, user), so
a toggle is a delete-or-insert of a single row inside one transaction. Two
users toggling the same message touch different rows and cannot overwrite
each other. Push snapshots are fanned out in-process after each commit.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFoundError, PersistenceError
from ..models import Conversation, Message, Role
from .base import PersistenceGateway
from .orm import ConversationRow, MessageRow, ReactionRow

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"title", "archived"})


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        title=row.title,
        owner_id=row.owner_id,
        archived=row.archived,
        last_updated=_aware(row.last_updated),
    )


def _to_message(row: MessageRow, reactions: dict[str, set[str]] | None = None) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        role=Role(row.role),
        content=row.content,
        created_at=_aware(row.created_at),
        reactions=reactions or {},
        reply_to=row.reply_to,
    )


class SqlGateway(PersistenceGateway):
    """Relational gateway; one short transaction per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, conversation_id: str | None = None) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    yield db
        except IntegrityError as exc:
            raise PersistenceError(
                f"Write conflicts with existing data: {exc.orig}",
                conversation_id=conversation_id,
                retryable=False,
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Database operation failed: {exc}", conversation_id=conversation_id
            ) from exc

    async def _require(self, db: AsyncSession, conversation_id: str) -> ConversationRow:
        row = await db.get(ConversationRow, conversation_id)
        if row is None:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                conversation_id=conversation_id,
            )
        return row

    # ── Conversations ─────────────────────────────────────────

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        async with self._transaction(conversation.id) as db:
            row = ConversationRow(
                id=conversation.id,
                title=conversation.title,
                owner_id=conversation.owner_id,
                archived=conversation.archived,
                last_updated=self.now(),
            )
            db.add(row)
            await db.flush()
            created = _to_conversation(row)
        logger.info("Created conversation: %s", created.id)
        await self._publish_conversations(created.owner_id)
        return created

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        async with self._transaction(conversation_id) as db:
            row = await db.get(ConversationRow, conversation_id)
            return _to_conversation(row) if row is not None else None

    async def list_conversations(self, owner_id: str, archived: bool) -> list[Conversation]:
        async with self._transaction() as db:
            result = await db.execute(
                select(ConversationRow)
                .where(ConversationRow.owner_id == owner_id)
                .where(ConversationRow.archived == archived)
                .order_by(ConversationRow.last_updated.desc(), ConversationRow.id.desc())
            )
            return [_to_conversation(row) for row in result.scalars().all()]

    async def update_conversation(
        self, conversation_id: str, *, touch: bool = False, **fields: Any
    ) -> Conversation:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise PersistenceError(
                f"Cannot update fields: {', '.join(sorted(unknown))}",
                conversation_id=conversation_id,
                retryable=False,
            )
        async with self._transaction(conversation_id) as db:
            row = await self._require(db, conversation_id)
            for name, value in fields.items():
                setattr(row, name, value)
            if touch:
                row.last_updated = self.clock.after(_aware(row.last_updated))
            await db.flush()
            updated = _to_conversation(row)
        await self._publish_conversations(updated.owner_id)
        return updated

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._transaction(conversation_id) as db:
            row = await self._require(db, conversation_id)
            owner_id = row.owner_id
            await db.execute(
                delete(ReactionRow).where(ReactionRow.conversation_id == conversation_id)
            )
            result = await db.execute(
                delete(MessageRow).where(MessageRow.conversation_id == conversation_id)
            )
            await db.delete(row)
        logger.info(
            "Deleted conversation %s with %d message(s)", conversation_id, result.rowcount
        )
        await self._publish_messages(conversation_id)
        await self._publish_conversations(owner_id)

    # ── Messages ──────────────────────────────────────────────

    async def add_message(self, message: Message) -> Message:
        async with self._transaction(message.conversation_id) as db:
            await self._require(db, message.conversation_id)
            db.add(
                MessageRow(
                    id=message.id,
                    conversation_id=message.conversation_id,
                    role=message.role.value,
                    content=message.content,
                    created_at=message.created_at,
                    reply_to=message.reply_to,
                )
            )
            await db.flush()
            for kind, users in message.reactions.items():
                for user_id in users:
                    db.add(
                        ReactionRow(
                            message_id=message.id,
                            kind=kind,
                            user_id=user_id,
                            conversation_id=message.conversation_id,
                        )
                    )
        await self._publish_messages(message.conversation_id)
        return message.model_copy(deep=True)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        async with self._transaction(conversation_id) as db:
            rows = await db.execute(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.created_at, MessageRow.id)
            )
            reactions = await db.execute(
                select(ReactionRow).where(ReactionRow.conversation_id == conversation_id)
            )
            by_message: dict[str, dict[str, set[str]]] = {}
            for reaction in reactions.scalars().all():
                by_message.setdefault(reaction.message_id, {}).setdefault(
                    reaction.kind, set()
                ).add(reaction.user_id)
            return [_to_message(row, by_message.get(row.id)) for row in rows.scalars().all()]

    async def toggle_reaction(
        self, conversation_id: str, message_id: str, kind: str, user_id: str
    ) -> bool:
        async with self._transaction(conversation_id) as db:
            message = await db.get(MessageRow, message_id)
            if message is None or message.conversation_id != conversation_id:
                raise NotFoundError(
                    f"Message {message_id} not found", conversation_id=conversation_id
                )
            result = await db.execute(
                delete(ReactionRow)
                .where(ReactionRow.message_id == message_id)
                .where(ReactionRow.kind == kind)
                .where(ReactionRow.user_id == user_id)
            )
            present = result.rowcount == 0
            if present:
                db.add(
                    ReactionRow(
                        message_id=message_id,
                        kind=kind,
                        user_id=user_id,
                        conversation_id=conversation_id,
                    )
                )
        await self._publish_messages(conversation_id)
        return present
