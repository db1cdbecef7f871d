"""
In-Memory Gateway
=================
Process-local backend. Each operation completes without yielding between
its read and its write, so on a single event loop every mutation is atomic;
that is what makes ``toggle_reaction`` and the cascading delete safe here.
"""

import logging
from typing import Any

from ..errors import NotFoundError, PersistenceError
from ..models import Conversation, Message, ordered
from .base import PersistenceGateway

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"title", "archived"})


class InMemoryGateway(PersistenceGateway):
    """Dictionary-backed gateway with push subscriptions."""

    def __init__(self) -> None:
        super().__init__()
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, dict[str, Message]] = {}

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        if conversation.id in self._conversations:
            raise PersistenceError(
                f"Conversation {conversation.id} already exists",
                conversation_id=conversation.id,
                retryable=False,
            )
        stored = conversation.model_copy(update={"last_updated": self.now()})
        self._conversations[stored.id] = stored
        self._messages[stored.id] = {}
        await self._publish_conversations(stored.owner_id)
        return stored

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def list_conversations(self, owner_id: str, archived: bool) -> list[Conversation]:
        found = [
            c for c in self._conversations.values()
            if c.owner_id == owner_id and c.archived == archived
        ]
        return sorted(found, key=lambda c: (c.last_updated, c.id), reverse=True)

    async def update_conversation(
        self, conversation_id: str, *, touch: bool = False, **fields: Any
    ) -> Conversation:
        current = self._require(conversation_id)
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise PersistenceError(
                f"Cannot update fields: {', '.join(sorted(unknown))}",
                conversation_id=conversation_id,
                retryable=False,
            )
        if touch:
            fields["last_updated"] = self.clock.after(current.last_updated)
        updated = current.model_copy(update=fields)
        self._conversations[conversation_id] = updated
        await self._publish_conversations(updated.owner_id)
        return updated

    async def delete_conversation(self, conversation_id: str) -> None:
        conversation = self._require(conversation_id)
        # Both removals happen in one synchronous step.
        del self._conversations[conversation_id]
        removed = self._messages.pop(conversation_id, {})
        logger.debug("Deleted conversation %s with %d message(s)", conversation_id, len(removed))
        await self._publish_messages(conversation_id)
        await self._publish_conversations(conversation.owner_id)

    async def add_message(self, message: Message) -> Message:
        self._require(message.conversation_id)
        bucket = self._messages[message.conversation_id]
        if message.id in bucket:
            raise PersistenceError(
                f"Message {message.id} already exists",
                conversation_id=message.conversation_id,
                retryable=False,
            )
        stored = message.model_copy(deep=True)
        bucket[stored.id] = stored
        await self._publish_messages(message.conversation_id)
        return stored

    async def list_messages(self, conversation_id: str) -> list[Message]:
        bucket = self._messages.get(conversation_id, {})
        return ordered([m.model_copy(deep=True) for m in bucket.values()])

    async def toggle_reaction(
        self, conversation_id: str, message_id: str, kind: str, user_id: str
    ) -> bool:
        self._require(conversation_id)
        message = self._messages[conversation_id].get(message_id)
        if message is None:
            raise NotFoundError(
                f"Message {message_id} not found", conversation_id=conversation_id
            )
        users = message.reactions.setdefault(kind, set())
        if user_id in users:
            users.discard(user_id)
            present = False
        else:
            users.add(user_id)
            present = True
        if not users:
            del message.reactions[kind]
        await self._publish_messages(conversation_id)
        return present

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                conversation_id=conversation_id,
            )
        return conversation
