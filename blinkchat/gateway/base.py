"""
Persistence Gateway
===================
Abstract document-store interface with real-time push subscriptions.

Two record kinds are stored: conversations, and messages scoped per
conversation. Subscriptions deliver full, freshly ordered snapshots (never
diffs): one immediately on open, then one after every write that touches the
subscribed filter.

Concrete backends implement the abstract CRUD methods; the snapshot fan-out
lives here so every backend pushes the same way.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Any, Hashable

from ..errors import SubscriptionError
from ..models import Conversation, Message, MonotonicClock

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """A live stream of snapshots for one filter.

    Iterate with ``async for``; iteration ends when the subscription is
    closed and raises ``SubscriptionError`` if the stream is dropped.
    """

    def __init__(self, gateway: "PersistenceGateway", topic: Hashable) -> None:
        self.topic = topic
        self._gateway = gateway
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, snapshot: list[Any]) -> None:
        if not self.closed:
            self._queue.put_nowait(snapshot)

    def fail(self, error: SubscriptionError) -> None:
        if not self.closed:
            self._queue.put_nowait(error)
            self._detach()

    def close(self) -> None:
        if self.closed:
            return
        self._queue.put_nowait(_CLOSED)
        self._detach()

    def _detach(self) -> None:
        self.closed = True
        self._gateway._discard(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> list[Any]:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, SubscriptionError):
            raise item
        return item


class PersistenceGateway(ABC):
    """Ordered, queryable document store with push subscriptions."""

    def __init__(self) -> None:
        self.clock = MonotonicClock()
        self._subscriptions: dict[Hashable, set[Subscription]] = defaultdict(set)

    def now(self) -> datetime:
        """Server-assigned timestamp; strictly increasing per gateway."""
        return self.clock.now()

    # ── Conversations ─────────────────────────────────────────

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    @abstractmethod
    async def list_conversations(self, owner_id: str, archived: bool) -> list[Conversation]:
        """Conversations for one owner and bucket, most recently updated first."""

    @abstractmethod
    async def update_conversation(
        self, conversation_id: str, *, touch: bool = False, **fields: Any
    ) -> Conversation:
        """Targeted field update. ``touch`` also bumps ``last_updated``.

        Raises:
            NotFoundError: If the conversation does not exist.
        """

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete the conversation and all of its messages as one batch."""

    # ── Messages ──────────────────────────────────────────────

    @abstractmethod
    async def add_message(self, message: Message) -> Message:
        """Write a message under ``message.conversation_id``.

        The client-supplied ``id`` and ``created_at`` are kept as-is.
        """

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Messages ascending by ``created_at``, ties broken by ``id``."""

    @abstractmethod
    async def toggle_reaction(
        self, conversation_id: str, message_id: str, kind: str, user_id: str
    ) -> bool:
        """Atomically add or remove ``user_id`` from a reaction set.

        Returns:
            True if the user is now in the set, False if removed.
        """

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.close()

    # ── Subscriptions ─────────────────────────────────────────

    async def subscribe_messages(self, conversation_id: str) -> Subscription:
        sub = self._open(("messages", conversation_id))
        sub.push(await self.list_messages(conversation_id))
        return sub

    async def subscribe_conversations(self, owner_id: str, archived: bool) -> Subscription:
        sub = self._open(("conversations", owner_id, archived))
        sub.push(await self.list_conversations(owner_id, archived))
        return sub

    def _open(self, topic: Hashable) -> Subscription:
        sub = Subscription(self, topic)
        self._subscriptions[topic].add(sub)
        logger.debug("Subscription opened: %s", topic)
        return sub

    def _discard(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.topic)
        if subs is not None:
            subs.discard(sub)
            if not subs:
                del self._subscriptions[sub.topic]
        logger.debug("Subscription closed: %s", sub.topic)

    async def _publish_messages(self, conversation_id: str) -> None:
        subs = self._subscriptions.get(("messages", conversation_id))
        if not subs:
            return
        await self._fan_out(subs, lambda: self.list_messages(conversation_id))

    async def _publish_conversations(self, owner_id: str) -> None:
        for archived in (False, True):
            subs = self._subscriptions.get(("conversations", owner_id, archived))
            if subs:
                await self._fan_out(
                    subs, lambda a=archived: self.list_conversations(owner_id, a)
                )

    async def _fan_out(self, subs: set[Subscription], load) -> None:
        try:
            snapshot = await load()
        except Exception as exc:
            logger.warning("Snapshot load failed; dropping %d subscription(s): %s", len(subs), exc)
            for sub in list(subs):
                sub.fail(SubscriptionError(f"Push channel dropped: {exc}"))
            return
        for sub in list(subs):
            sub.push(list(snapshot))
