"""
Message Channel
===============
Keeps the authoritative, push-driven view of one conversation's messages.

A consumer holds at most one live subscription at a time. Every push is a
full snapshot ordered by ``(created_at, id)``; the channel hands it to the
consumer's callback from a dedicated pump task, so pushes may land at any
suspension point of the consumer, including mid-exchange.
"""

import asyncio
import logging
from typing import Callable

from .errors import SubscriptionError
from .gateway import PersistenceGateway, Subscription
from .models import Message, ordered

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[str, list[Message]], None]
ErrorCallback = Callable[[SubscriptionError], None]


class MessageChannel:
    def __init__(
        self,
        gateway: PersistenceGateway,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._gateway = gateway
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._conversation_id: str | None = None
        self._subscription: Subscription | None = None
        self._pump_task: asyncio.Task | None = None
        self.snapshot: list[Message] = []

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def active(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    async def subscribe(self, conversation_id: str) -> None:
        """Open the live stream for ``conversation_id``.

        Already subscribed to the same conversation: no-op. Subscribed to a
        different one: that stream is torn down first.
        """
        if self.active and self._conversation_id == conversation_id:
            return
        if self._subscription is not None:
            await self.unsubscribe()

        subscription = await self._gateway.subscribe_messages(conversation_id)
        self._subscription = subscription
        self._conversation_id = conversation_id
        # The first snapshot is already queued; deliver it before returning so
        # the consumer is populated as soon as it is bound.
        self._deliver(conversation_id, await subscription.__anext__())
        self._pump_task = asyncio.create_task(
            self._pump(conversation_id, self._subscription),
            name=f"message-channel:{conversation_id}",
        )
        logger.info("Subscribed to messages of %s", conversation_id)

    async def unsubscribe(self) -> None:
        if self._subscription is None:
            logger.debug("unsubscribe() with no live subscription; ignoring")
            return
        subscription, task = self._subscription, self._pump_task
        self._subscription = None
        self._pump_task = None
        subscription.close()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Unsubscribed from messages of %s", self._conversation_id)
        self._conversation_id = None
        self.snapshot = []

    def _deliver(self, conversation_id: str, snapshot: list[Message]) -> None:
        self.snapshot = ordered(snapshot)
        logger.debug("Snapshot for %s: %d message(s)", conversation_id, len(self.snapshot))
        self._on_snapshot(conversation_id, list(self.snapshot))

    async def _pump(self, conversation_id: str, subscription: Subscription) -> None:
        try:
            async for snapshot in subscription:
                if subscription is not self._subscription:
                    return
                self._deliver(conversation_id, snapshot)
        except SubscriptionError as exc:
            exc.conversation_id = exc.conversation_id or conversation_id
            logger.warning("Message stream for %s dropped: %s", conversation_id, exc)
            if subscription is self._subscription:
                self._subscription = None
                self._pump_task = None
            if self._on_error is not None:
                self._on_error(exc)
