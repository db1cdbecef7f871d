"""
Chat Session
============
Binds one active conversation, or an ephemeral unsaved session, to user
input and drives the optimistic-update / reconciliation cycle.

States::

    IDLE ──send──▶ SENDING ──▶ COMMITTING ──▶ IDLE
                      │             │
                      └──────▶ ROLLING_BACK ──▶ IDLE

Only one exchange is in flight per session; a second ``send_message`` while
the first is pending returns None without side effects.

The displayed sequence is the last pushed snapshot merged with provisional
(optimistic) messages that the snapshot does not yet contain. Matching is by
correlation id only: the id assigned when a message is first shown is the id
it is persisted under, so identical texts never collide.

An ephemeral session is promoted to a persisted conversation exactly once,
on its first successful exchange. Promotion is reported in the returned
``ExchangeResult``; navigation is left to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable

from .channel import MessageChannel
from .clients import CompletionClient, build_persona_context
from .errors import ChatError, CompletionError, InputError, NotFoundError, PersistenceError
from .events import ChangeNotifier
from .gateway import PersistenceGateway
from .models import Conversation, Message, MonotonicClock, Role, UserProfile, new_message_id, ordered
from .reactions import ReactionLedger
from .store import BulkResult, ConversationStore
from .telemetry import record_exchange_outcome, trace_exchange

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"


@dataclass
class ExchangeResult:
    """Outcome of one ``send_message`` call.

    Attributes:
        user_message: The user turn as displayed and persisted.
        assistant_message: The assistant turn, or None if abandoned before
            the reply arrived.
        conversation_id: Conversation the exchange was committed to.
        promoted: True if this exchange turned an ephemeral session into a
            persisted conversation; the caller should update navigation.
        abandoned: True if the session switched away mid-exchange and the
            late result was discarded.
    """

    user_message: Message
    assistant_message: Message | None
    conversation_id: str | None
    promoted: bool = False
    abandoned: bool = False


class ChatSession:
    """Orchestrates sending, reconciliation, reactions and promotion."""

    def __init__(
        self,
        *,
        user: UserProfile,
        gateway: PersistenceGateway,
        store: ConversationStore,
        completion: CompletionClient,
        ledger: ReactionLedger | None = None,
        clock: MonotonicClock | None = None,
    ) -> None:
        self.user = user
        self._store = store
        self._completion = completion
        self._ledger = ledger or ReactionLedger(gateway)
        self._clock = clock or MonotonicClock()
        self._channel = MessageChannel(gateway, self._on_snapshot, self._on_channel_error)

        self._conversation_id: str | None = None
        self._state = SessionState.IDLE
        self._epoch = 0
        self._confirmed: list[Message] = []
        self._provisional: dict[str, Message] = {}
        self._reply_target: str | None = None
        self._draft = ""
        self._background: set[asyncio.Task] = set()

        self.messages_changed = ChangeNotifier("messages_changed")
        self.last_error: ChatError | None = None

    # ── Read-only view ────────────────────────────────────────

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def is_ephemeral(self) -> bool:
        return self._conversation_id is None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def reply_target(self) -> str | None:
        return self._reply_target

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def persona_context(self) -> str:
        return build_persona_context(self.user)

    @property
    def messages(self) -> list[Message]:
        """Displayed sequence: confirmed snapshot plus unconfirmed optimistic entries."""
        confirmed_ids = {m.id for m in self._confirmed}
        pending = [m for m in self._provisional.values() if m.id not in confirmed_ids]
        return ordered(self._confirmed + pending)

    def resolve_reply(self, message: Message) -> Message | None:
        """The message ``message`` replies to, or None if unset or dangling."""
        if message.reply_to is None:
            return None
        for candidate in self.messages:
            if candidate.id == message.reply_to:
                return candidate
        return None

    # ── Selection and draft ───────────────────────────────────

    def set_reply_target(self, message_id: str | None) -> None:
        self._reply_target = message_id

    def set_draft(self, text: str) -> None:
        self._draft = text

    # ── Navigation ────────────────────────────────────────────

    async def switch_to(self, conversation_id: str | None) -> None:
        """Bind to ``conversation_id``, or to a fresh ephemeral session if None.

        Any in-flight exchange is abandoned: its late result is discarded.
        Provisional entries, the reply selection and an unsent draft are
        discarded too.
        """
        self._epoch += 1
        self._state = SessionState.IDLE
        self._provisional.clear()
        self._confirmed = []
        self._reply_target = None
        self._draft = ""
        await self._channel.unsubscribe()
        self._conversation_id = conversation_id
        if conversation_id is not None:
            await self._channel.subscribe(conversation_id)
        logger.info("Session for %s switched to %s", self.user.uid, conversation_id or "<ephemeral>")
        self._notify()

    async def new_conversation(self) -> Conversation:
        """Eagerly create a conversation and switch to it."""
        conversation = await self._store.create(self.user.uid)
        await self.switch_to(conversation.id)
        return conversation

    # ── Exchange ──────────────────────────────────────────────

    async def send_message(self, text: str, reply_to_id: str | None = None) -> ExchangeResult | None:
        """Send one user turn and commit the exchange.

        Returns:
            The ExchangeResult, or None if another exchange is in flight.

        Raises:
            InputError: Empty or whitespace-only input.
            CompletionError: The reply could not be generated; the user
                message was removed from the display.
            PersistenceError: Promotion or a message write failed; both
                optimistic messages were removed from the display.
        """
        content = (text or "").strip()
        if not content:
            raise InputError("Message cannot be empty.", conversation_id=self._conversation_id)
        if self._state is not SessionState.IDLE:
            logger.info("Exchange already in flight for %s; ignoring send", self._conversation_id)
            return None

        self._state = SessionState.SENDING
        token = self._epoch
        ephemeral = self.is_ephemeral

        user_message = Message(
            id=new_message_id(),
            conversation_id=self._conversation_id or "",
            role=Role.USER,
            content=content,
            created_at=self._clock.now(),
            reply_to=reply_to_id if reply_to_id is not None else self._reply_target,
        )
        self._provisional[user_message.id] = user_message
        self._reply_target = None
        self._draft = ""
        self._notify()

        assistant_message: Message | None = None
        promoted = False
        outcome = "committed"
        try:
            with trace_exchange(self._conversation_id, ephemeral) as span:
                try:
                    reply = await self._completion.complete(content, self.persona_context)
                except ChatError:
                    raise
                except Exception as exc:
                    raise CompletionError(
                        f"Failed to get a response from the AI: {exc}",
                        conversation_id=self._conversation_id,
                    ) from exc

                if token != self._epoch:
                    outcome = "abandoned"
                    logger.info("Discarding late reply for abandoned exchange %s", user_message.id)
                    return ExchangeResult(user_message, None, None, abandoned=True)

                assistant_message = Message(
                    id=new_message_id(),
                    conversation_id=self._conversation_id or "",
                    role=Role.ASSISTANT,
                    content=reply,
                    created_at=self._clock.after(user_message.created_at),
                )
                self._provisional[assistant_message.id] = assistant_message
                self._notify()

                if self.is_ephemeral:
                    conversation = await self._store.create(self.user.uid)
                    if token != self._epoch:
                        outcome = "abandoned"
                        logger.info(
                            "Session switched away during promotion; %s left empty", conversation.id
                        )
                        return ExchangeResult(user_message, None, None, abandoned=True)
                    await self._channel.subscribe(conversation.id)
                    self._conversation_id = conversation.id
                    promoted = True
                    logger.info("Ephemeral session promoted to conversation %s", conversation.id)
                    user_message = self._rebind(user_message)
                    assistant_message = self._rebind(assistant_message)

                target = self._conversation_id
                self._state = SessionState.COMMITTING
                await self._store.append_message(user_message)
                await self._store.append_message(assistant_message)
                await self._touch_quietly(target)
                span.set_attribute("exchange.promoted", promoted)
        except ChatError as exc:
            outcome = "completion_failed" if isinstance(exc, CompletionError) else "persistence_failed"
            exc.conversation_id = exc.conversation_id or self._conversation_id
            if token == self._epoch:
                self._rollback(user_message, assistant_message)
                self.last_error = exc
            raise
        finally:
            record_exchange_outcome(outcome)
            if token == self._epoch:
                self._state = SessionState.IDLE

        if promoted:
            self._spawn(self._store.summarize_title(target, content))

        logger.info(
            "Exchange committed to %s (user=%s, assistant=%s)",
            target, user_message.id, assistant_message.id,
        )
        return ExchangeResult(user_message, assistant_message, target, promoted=promoted)

    def _rebind(self, message: Message) -> Message:
        bound = message.model_copy(update={"conversation_id": self._conversation_id})
        self._provisional[bound.id] = bound
        return bound

    async def _touch_quietly(self, conversation_id: str) -> None:
        try:
            await self._store.touch(conversation_id)
        except PersistenceError as exc:
            logger.warning("Messages written but last_updated bump failed for %s: %s", conversation_id, exc)

    def _rollback(self, user_message: Message, assistant_message: Message | None) -> None:
        self._state = SessionState.ROLLING_BACK
        self._provisional.pop(user_message.id, None)
        if assistant_message is not None:
            self._provisional.pop(assistant_message.id, None)
        logger.info("Rolled back optimistic exchange %s", user_message.id)
        self._notify()

    # ── Reactions ─────────────────────────────────────────────

    async def toggle_reaction(self, message_id: str, kind: str) -> bool | None:
        """Toggle the session user's ``kind`` reaction on a confirmed message.

        Returns:
            True if added, False if removed, None in an ephemeral session.
        """
        if self.is_ephemeral:
            return None
        index = next((i for i, m in enumerate(self._confirmed) if m.id == message_id), None)
        if index is None:
            if message_id in self._provisional:
                raise InputError("Message is not saved yet.", conversation_id=self._conversation_id)
            raise NotFoundError(f"Message {message_id} not found", conversation_id=self._conversation_id)

        original = self._confirmed[index]
        overlaid = original.model_copy(
            update={"reactions": ReactionLedger.apply(original.reactions, kind, self.user.uid)}
        )
        self._replace_confirmed(overlaid)
        self._notify()
        try:
            return await self._ledger.toggle(self._conversation_id, message_id, kind, self.user.uid)
        except ChatError as exc:
            # A snapshot pushed meanwhile already replaced the overlay with
            # authoritative state; only undo the overlay if it is still shown.
            current = next((m for m in self._confirmed if m.id == message_id), None)
            if current is overlaid:
                self._replace_confirmed(
                    current.model_copy(
                        update={"reactions": ReactionLedger.apply(current.reactions, kind, self.user.uid)}
                    )
                )
            self.last_error = exc
            self._notify()
            raise

    def _replace_confirmed(self, message: Message) -> None:
        self._confirmed = [message if m.id == message.id else m for m in self._confirmed]

    # ── Conversation lifecycle (delegates) ────────────────────

    async def set_archived(self, conversation_id: str, archived: bool) -> Conversation:
        return await self._store.set_archived(conversation_id, archived)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._store.delete(conversation_id)
        if conversation_id == self._conversation_id:
            await self.switch_to(None)

    async def delete_all_conversations(self) -> BulkResult:
        result = await self._store.delete_all(self.user.uid)
        if self._conversation_id in result.processed:
            await self.switch_to(None)
        return result

    async def restore_all_conversations(self) -> BulkResult:
        return await self._store.restore_all(self.user.uid)

    # ── Push handling ─────────────────────────────────────────

    def _on_snapshot(self, conversation_id: str, snapshot: list[Message]) -> None:
        if conversation_id != self._conversation_id:
            return
        self._confirmed = snapshot
        for message in snapshot:
            self._provisional.pop(message.id, None)
        self._notify()

    def _on_channel_error(self, error: ChatError) -> None:
        self.last_error = error
        self._notify()

    def _notify(self) -> None:
        self.messages_changed.notify(self._conversation_id or "")

    # ── Background work and teardown ──────────────────────────

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending side effects such as title summarization."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        self._epoch += 1
        await self.drain()
        await self._channel.unsubscribe()
        self._state = SessionState.IDLE
