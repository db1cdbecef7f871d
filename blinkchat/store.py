"""
Conversation Store
==================
Lifecycle operations over conversation records: create, list, archive,
cascading delete, the best-effort bulk variants, and title summarization.

Bulk operations (``delete_all`` / ``restore_all``) are NOT transactional
across the whole set. Each conversation is processed on its own; failures
are collected in the returned ``BulkResult`` and the caller may simply
re-issue the call to process what is left.
"""

import logging
import re
from dataclasses import dataclass, field

from .clients import SummarizationClient
from .errors import PersistenceError, SummarizationError
from .events import ChangeNotifier
from .gateway import PersistenceGateway, Subscription
from .models import Conversation, Message, new_conversation_id
from .telemetry import record_title_summary

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_MAX_WORDS = 4

_QUOTES_RE = re.compile(r"[\"'`‘’‚‛“”„‟«»]")
_TRAILING_PUNCT = ".,;:!?-–—"


def normalize_title(raw: str, max_words: int = TITLE_MAX_WORDS) -> str:
    """Strip quote characters and labels, collapse whitespace, cap word count."""
    text = _QUOTES_RE.sub("", raw or "")
    text = text.strip().splitlines()[0] if text.strip() else ""
    if text.lower().startswith("title:"):
        text = text[len("title:"):]
    words = text.split()[:max_words]
    return " ".join(words).strip(_TRAILING_PUNCT + " ")


@dataclass
class BulkResult:
    """Aggregate outcome of a best-effort bulk operation."""

    processed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ConversationStore:
    def __init__(
        self,
        gateway: PersistenceGateway,
        summarizer: SummarizationClient | None = None,
        *,
        default_title: str = DEFAULT_TITLE,
        title_max_words: int = TITLE_MAX_WORDS,
    ) -> None:
        self._gateway = gateway
        self._summarizer = summarizer
        self.default_title = default_title
        self.title_max_words = title_max_words
        self.conversations_changed = ChangeNotifier("conversations_changed")

    async def list(self, owner_id: str, archived: bool = False) -> list[Conversation]:
        """Conversations in one archival bucket, most recently updated first."""
        return await self._gateway.list_conversations(owner_id, archived)

    async def get(self, conversation_id: str) -> Conversation | None:
        return await self._gateway.get_conversation(conversation_id)

    async def subscribe(self, owner_id: str, archived: bool = False) -> Subscription:
        return await self._gateway.subscribe_conversations(owner_id, archived)

    async def create(self, owner_id: str) -> Conversation:
        conversation = await self._gateway.create_conversation(
            Conversation(
                id=new_conversation_id(),
                title=self.default_title,
                owner_id=owner_id,
                archived=False,
                last_updated=self._gateway.now(),
            )
        )
        logger.info("Created conversation %s for %s", conversation.id, owner_id)
        self.conversations_changed.notify(owner_id)
        return conversation

    async def append_message(self, message: Message) -> Message:
        return await self._gateway.add_message(message)

    async def touch(self, conversation_id: str) -> Conversation:
        conversation = await self._gateway.update_conversation(conversation_id, touch=True)
        self.conversations_changed.notify(conversation.owner_id)
        return conversation

    async def set_archived(self, conversation_id: str, archived: bool) -> Conversation:
        conversation = await self._gateway.update_conversation(
            conversation_id, touch=True, archived=archived
        )
        logger.info(
            "Conversation %s %s", conversation_id, "archived" if archived else "restored"
        )
        self.conversations_changed.notify(conversation.owner_id)
        return conversation

    async def delete(self, conversation_id: str) -> None:
        """Delete a conversation and every message under it in one batch."""
        conversation = await self._gateway.get_conversation(conversation_id)
        await self._gateway.delete_conversation(conversation_id)
        logger.info("Deleted conversation: %s", conversation_id)
        if conversation is not None:
            self.conversations_changed.notify(conversation.owner_id)

    async def delete_all(self, owner_id: str) -> BulkResult:
        """Delete every conversation of ``owner_id``, active and archived.

        Best-effort: see the module docstring.
        """
        result = BulkResult()
        targets = await self.list(owner_id, archived=False) + await self.list(owner_id, archived=True)
        for conversation in targets:
            try:
                await self._gateway.delete_conversation(conversation.id)
            except PersistenceError as exc:
                logger.warning("Failed to delete conversation %s: %s", conversation.id, exc)
                result.failed[conversation.id] = exc.message
            else:
                result.processed.append(conversation.id)
        logger.info(
            "Deleted %d conversation(s) for %s (%d failed)",
            len(result.processed), owner_id, len(result.failed),
        )
        self.conversations_changed.notify(owner_id)
        return result

    async def restore_all(self, owner_id: str) -> BulkResult:
        """Move every archived conversation of ``owner_id`` back to active.

        Best-effort: see the module docstring.
        """
        result = BulkResult()
        for conversation in await self.list(owner_id, archived=True):
            try:
                await self._gateway.update_conversation(
                    conversation.id, touch=True, archived=False
                )
            except PersistenceError as exc:
                logger.warning("Failed to restore conversation %s: %s", conversation.id, exc)
                result.failed[conversation.id] = exc.message
            else:
                result.processed.append(conversation.id)
        logger.info(
            "Restored %d conversation(s) for %s (%d failed)",
            len(result.processed), owner_id, len(result.failed),
        )
        self.conversations_changed.notify(owner_id)
        return result

    async def summarize_title(self, conversation_id: str, seed_text: str) -> str | None:
        """Replace the title with a short summary of ``seed_text``.

        Never raises: on any failure the previous title is kept and None is
        returned.
        """
        if self._summarizer is None:
            return None
        try:
            raw = await self._summarizer.summarize(seed_text)
            title = normalize_title(raw, self.title_max_words)
            if not title:
                raise SummarizationError(
                    f"Unusable title {raw!r}", conversation_id=conversation_id
                )
            conversation = await self._gateway.update_conversation(conversation_id, title=title)
        except Exception as exc:
            logger.warning("Failed to summarize and update title for %s: %s", conversation_id, exc)
            record_title_summary(False)
            return None

        logger.info("Conversation %s titled %r", conversation_id, title)
        record_title_summary(True)
        self.conversations_changed.notify(conversation.owner_id)
        return title
