"""
Pydantic Schemas
================
Request/response models for the API endpoints.
Separated from the engine's domain models to maintain clean boundaries.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from blinkchat.models import Conversation, Message
from blinkchat.session import ExchangeResult
from blinkchat.store import BulkResult


# ── Message Schemas ───────────────────────────────────────────

class MessageCreate(BaseModel):
    """Request body for sending a new message."""
    content: str = Field(..., min_length=1, max_length=4096)
    reply_to: str | None = None


class MessageResponse(BaseModel):
    """A single message in a conversation."""
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime
    reactions: dict[str, list[str]] = {}
    reply_to: str | None = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            role=message.role.value,
            content=message.content,
            created_at=message.created_at,
            reactions={kind: sorted(users) for kind, users in message.reactions.items()},
            reply_to=message.reply_to,
        )


class ExchangeResponse(BaseModel):
    """Result of a committed exchange."""
    conversation_id: str | None
    promoted: bool = False
    user_message: MessageResponse
    assistant_message: MessageResponse | None = None

    @classmethod
    def from_result(cls, result: ExchangeResult) -> "ExchangeResponse":
        return cls(
            conversation_id=result.conversation_id,
            promoted=result.promoted,
            user_message=MessageResponse.from_message(result.user_message),
            assistant_message=(
                MessageResponse.from_message(result.assistant_message)
                if result.assistant_message is not None
                else None
            ),
        )


class ReactionToggle(BaseModel):
    """Request body for toggling a reaction."""
    kind: str = Field(..., min_length=1, max_length=32)


class ReactionResponse(BaseModel):
    message_id: str
    kind: str
    present: bool


# ── Conversation Schemas ──────────────────────────────────────

class ConversationUpdate(BaseModel):
    """Request body for archiving or restoring a conversation."""
    archived: bool


class ConversationSummary(BaseModel):
    """Conversation list item (without messages)."""
    id: str
    title: str
    archived: bool
    last_updated: datetime

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationSummary":
        return cls(
            id=conversation.id,
            title=conversation.title,
            archived=conversation.archived,
            last_updated=conversation.last_updated,
        )


class ConversationResponse(ConversationSummary):
    """Full conversation with messages."""
    messages: list[MessageResponse] = []


class BulkResponse(BaseModel):
    """Aggregate outcome of a bulk operation; not transactional."""
    ok: bool
    processed: list[str]
    failed: dict[str, str]

    @classmethod
    def from_result(cls, result: BulkResult) -> "BulkResponse":
        return cls(ok=result.ok, processed=result.processed, failed=result.failed)
