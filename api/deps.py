"""
Request Dependencies
====================
Caller identity, shared services from ``app.state``, and the mapping from
engine errors to HTTP responses.

Identity comes from request headers set by the upstream auth layer; this
service performs no authentication of its own.
"""

from fastapi import Header, HTTPException, Request

from blinkchat.errors import (
    ChatError,
    CompletionError,
    InputError,
    NotFoundError,
    PersistenceError,
    SubscriptionError,
)
from blinkchat.gateway import PersistenceGateway
from blinkchat.models import Conversation, UserProfile
from blinkchat.store import ConversationStore

from api.services.sessions import SessionRegistry

_STATUS = (
    (InputError, 422),
    (NotFoundError, 404),
    (CompletionError, 502),
    (PersistenceError, 503),
    (SubscriptionError, 503),
)


def get_current_user(
    x_user_id: str = Header(..., min_length=1),
    x_user_name: str | None = Header(default=None),
    x_user_persona: str | None = Header(default=None),
) -> UserProfile:
    """Build the caller's profile from request headers."""
    return UserProfile(
        uid=x_user_id,
        display_name=x_user_name or x_user_id,
        persona=x_user_persona,
    )


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.gateway


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def http_error(exc: ChatError) -> HTTPException:
    """Translate an engine error into an HTTPException with a report body."""
    for error_type, status in _STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=exc.report())
    return HTTPException(status_code=500, detail=exc.report())


async def require_conversation(
    store: ConversationStore, conversation_id: str, user: UserProfile
) -> Conversation:
    """Load a conversation owned by ``user`` or raise 404."""
    try:
        conversation = await store.get(conversation_id)
    except ChatError as exc:
        raise http_error(exc) from exc
    if conversation is None or conversation.owner_id != user.uid:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation
