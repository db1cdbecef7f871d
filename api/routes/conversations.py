"""
Conversation Routes
===================
Lifecycle endpoints for managing a user's conversations.

Endpoints:
    POST   /api/conversations              Create a new conversation
    GET    /api/conversations?archived=    List active or archived conversations
    GET    /api/conversations/{id}         Get a conversation with messages
    PATCH  /api/conversations/{id}         Archive or restore a conversation
    DELETE /api/conversations/{id}         Delete a conversation and its messages
    DELETE /api/conversations              Delete all conversations (best-effort)
    POST   /api/conversations/restore      Restore all archived (best-effort)
"""

import logging

from fastapi import APIRouter, Depends

from blinkchat.errors import ChatError
from blinkchat.gateway import PersistenceGateway
from blinkchat.models import UserProfile
from blinkchat.store import ConversationStore

from api.deps import (
    get_current_user,
    get_gateway,
    get_registry,
    get_store,
    http_error,
    require_conversation,
)
from api.models.schemas import (
    BulkResponse,
    ConversationResponse,
    ConversationSummary,
    ConversationUpdate,
    MessageResponse,
)
from api.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/conversations", response_model=ConversationSummary, status_code=201)
async def create_conversation(
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
):
    """Create a new, empty conversation with the default title."""
    try:
        conversation = await store.create(user.uid)
    except ChatError as exc:
        raise http_error(exc) from exc
    return ConversationSummary.from_conversation(conversation)


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    archived: bool = False,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
):
    """List conversations in one bucket, most recently updated first."""
    try:
        conversations = await store.list(user.uid, archived=archived)
    except ChatError as exc:
        raise http_error(exc) from exc
    return [ConversationSummary.from_conversation(c) for c in conversations]


@router.post("/conversations/restore", response_model=BulkResponse)
async def restore_all_conversations(
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
):
    """Restore every archived conversation. Partial failures are reported, not rolled back."""
    try:
        result = await store.restore_all(user.uid)
    except ChatError as exc:
        raise http_error(exc) from exc
    return BulkResponse.from_result(result)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Get a conversation with all its messages."""
    conversation = await require_conversation(store, conversation_id, user)
    try:
        messages = await gateway.list_messages(conversation_id)
    except ChatError as exc:
        raise http_error(exc) from exc
    return ConversationResponse(
        **ConversationSummary.from_conversation(conversation).model_dump(),
        messages=[MessageResponse.from_message(m) for m in messages],
    )


@router.patch("/conversations/{conversation_id}", response_model=ConversationSummary)
async def update_conversation(
    conversation_id: str,
    body: ConversationUpdate,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
):
    """Archive or restore a conversation."""
    await require_conversation(store, conversation_id, user)
    try:
        conversation = await store.set_archived(conversation_id, body.archived)
    except ChatError as exc:
        raise http_error(exc) from exc
    return ConversationSummary.from_conversation(conversation)


@router.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_registry),
):
    """Delete a conversation and all its messages."""
    await require_conversation(store, conversation_id, user)
    await sessions.discard(user.uid, conversation_id)
    try:
        await store.delete(conversation_id)
    except ChatError as exc:
        raise http_error(exc) from exc


@router.delete("/conversations", response_model=BulkResponse)
async def delete_all_conversations(
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_registry),
):
    """Delete every conversation of the caller. Partial failures are reported, not rolled back."""
    await sessions.discard_user(user.uid)
    try:
        result = await store.delete_all(user.uid)
    except ChatError as exc:
        raise http_error(exc) from exc
    return BulkResponse.from_result(result)
