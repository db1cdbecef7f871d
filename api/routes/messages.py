"""
Message Routes
==============
Sending messages, toggling reactions, and the live SSE snapshot stream.

Endpoints:
    POST /api/messages                                        Send in a new ephemeral session
    POST /api/conversations/{id}/messages                     Send a message
    POST /api/conversations/{id}/messages/{mid}/reactions     Toggle a reaction
    GET  /api/conversations/{id}/stream                       SSE stream of message snapshots
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from blinkchat.errors import ChatError, SubscriptionError
from blinkchat.gateway import PersistenceGateway
from blinkchat.models import UserProfile
from blinkchat.session import ChatSession
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
    ExchangeResponse,
    MessageCreate,
    MessageResponse,
    ReactionResponse,
    ReactionToggle,
)
from api.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def _sse_line(event: str, data: dict | list) -> str:
    """Format a single SSE event line."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def _send(session: ChatSession, body: MessageCreate) -> ExchangeResponse:
    try:
        result = await session.send_message(body.content, reply_to_id=body.reply_to)
    except ChatError as exc:
        raise http_error(exc) from exc
    if result is None:
        raise HTTPException(
            status_code=409, detail="Another message is still being processed"
        )
    return ExchangeResponse.from_result(result)


@router.post("/messages", response_model=ExchangeResponse, status_code=201)
async def send_ephemeral_message(
    body: MessageCreate,
    user: UserProfile = Depends(get_current_user),
    sessions: SessionRegistry = Depends(get_registry),
):
    """Send the first message of a temporary chat.

    A successful exchange promotes the chat to a saved conversation; the
    response carries its id so the client can navigate to it.
    """
    session = await sessions.ephemeral(user)
    try:
        return await _send(session, body)
    finally:
        if session.conversation_id is None:
            await session.close()
        else:
            await sessions.register(session)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=ExchangeResponse,
    status_code=201,
)
async def send_message(
    conversation_id: str,
    body: MessageCreate,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_registry),
):
    """Send a message and wait for the committed exchange.

    Returns 409 while a previous message in the same conversation is still
    in flight.
    """
    await require_conversation(store, conversation_id, user)
    try:
        session = await sessions.acquire(user, conversation_id)
    except ChatError as exc:
        raise http_error(exc) from exc
    return await _send(session, body)


@router.post(
    "/conversations/{conversation_id}/messages/{message_id}/reactions",
    response_model=ReactionResponse,
)
async def toggle_reaction(
    conversation_id: str,
    message_id: str,
    body: ReactionToggle,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_registry),
):
    """Toggle the caller's reaction on a message."""
    await require_conversation(store, conversation_id, user)
    try:
        session = await sessions.acquire(user, conversation_id)
        present = await session.toggle_reaction(message_id, body.kind)
    except ChatError as exc:
        raise http_error(exc) from exc
    return ReactionResponse(message_id=message_id, kind=body.kind, present=bool(present))


@router.get("/conversations/{conversation_id}/stream")
async def stream_messages(
    conversation_id: str,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """Stream full, ordered message snapshots as SSE until the client disconnects."""
    await require_conversation(store, conversation_id, user)
    try:
        subscription = await gateway.subscribe_messages(conversation_id)
    except ChatError as exc:
        raise http_error(exc) from exc

    async def event_stream():
        try:
            async for snapshot in subscription:
                if await request.is_disconnected():
                    break
                yield _sse_line(
                    "snapshot",
                    [MessageResponse.from_message(m).model_dump(mode="json") for m in snapshot],
                )
        except SubscriptionError as exc:
            logger.warning("Snapshot stream for %s dropped: %s", conversation_id, exc)
            yield _sse_line("error", exc.report())
        finally:
            subscription.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
