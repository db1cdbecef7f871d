"""
Domain Models
=============
Pydantic models shared by the engine, the gateways and the API layer.

Records are treated as values: updates go through ``model_copy`` so a
snapshot already handed to a listener never changes underneath it.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Conversation(BaseModel):
    """A persisted conversation record."""

    id: str
    title: str
    owner_id: str
    archived: bool = False
    last_updated: datetime


class Message(BaseModel):
    """A single chat turn.

    ``id`` is the correlation id: assigned by the client when the message is
    first displayed and carried unchanged into the persisted record.
    ``reply_to`` is a weak reference to another message in the same
    conversation and may dangle.
    """

    id: str
    conversation_id: str = ""
    role: Role
    content: str
    created_at: datetime
    reactions: dict[str, set[str]] = Field(default_factory=dict)
    reply_to: str | None = None

    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)


class UserProfile(BaseModel):
    """Identity and persona of the user driving a session."""

    uid: str
    display_name: str
    email: str | None = None
    persona: str | None = None


def new_message_id() -> str:
    return str(uuid.uuid4())


def new_conversation_id() -> str:
    return str(uuid.uuid4())


def ordered(messages: list[Message]) -> list[Message]:
    """Deterministic total order: ascending ``created_at``, ties by ``id``."""
    return sorted(messages, key=Message.sort_key)


class MonotonicClock:
    """UTC wall clock whose successive readings strictly increase."""

    _TICK = timedelta(microseconds=1)

    def __init__(self) -> None:
        self._last: datetime | None = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        if self._last is not None and current <= self._last:
            current = self._last + self._TICK
        self._last = current
        return current

    def after(self, moment: datetime) -> datetime:
        """A reading strictly later than both ``moment`` and the last reading."""
        current = self.now()
        if current <= moment:
            current = moment + self._TICK
            self._last = current
        return current
