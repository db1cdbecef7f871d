"""BlinkChat conversation and message synchronization engine."""

from .channel import MessageChannel
from .errors import (
    ChatError,
    CompletionError,
    InputError,
    NotFoundError,
    PersistenceError,
    SubscriptionError,
    SummarizationError,
)
from .models import Conversation, Message, Role, UserProfile
from .reactions import ReactionLedger
from .session import ChatSession, ExchangeResult, SessionState
from .store import BulkResult, ConversationStore

__all__ = [
    "ChatSession",
    "ExchangeResult",
    "SessionState",
    "ConversationStore",
    "BulkResult",
    "MessageChannel",
    "ReactionLedger",
    "Conversation",
    "Message",
    "Role",
    "UserProfile",
    "ChatError",
    "InputError",
    "CompletionError",
    "PersistenceError",
    "NotFoundError",
    "SummarizationError",
    "SubscriptionError",
]
