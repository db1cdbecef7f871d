"""
Error Taxonomy
==============
Exceptions raised by the chat engine. Every error carries enough context for
the caller to retry the operation or to file a bug report.

    ChatError
    ├── InputError          rejected before any side effect
    ├── CompletionError     text-generation call failed (exchange rolled back)
    ├── PersistenceError    store read/write failed (exchange rolled back)
    │   └── NotFoundError   referenced record does not exist
    ├── SummarizationError  title generation failed (non-fatal, swallowed)
    └── SubscriptionError   push channel dropped (retryable)
"""


class ChatError(Exception):
    """Base class for all chat engine errors."""

    kind = "chat"
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        conversation_id: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.conversation_id = conversation_id
        self.retryable = self.default_retryable if retryable is None else retryable

    def report(self) -> dict:
        """Payload for a bug report or an API error body."""
        return {
            "type": "bug",
            "kind": self.kind,
            "error": self.message,
            "conversation_id": self.conversation_id,
            "retryable": self.retryable,
        }


class InputError(ChatError):
    kind = "input"


class CompletionError(ChatError):
    kind = "completion"
    default_retryable = True


class PersistenceError(ChatError):
    kind = "persistence"
    default_retryable = True


class NotFoundError(PersistenceError):
    kind = "not_found"
    default_retryable = False


class SummarizationError(ChatError):
    kind = "summarization"
    default_retryable = True


class SubscriptionError(ChatError):
    kind = "subscription"
    default_retryable = True
