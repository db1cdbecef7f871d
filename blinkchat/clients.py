"""
Model Clients
=============
Request/response contracts for the text-generation services, and
implementations backed by Agent Framework agents.

    CompletionClient     (user_input, persona_context?) -> reply text
    SummarizationClient  (conversation_text)            -> short title

Single request/response: no streaming, no retry. Any failure surfaces as
``CompletionError`` / ``SummarizationError``.
"""

import logging
from typing import Protocol, runtime_checkable

from .errors import CompletionError, SummarizationError
from .models import UserProfile
from .telemetry import trace_agent

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionClient(Protocol):
    async def complete(self, user_input: str, persona_context: str | None = None) -> str:
        ...


@runtime_checkable
class SummarizationClient(Protocol):
    async def summarize(self, conversation_text: str) -> str:
        ...


def build_persona_context(profile: UserProfile) -> str:
    """Describe the user and their custom persona instructions for the model."""
    context = f"The user's name is {profile.display_name}."
    if profile.persona and profile.persona.strip():
        context += f"\n\nCustom Persona Instructions:\n{profile.persona.strip()}"
    return context


def compose_prompt(user_input: str, persona_context: str | None) -> str:
    if not persona_context:
        return user_input
    return (
        "Here's some context about the user and custom instructions for your persona. "
        f"Follow them closely:\n{persona_context}\n\n"
        f"User Input: {user_input}"
    )


def _response_text(result: object) -> str:
    text = getattr(result, "text", None)
    if text is None:
        text = str(result) if result is not None else ""
    return text.strip()


class AgentCompletionClient:
    """CompletionClient that runs a single-turn Agent Framework agent."""

    def __init__(self, agent: object) -> None:
        self._agent = agent
        self._name = getattr(agent, "name", None) or "Responder"

    async def complete(self, user_input: str, persona_context: str | None = None) -> str:
        prompt = compose_prompt(user_input, persona_context)
        try:
            with trace_agent(self._name, **{"prompt.length": len(prompt)}):
                result = await self._agent.run(prompt)  # type: ignore[attr-defined]
        except Exception as exc:
            logger.warning("Completion call failed: %s", exc)
            raise CompletionError(f"Failed to get a response from the AI: {exc}") from exc

        text = _response_text(result)
        if not text:
            raise CompletionError("Failed to get a response from the AI: empty reply")
        return text


class AgentSummarizationClient:
    """SummarizationClient that asks a titling agent for a short title."""

    def __init__(self, agent: object) -> None:
        self._agent = agent
        self._name = getattr(agent, "name", None) or "Titler"

    async def summarize(self, conversation_text: str) -> str:
        prompt = f"Conversation:\n{conversation_text}"
        try:
            with trace_agent(self._name):
                result = await self._agent.run(prompt)  # type: ignore[attr-defined]
        except Exception as exc:
            raise SummarizationError(f"Title summarization failed: {exc}") from exc

        title = _response_text(result)
        if not title:
            raise SummarizationError("Title summarization returned nothing")
        return title
