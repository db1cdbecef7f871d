"""
Shared Fixtures
===============
In-memory gateway, scripted model clients and session factories used across
the engine tests.
"""

import asyncio
from typing import Callable

import pytest
import pytest_asyncio

from blinkchat.gateway import InMemoryGateway
from blinkchat.models import UserProfile
from blinkchat.session import ChatSession
from blinkchat.store import ConversationStore


class FakeCompletion:
    """Scripted CompletionClient; optionally blocks until ``gate`` is set."""

    def __init__(self, reply: str = "Recursion is a function calling itself on a smaller input.") -> None:
        self.reply = reply
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, str | None]] = []

    async def complete(self, user_input: str, persona_context: str | None = None) -> str:
        self.calls.append((user_input, persona_context))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class FakeSummarizer:
    """Scripted SummarizationClient."""

    def __init__(self, title: str = '"Understanding Recursion Basics Today"') -> None:
        self.title = title
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def summarize(self, conversation_text: str) -> str:
        self.calls.append(conversation_text)
        if self.error is not None:
            raise self.error
        return self.title


async def settle(rounds: int = 20) -> None:
    """Let pending push callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def alice() -> UserProfile:
    return UserProfile(uid="alice", display_name="Alice", persona="Answer like a pirate.")


@pytest.fixture
def bob() -> UserProfile:
    return UserProfile(uid="bob", display_name="Bob")


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def store(gateway: InMemoryGateway, summarizer: FakeSummarizer) -> ConversationStore:
    return ConversationStore(gateway, summarizer)


@pytest_asyncio.fixture
async def make_session(gateway, store, completion, alice):
    """Factory for sessions; every session is closed after the test."""
    sessions: list[ChatSession] = []

    async def factory(conversation_id: str | None = None, user: UserProfile | None = None) -> ChatSession:
        session = ChatSession(
            user=user or alice,
            gateway=gateway,
            store=store,
            completion=completion,
        )
        if conversation_id is not None:
            await session.switch_to(conversation_id)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        await session.close()
