"""
Session Registry
================
Keeps one live ``ChatSession`` per (user, conversation) so that the
single-in-flight-exchange guard holds across HTTP requests.

Ephemeral sends get a fresh session each time; once the session promotes
itself it is registered under its new conversation id. The registry is
bounded: least recently used idle sessions are closed when it is full.
"""

import asyncio
import logging
from collections import OrderedDict

from blinkchat.clients import CompletionClient
from blinkchat.gateway import PersistenceGateway
from blinkchat.models import UserProfile
from blinkchat.session import ChatSession, SessionState
from blinkchat.store import ConversationStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        gateway: PersistenceGateway,
        store: ConversationStore,
        completion: CompletionClient,
        max_sessions: int = 256,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._completion = completion
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[tuple[str, str], ChatSession] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _new_session(self, user: UserProfile) -> ChatSession:
        return ChatSession(
            user=user,
            gateway=self._gateway,
            store=self._store,
            completion=self._completion,
        )

    async def ephemeral(self, user: UserProfile) -> ChatSession:
        """A fresh, unregistered ephemeral session."""
        return self._new_session(user)

    async def acquire(self, user: UserProfile, conversation_id: str) -> ChatSession:
        """Return the live session bound to ``conversation_id`` for ``user``.

        Concurrent misses for the same key are serialized, so exactly one
        session is created and bound.
        """
        key = (user.uid, conversation_id)
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                session.user = user
                self._sessions.move_to_end(key)
                return session

            session = self._new_session(user)
            await session.switch_to(conversation_id)
            await self._store_session(session)
            return session

    async def register(self, session: ChatSession) -> None:
        async with self._lock:
            await self._store_session(session)

    async def _store_session(self, session: ChatSession) -> None:
        if session.conversation_id is None:
            return
        key = (session.user.uid, session.conversation_id)
        previous = self._sessions.get(key)
        self._sessions[key] = session
        if previous is not None and previous is not session:
            await previous.close()
            logger.debug("Replaced live session %s", key)
        await self._evict()

    async def discard(self, user_id: str, conversation_id: str) -> None:
        session = self._sessions.pop((user_id, conversation_id), None)
        if session is not None:
            await session.close()

    async def discard_user(self, user_id: str) -> None:
        for key in [k for k in self._sessions if k[0] == user_id]:
            await self.discard(*key)

    async def close_all(self) -> None:
        while self._sessions:
            _, session = self._sessions.popitem(last=False)
            await session.close()
        logger.info("All chat sessions closed")

    async def _evict(self) -> None:
        for key in list(self._sessions):
            if len(self._sessions) <= self._max_sessions:
                return
            session = self._sessions[key]
            if session.state is not SessionState.IDLE:
                continue
            del self._sessions[key]
            await session.close()
            logger.debug("Evicted idle session %s", key)
