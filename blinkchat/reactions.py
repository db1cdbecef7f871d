"""
Reaction Ledger
===============
Per-message multi-user reaction sets: reaction kind → set of user ids.

Toggles go through the gateway's atomic add/remove primitive. The ledger
never reads the whole map, edits it and writes it back, since two users
reacting at once would overwrite each other.
"""

import logging

from .errors import InputError
from .gateway import PersistenceGateway

logger = logging.getLogger(__name__)

MAX_KIND_LENGTH = 32


class ReactionLedger:
    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    async def toggle(
        self, conversation_id: str, message_id: str, kind: str, user_id: str
    ) -> bool:
        """Add ``user_id`` to the ``kind`` set, or remove it if present.

        Returns:
            True if the user now has the reaction, False if it was removed.

        Raises:
            InputError: If the reaction kind or user id is empty or too long.
            PersistenceError: If the store rejects the update.
        """
        kind = (kind or "").strip()
        if not kind or len(kind) > MAX_KIND_LENGTH:
            raise InputError("Reaction kind must be 1-32 characters.", conversation_id=conversation_id)
        if not user_id:
            raise InputError("A user id is required to react.", conversation_id=conversation_id)

        present = await self._gateway.toggle_reaction(conversation_id, message_id, kind, user_id)
        logger.info(
            "Reaction %s %s by %s on message %s",
            kind, "added" if present else "removed", user_id, message_id,
        )
        return present

    @staticmethod
    def apply(reactions: dict[str, set[str]], kind: str, user_id: str) -> dict[str, set[str]]:
        """Return a copy of ``reactions`` with the toggle applied locally."""
        result = {k: set(v) for k, v in reactions.items()}
        users = result.setdefault(kind, set())
        if user_id in users:
            users.discard(user_id)
        else:
            users.add(user_id)
        if not users:
            del result[kind]
        return result
