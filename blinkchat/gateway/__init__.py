"""Persistence gateways for conversations and messages."""

from .base import PersistenceGateway, Subscription
from .memory import InMemoryGateway
from .sql import SqlGateway

__all__ = [
    "PersistenceGateway",
    "Subscription",
    "InMemoryGateway",
    "SqlGateway",
]
