# Copyright (c) Microsoft. All rights reserved.
"""Agent definitions backing the completion and summarization clients."""

from .responder import create_responder_agent
from .titler import create_titler_agent

__all__ = [
    "create_responder_agent",
    "create_titler_agent",
]
