"""
Responder Agent
===============
Generates the assistant's reply to a single user turn.
Does NOT use external tools: relies on the LLM's knowledge and the
persona context supplied with each request.
"""

from agent_framework import Agent


def create_responder_agent(client: object, assistant_name: str = "BlinkAi") -> Agent:
    """Create the Responder agent.

    Args:
        client: An OllamaChatClient (or any client implementing as_agent).
        assistant_name: Name the assistant introduces itself with.

    Returns:
        A configured Agent instance.
    """
    return client.as_agent(  # type: ignore[union-attr]
        name="Responder",
        instructions=(
            f"You are {assistant_name}, a friendly and helpful AI assistant. Your "
            "personality is witty and approachable. Explain things clearly and simply, "
            "like you're talking to a friend. Avoid complex jargon. Be conversational "
            "and light-hearted.\n"
            "When you generate code blocks, always include the language identifier "
            "(for example ```python).\n"
            "If the request contains user context or custom persona instructions, "
            "follow them closely."
        ),
    )
