"""
Titler Agent
============
Produces a short conversation title from the opening user turn.
"""

from agent_framework import Agent


def create_titler_agent(client: object, max_words: int = 4) -> Agent:
    """Create the Titler agent.

    Args:
        client: An OllamaChatClient (or any client implementing as_agent).
        max_words: Maximum number of words in the title.

    Returns:
        A configured Agent instance.
    """
    return client.as_agent(  # type: ignore[union-attr]
        name="Titler",
        instructions=(
            f"Create a short, concise title ({max_words} words maximum) for the "
            "conversation you are given. The title should capture the main topic of "
            "the conversation. Do not use quotes in the title.\n"
            "Output ONLY the title, with no punctuation at the end, no filler."
        ),
    )
