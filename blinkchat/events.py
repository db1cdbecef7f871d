"""Change notifications consumed by the view layer."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


class ChangeNotifier:
    """Fan-out of "something under <key> changed" signals.

    Listeners are called synchronously; a failing listener is logged and does
    not prevent the others from running.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("%s listener failed for %r", self.name, key)
