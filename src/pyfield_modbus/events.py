"""Observer list used for connected/disconnected notifications."""

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class Event:
    """
    Callbacks registered with subscribe() are called with the sender, in
    registration order, on the thread that fires the event. A failing listener
    is logged and does not stop the others.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Listener:
        """Register a listener; returns it so this can be used as a decorator."""
        with self._lock:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                raise ValueError(f"{listener!r} is not subscribed to {self.name!r}") from None

    def fire(self, sender: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(sender)
            except Exception:
                logger.exception("Listener %r for %r event failed", listener, self.name)

    def __len__(self) -> int:
        return len(self._listeners)
