"""Minimal asynchronous event emitter shared by the vault components."""
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger("pfp.vault")

Listener = Callable[..., Any]


class EventTarget:
    """Registry of listeners keyed by event name.

    Listeners may be plain callables or coroutine functions; ``emit`` awaits
    the latter in registration order. Listener errors propagate to the
    emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def once(self, event: str, listener: Listener) -> None:
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        self.on(event, wrapper)

    async def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            result = listener(*args)
            if inspect.isawaitable(result):
                await result
