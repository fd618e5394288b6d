from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, DefaultDict

from monke.core.logger import get_logger
from monke.voice.state import ConversationEvent

logger = get_logger("orchestrator")

Listener = Callable[[Any], None]


class EventBus:
    """Synchronous fan-out of orchestrator notifications."""

    def __init__(self) -> None:
        self._listeners: DefaultDict[ConversationEvent, list[Listener]] = defaultdict(list)

    def subscribe(self, event: ConversationEvent, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""
        self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event, listener)

        return _unsubscribe

    def unsubscribe(self, event: ConversationEvent, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def publish(self, event: ConversationEvent, payload: Any = None) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(payload)
            except Exception:
                # a faulty subscriber must not break the loop
                logger.exception("Listener for %s failed", event.value)
