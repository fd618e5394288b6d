"""Rolling conversation history."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Literal

Role = Literal["system", "user", "assistant"]

__all__ = ["Message", "ConversationHistory"]


@dataclass(frozen=True, slots=True)
class Message:
    """Single role-tagged conversation message."""

    role: Role
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationHistory:
    """Bounded, ordered buffer of messages; the oldest entries are evicted first.

    The system prompt is never stored here, it is prepended when a request is built.
    """

    def __init__(self, capacity: int = 10) -> None:
        if capacity < 2:
            raise ValueError(f"history capacity must be >= 2 (got {capacity})")
        self._capacity = capacity
        self._messages: deque[Message] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    def add_message(self, role: Role, content: str) -> None:
        self._messages.append(Message(role, content))
        while len(self._messages) > self._capacity:
            self._messages.popleft()

    def get_messages(self) -> list[Message]:
        """Return a copy; mutating it does not touch the stored history."""
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)
