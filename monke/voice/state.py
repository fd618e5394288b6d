"""Shared state model for the conversation loop."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class ConversationState(str, Enum):
    """Stage the orchestrator is in; exactly one at a time."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ERROR = "error"


class ConversationEvent(str, Enum):
    """Notifications published by the orchestrator."""

    STATE_CHANGED = "state_changed"
    USER_SPEECH_RECOGNIZED = "user_speech_recognized"
    RESPONSE_RECEIVED = "response_received"
    RESPONSE_SPEAKING = "response_speaking"
    ERROR = "error"


@dataclass(slots=True)
class ConversationStatus:
    """Snapshot exposed to the control API."""

    state: ConversationState
    ai_service: str
    ai_configured: bool
    synthesizer_ready: bool
    history_length: int
    is_recording: bool = False
    is_speaking: bool = False

    def to_payload(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data
