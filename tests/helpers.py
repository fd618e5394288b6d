from __future__ import annotations

import asyncio
import io
import wave
from pathlib import Path
from typing import Any, Sequence

from monke.core.config import Settings
from monke.core.errors import ConversationError, SpeechSynthesisError
from monke.core.history import Message
from monke.core.llm import AIService
from monke.voice.state import ConversationEvent
from monke.voice.tts import SpeechSynthesizer


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "credentials_path": str(tmp_path / "credentials.json"),
        "system_prompt": "You are Monke.",
        "error_recovery_delay": 0.05,
        "max_conversation_history": 10,
    }
    values.update(overrides)
    return Settings(**values)


async def settle(rounds: int = 20) -> None:
    """Let callbacks and freshly created tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
    await asyncio.sleep(0.01)


class FakeAIService(AIService):
    service_name = "Fake"
    key_name = "fake"

    def __init__(self, settings: Settings, reply: str = "Hi there!", api_key: str = "test-key") -> None:
        super().__init__(settings, api_key=api_key)
        self.reply = reply
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls: list[list[Message]] = []

    async def get_response(self, messages: Sequence[Message]) -> str:
        self.calls.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class FakePlayback:
    def __init__(self, duration: float = 0.0) -> None:
        self.duration = duration
        self.played: list[tuple[bytes, int, int]] = []
        self.stops = 0

    def play(self, pcm: bytes, sample_rate: int, channels: int = 1) -> float:
        self.played.append((pcm, sample_rate, channels))
        return self.duration

    def stop(self) -> None:
        self.stops += 1


class FakeSynthesizer(SpeechSynthesizer):
    """Records what it is asked to say; playback ends when ``release`` is set."""

    name = "fake"

    def __init__(self, settings: Settings, *, manual: bool = True) -> None:
        super().__init__(settings, playback=FakePlayback())
        self.spoken: list[str] = []
        self.release = asyncio.Event()
        self.manual = manual
        self.fail_with: SpeechSynthesisError | None = None

    async def _render_and_play(self, text: str) -> None:
        self.spoken.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        if self.manual:
            await self.release.wait()


class Recorder:
    """Collects every orchestrator notification in order."""

    def __init__(self, orchestrator) -> None:
        self.events: list[tuple[ConversationEvent, Any]] = []
        for event in ConversationEvent:
            orchestrator.subscribe(event, self._listener(event))

    def _listener(self, event: ConversationEvent):
        def _record(payload: Any) -> None:
            self.events.append((event, payload))

        return _record

    def of(self, event: ConversationEvent) -> list[Any]:
        return [payload for kind, payload in self.events if kind is event]

    @property
    def states(self) -> list[Any]:
        return self.of(ConversationEvent.STATE_CHANGED)

    @property
    def errors(self) -> list[ConversationError]:
        return self.of(ConversationEvent.ERROR)


def make_wav(duration: float = 0.05, sample_rate: int = 16_000) -> bytes:
    frames = int(duration * sample_rate)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(b"\x10\x00" * frames)
    return buffer.getvalue()
