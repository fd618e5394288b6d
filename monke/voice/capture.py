"""Speech capture sources.

A capture source records one utterance per session and reports exactly one
terminal event for it: the recognised text, or a :class:`SpeechCaptureError`.
Sessions that were stopped never report anything.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Iterable, Optional

from monke.core.config import Settings
from monke.core.errors import ErrorKind, SpeechCaptureError
from monke.core.logger import get_logger

logger = get_logger("speech")

TextCallback = Callable[[str], None]
CaptureErrorCallback = Callable[[SpeechCaptureError], None]

NO_SPEECH_MESSAGE = "No speech detected"


class SpeechCaptureSource(ABC):
    """Produces recognised text from live audio, one session at a time."""

    name = "capture"

    def __init__(self) -> None:
        self._on_text: Optional[TextCallback] = None
        self._on_error: Optional[CaptureErrorCallback] = None
        self._recording = False
        self._session = 0
        self.last_error: str | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind(self, on_text: TextCallback, on_error: CaptureErrorCallback) -> None:
        """Register the terminal event callbacks."""
        self._on_text = on_text
        self._on_error = on_error

    @property
    def is_recording(self) -> bool:
        return self._recording

    @abstractmethod
    def request_permission(self) -> None:
        """Ask for microphone access; never blocks, safe to call repeatedly."""

    @abstractmethod
    def start_recording(self) -> bool:
        """Begin a session; False (and nothing else) when one is already active."""

    @abstractmethod
    def stop_recording(self) -> None:
        """End the current session silently; no-op when not recording."""

    # ------------------------------------------------------------------ #
    # Helpers for implementations
    # ------------------------------------------------------------------ #
    def _open_session(self) -> int:
        self._session += 1
        self._recording = True
        self.last_error = None
        return self._session

    def _close_session(self) -> None:
        self._session += 1
        self._recording = False

    def _finish(self, session: int, text: str | None = None, error: SpeechCaptureError | None = None) -> None:
        """Deliver the terminal event of ``session`` unless it was stopped meanwhile."""
        if session != self._session or not self._recording:
            logger.debug("Dropping result of stale capture session %s", session)
            return
        self._recording = False
        cleaned = (text or "").strip()
        if error is None and not cleaned:
            error = SpeechCaptureError(NO_SPEECH_MESSAGE)
        if error is not None:
            logger.warning("Speech recognition error: %s", error.message)
            if self._on_error:
                self._on_error(error)
            return
        logger.info("Recognized text: %s", cleaned)
        if self._on_text:
            self._on_text(cleaned)


class SimulatedSpeechCapture(SpeechCaptureSource):
    """Delivers queued utterances after a short delay; for headless runs and tests."""

    name = "simulated"
    default_utterance = "Hello Monke! This is simulated speech."

    def __init__(
        self,
        utterances: Iterable[str | SpeechCaptureError] = (),
        *,
        delay: float = 2.0,
        permission_granted: bool = True,
    ) -> None:
        super().__init__()
        self.delay = delay
        self.permission_granted = permission_granted
        self._queue: deque[str | SpeechCaptureError] = deque(utterances)
        self._handle: asyncio.TimerHandle | None = None
        self.permission_requests = 0
        self.sessions_started = 0

    def push(self, item: str | SpeechCaptureError) -> None:
        """Queue the outcome of a future session."""
        self._queue.append(item)

    def request_permission(self) -> None:
        self.permission_requests += 1
        logger.debug("Permission request simulated (granted=%s)", self.permission_granted)

    def start_recording(self) -> bool:
        if self._recording:
            logger.warning("Already recording")
            return False
        session = self._open_session()
        self.sessions_started += 1
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._deliver, session)
        logger.info("Simulating speech recognition (%.1fs)", self.delay)
        return True

    def stop_recording(self) -> None:
        if not self._recording:
            return
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._close_session()
        logger.info("Stopped speech recognition (simulated)")

    def _deliver(self, session: int) -> None:
        self._handle = None
        if not self.permission_granted:
            self._finish(
                session,
                error=SpeechCaptureError("Speech recognition permission denied", ErrorKind.PERMISSION_DENIED),
            )
            return
        item = self._queue.popleft() if self._queue else self.default_utterance
        if isinstance(item, SpeechCaptureError):
            self._finish(session, error=item)
        else:
            self._finish(session, text=item)


def create_capture_source(settings: Settings, *, simulate: bool = False) -> SpeechCaptureSource:
    """Build the capture source for this process."""
    if simulate:
        return SimulatedSpeechCapture()
    from monke.voice.microphone import MicrophoneSpeechCapture

    return MicrophoneSpeechCapture(settings)
