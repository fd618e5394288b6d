"""Microphone capture with silence detection and faster-whisper transcription."""

from __future__ import annotations

import asyncio
import contextvars
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Iterable

from monke.core.config import Settings
from monke.core.errors import ErrorKind, SpeechCaptureError
from monke.core.logger import get_logger
from monke.voice.capture import SpeechCaptureSource
from monke.voice.transcriber import FasterWhisperEngine, WhisperConfig
from monke.voice.vad import VADConfig, VoiceActivityDetector

try:
    import sounddevice as sd
except (ImportError, OSError):  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore[assignment]

logger = get_logger("speech")

DEFAULT_ASR_MODEL = "base.en"


@dataclass(slots=True)
class CaptureConfig:
    """Microphone capture configuration."""

    sample_rate: int = 16_000
    channels: int = 1
    frame_duration_ms: int = 20
    device_name: str | None = None
    silence_timeout: float = 2.0
    max_recording_seconds: float = 15.0


class MicrophoneSpeechCapture(SpeechCaptureSource):
    """Records the default (or configured) input device until the speaker goes quiet."""

    name = "microphone"

    def __init__(
        self,
        settings: Settings,
        *,
        config: CaptureConfig | None = None,
        vad: VoiceActivityDetector | None = None,
        engine: FasterWhisperEngine | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.config = config or CaptureConfig(
            device_name=settings.input_device,
            silence_timeout=settings.silence_timeout,
            max_recording_seconds=settings.max_recording_seconds,
        )
        self.vad = vad or VoiceActivityDetector(VADConfig(aggressiveness=settings.vad_aggressiveness))
        self._engine = engine
        self._engine_lock = Lock()
        self._lock = Lock()
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._context: contextvars.Context | None = None
        self._frames: list[bytes] = []
        self._heard_speech = False
        self._silence_ms = 0
        self._elapsed_ms = 0
        self._ending = False
        self._transcribe_task: asyncio.Task[None] | None = None
        self._permission_checked = False

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def available_devices(self) -> Iterable[str]:
        """List available input devices."""
        if sd is None:
            return []
        return [
            device["name"]
            for device in sd.query_devices()
            if int(device.get("max_input_channels", 0)) > 0
        ]

    def request_permission(self) -> None:
        # Desktop platforms grant access per device; probing the device list is all we can do.
        if self._permission_checked:
            return
        self._permission_checked = True
        try:
            devices = list(self.available_devices())
        except Exception as exc:  # pragma: no cover - driver specific
            logger.warning("Could not query input devices: %s", exc)
            return
        if not devices:
            self.last_error = "No microphone available. Check permissions."
            logger.warning(self.last_error)
        else:
            logger.info("Microphone available: %s", self.config.device_name or devices[0])

    def start_recording(self) -> bool:
        if self._recording:
            logger.warning("Already recording")
            return False
        if sd is None:
            self.last_error = "Audio input unavailable (PortAudio not found)"
            logger.error(self.last_error)
            return False
        self._loop = asyncio.get_running_loop()
        # audio callbacks run on a driver thread; keep the cycle id for their handoff
        self._context = contextvars.copy_context()
        with self._lock:
            self._frames = []
            self._heard_speech = False
            self._silence_ms = 0
            self._elapsed_ms = 0
            self._ending = False
            session = self._open_session()
            frame_size = int(self.config.sample_rate * self.config.frame_duration_ms / 1000)
            try:
                self._stream = sd.RawInputStream(
                    samplerate=self.config.sample_rate,
                    channels=self.config.channels,
                    dtype="int16",
                    blocksize=frame_size,
                    callback=self._make_callback(session),
                    device=self.config.device_name,
                )
                self._stream.start()
            except Exception as exc:
                self._stream = None
                self._close_session()
                self.last_error = f"Failed to start speech recognition: {exc}. Check permissions."
                logger.error(self.last_error)
                return False
        logger.info("Microphone capture started")
        return True

    def stop_recording(self) -> None:
        if not self._recording:
            return
        with self._lock:
            self._close_session()
        # outside the lock: stopping the stream waits for the audio callback
        self._close_stream()
        if self._transcribe_task is not None:
            self._transcribe_task.cancel()
            self._transcribe_task = None
        logger.info("Microphone capture stopped")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _close_stream(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        except Exception as exc:  # pragma: no cover - driver specific
            logger.warning("Failed to close input stream: %s", exc)

    def _make_callback(self, session: int):
        def _on_frame(indata, frames: int, time, status) -> None:  # noqa: ANN001
            if status:  # pragma: no cover
                logger.warning("Microphone status: %s", status)
            self._consume_frame(session, bytes(indata))

        return _on_frame

    def _consume_frame(self, session: int, frame: bytes) -> None:
        """Runs on the audio thread; hands the end of the session back to the loop."""
        with self._lock:
            if session != self._session or self._ending:
                return
            self._frames.append(frame)
            self._elapsed_ms += self.config.frame_duration_ms
            if self.vad.is_speech(frame, self.config.sample_rate):
                self._heard_speech = True
                self._silence_ms = 0
            else:
                self._silence_ms += self.config.frame_duration_ms
            silence_done = self._heard_speech and self._silence_ms >= self.config.silence_timeout * 1000
            too_long = self._elapsed_ms >= self.config.max_recording_seconds * 1000
            if not (silence_done or too_long):
                return
            self._ending = True
        loop = self._loop
        if loop is not None:
            try:
                loop.call_soon_threadsafe(self._end_session, session, context=self._context)
            except RuntimeError:  # pragma: no cover - loop closed
                pass

    def _end_session(self, session: int) -> None:
        if session != self._session:
            return
        self._close_stream()
        with self._lock:
            pcm = b"".join(self._frames)
            heard = self._heard_speech
            self._frames = []
        if not heard:
            self._finish(session)
            return
        self._transcribe_task = asyncio.get_running_loop().create_task(self._transcribe(session, pcm))

    async def _transcribe(self, session: int, pcm: bytes) -> None:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, self._run_engine, pcm)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Transcription failed")
            self._finish(session, error=SpeechCaptureError(f"Transcription failed: {exc}", ErrorKind.CAPTURE_ERROR))
        else:
            self._finish(session, text=text)
        finally:
            if self._transcribe_task is asyncio.current_task():
                self._transcribe_task = None

    def _run_engine(self, pcm: bytes) -> str:
        return self._ensure_engine().transcribe_pcm16(pcm)

    def _ensure_engine(self) -> FasterWhisperEngine:
        """Load the whisper model on first use."""
        with self._engine_lock:
            if self._engine is None:
                model = self.settings.asr_model_path or DEFAULT_ASR_MODEL
                self._engine = FasterWhisperEngine(
                    WhisperConfig(
                        model_path=Path(model),
                        device=self.settings.asr_device,
                        compute_type=self.settings.asr_compute_type,
                        language=self.settings.asr_language,
                    )
                )
            return self._engine
