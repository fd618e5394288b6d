"""Speech synthesizers and the Piper engine they share with the proxy."""

from __future__ import annotations

import asyncio
import io
import threading
import unicodedata
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

from monke.core.config import Settings
from monke.core.errors import ErrorKind, SpeechSynthesisError
from monke.core.logger import get_logger
from monke.voice.playback import PLAYBACK_TAIL_SEC, PlaybackConfig, SpeechPlayback

try:
    from piper import PiperVoice, SynthesisConfig  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    PiperVoice = None  # type: ignore[assignment]
    SynthesisConfig = None  # type: ignore[assignment]

logger = get_logger("speech")

FinishedCallback = Callable[[], None]
SynthesisErrorCallback = Callable[[SpeechSynthesisError], None]


class SpeechSynthesizer(ABC):
    """Turns text into audible playback, one utterance at a time.

    ``speak`` interrupts and replaces any utterance in progress. A natural end
    fires the finished callback exactly once; ``stop`` never fires it.
    """

    name = "synthesizer"

    def __init__(self, settings: Settings, playback: SpeechPlayback | None = None) -> None:
        self.settings = settings
        self.playback = playback or SpeechPlayback(PlaybackConfig(device_name=settings.output_device))
        self._on_finished: Optional[FinishedCallback] = None
        self._on_error: Optional[SynthesisErrorCallback] = None
        self._task: asyncio.Task[None] | None = None
        self._session = 0
        self._speaking = False

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind(self, on_finished: FinishedCallback, on_error: SynthesisErrorCallback) -> None:
        self._on_finished = on_finished
        self._on_error = on_error

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    def speak(self, text: str) -> None:
        if not text or not text.strip():
            self._emit_error(SpeechSynthesisError("Empty text provided", ErrorKind.INVALID_INPUT))
            return
        self.stop()
        self._session += 1
        self._speaking = True
        self._task = asyncio.get_running_loop().create_task(self._run(text, self._session))

    def stop(self) -> None:
        """Halt playback now; safe to call when idle."""
        self._session += 1
        was_speaking = self._speaking
        self._speaking = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.playback.stop()
        self._release()
        if was_speaking:
            logger.info("Speech stopped")

    async def warmup(self) -> None:
        """Load engines ahead of the first utterance; never raises."""

    # ------------------------------------------------------------------ #
    # Implementations
    # ------------------------------------------------------------------ #
    @abstractmethod
    async def _render_and_play(self, text: str) -> None:
        """Produce the audio for ``text`` and return once it has been heard."""

    def _release(self) -> None:
        """Free transient resources held by an interrupted utterance."""

    async def _play_pcm(self, pcm: bytes, sample_rate: int, channels: int = 1) -> None:
        try:
            duration = self.playback.play(pcm, sample_rate, channels)
        except Exception as exc:
            raise SpeechSynthesisError(f"Audio playback failed: {exc}") from exc
        await asyncio.sleep(duration + PLAYBACK_TAIL_SEC)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(self, text: str, session: int) -> None:
        error: SpeechSynthesisError | None = None
        try:
            await self._render_and_play(text)
        except asyncio.CancelledError:
            raise
        except SpeechSynthesisError as exc:
            error = exc
        except Exception as exc:
            logger.exception("%s synthesis failed", self.name)
            error = SpeechSynthesisError(str(exc) or type(exc).__name__)
        if session != self._session:
            return
        self._speaking = False
        self._task = None
        if error is not None:
            self._emit_error(error)
            return
        logger.info("Speech finished")
        if self._on_finished:
            self._on_finished()

    def _emit_error(self, error: SpeechSynthesisError) -> None:
        logger.error("TTS error: %s", error.message)
        if self._on_error:
            self._on_error(error)


@dataclass(slots=True)
class PiperConfig:
    """Piper model configuration."""

    model_path: Path
    config_path: Path
    speaker_id: int | None = None
    length_scale: float = 1.0
    noise_scale: float = 0.667


class PiperTTS:
    """Thin wrapper around PiperVoice."""

    def __init__(self, config: PiperConfig) -> None:
        self.config = config
        self._voice = self._load_voice(config)

    @classmethod
    def from_model(cls, model_path: str | Path, **kwargs) -> "PiperTTS":
        """Load ``voice.onnx`` with its ``voice.onnx.json`` next to it."""
        model = Path(model_path)
        return cls(PiperConfig(model_path=model, config_path=Path(f"{model}.json"), **kwargs))

    def synthesize(self, text: str, *, length_scale: float | None = None) -> tuple[bytes, int]:
        """Generate PCM16 audio for the given text."""
        pcm = bytearray()
        sample_rate = 0
        for chunk, rate, _channels in self.synthesize_stream(text, length_scale=length_scale):
            sample_rate = rate
            pcm += chunk
        return bytes(pcm), sample_rate

    def synthesize_stream(self, text: str, *, length_scale: float | None = None) -> Iterator[tuple[bytes, int, int]]:
        """Yield audio chunks (bytes, sample_rate, channels)."""
        text = self._sanitize_text(text)
        if not text.strip():
            return
        kwargs = {}
        if self.config.speaker_id is not None:
            kwargs["speaker_id"] = self.config.speaker_id
        scale = length_scale if length_scale is not None else self.config.length_scale
        if scale != 1.0:
            kwargs["length_scale"] = scale
        if self.config.noise_scale > 0:
            kwargs["noise_scale"] = self.config.noise_scale
        syn_config = SynthesisConfig(**kwargs) if kwargs else None
        for chunk in self._voice.synthesize(text, syn_config=syn_config):
            yield chunk.audio_int16_bytes, chunk.sample_rate, chunk.sample_channels or 1

    def synthesize_shifted(
        self, text: str, *, speaking_rate: float = 1.0, pitch_factor: float = 1.0
    ) -> tuple[bytes, int]:
        """Generate PCM16 audio with its rate and pitch adjusted.

        Piper cannot shift pitch, so the clip is rendered slower by the pitch
        factor and must be played at the returned (raised) sample rate, which
        keeps its duration at ``1 / speaking_rate``.
        """
        factor = max(0.5, min(2.0, pitch_factor))
        rate = max(0.25, min(4.0, speaking_rate))
        pcm, sample_rate = self.synthesize(text, length_scale=self.config.length_scale * factor / rate)
        return pcm, int(round(sample_rate * factor))

    def synthesize_wav(self, text: str, *, speaking_rate: float = 1.0, pitch: float = 0.0) -> bytes:
        """Return a mono WAV file for ``text``; ``pitch`` is in semitones."""
        factor = 2 ** (max(-12.0, min(12.0, pitch)) / 12)
        pcm, sample_rate = self.synthesize_shifted(text, speaking_rate=speaking_rate, pitch_factor=factor)
        if not pcm:
            raise ValueError("Piper produced no audio")
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(sample_rate)
            wav.writeframes(pcm)
        return buffer.getvalue()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    @staticmethod
    def _load_voice(config: PiperConfig):
        if PiperVoice is None:  # pragma: no cover
            raise RuntimeError("piper-tts is not installed")
        if not config.model_path.exists():
            raise FileNotFoundError(f"Piper model not found: {config.model_path}")
        if not config.config_path.exists():
            raise FileNotFoundError(f"Piper config not found: {config.config_path}")
        return PiperVoice.load(str(config.model_path), str(config.config_path))

    @staticmethod
    def _sanitize_text(text: str) -> str:
        """Drop combining marks the voice has no phonemes for."""
        normalized = unicodedata.normalize("NFD", text)
        stripped = "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")
        return unicodedata.normalize("NFC", stripped)


class PiperSpeechSynthesizer(SpeechSynthesizer):
    """Local synthesis with a Piper voice."""

    name = "local"

    def __init__(
        self,
        settings: Settings,
        playback: SpeechPlayback | None = None,
        tts: PiperTTS | None = None,
    ) -> None:
        super().__init__(settings, playback)
        self._tts = tts
        self._tts_lock = threading.Lock()

    async def _render_and_play(self, text: str) -> None:
        try:
            tts = self._ensure_tts()
        except (FileNotFoundError, RuntimeError) as exc:
            raise SpeechSynthesisError(f"Speech synthesis not available: {exc}") from exc
        loop = asyncio.get_running_loop()
        pcm, sample_rate = await loop.run_in_executor(
            None,
            lambda: tts.synthesize_shifted(
                text,
                speaking_rate=self.settings.speech_rate,
                pitch_factor=self.settings.speech_pitch,
            ),
        )
        if not pcm:
            raise SpeechSynthesisError("Speech synthesis produced no audio")
        await self._play_pcm(pcm, sample_rate)

    async def warmup(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._ensure_tts)
        except (FileNotFoundError, RuntimeError) as exc:
            logger.warning("Piper voice not preloaded: %s", exc)
            return
        logger.info("Piper voice preloaded")

    def _ensure_tts(self) -> PiperTTS:
        """Load the Piper voice if missing."""
        with self._tts_lock:
            if self._tts is not None:
                return self._tts
            if not self.settings.tts_voice_path:
                raise FileNotFoundError("no Piper voice configured (tts_voice_path)")
            self._tts = PiperTTS.from_model(self.settings.tts_voice_path)
            return self._tts


def create_synthesizer(settings: Settings) -> SpeechSynthesizer:
    """Instantiate the synthesizer selected by ``settings.synthesizer``."""
    if settings.synthesizer == "remote":
        from monke.voice.remote_tts import RemoteSpeechSynthesizer

        return RemoteSpeechSynthesizer(settings)
    return PiperSpeechSynthesizer(settings)
