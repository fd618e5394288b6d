"""ASR utilities powered by faster-whisper."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np

try:
    from faster_whisper import WhisperModel  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    WhisperModel = None  # type: ignore[assignment]


class TranscriberUnavailableError(RuntimeError):
    """Raised when the ASR backend cannot be initialised."""


@dataclass(slots=True)
class WhisperConfig:
    """Configuration for the faster-whisper engine."""

    model_path: Path
    device: str = "cpu"
    compute_type: str = "int8"
    language: str = "en"


class FasterWhisperEngine:
    """Thin wrapper around WhisperModel for PCM16 audio."""

    def __init__(self, config: WhisperConfig) -> None:
        if WhisperModel is None:  # pragma: no cover
            raise TranscriberUnavailableError("faster-whisper is not installed")
        self.config = config
        self.model = WhisperModel(
            str(config.model_path),
            device=config.device,
            compute_type=config.compute_type,
        )

    def transcribe_pcm16(self, pcm_data: bytes) -> str:
        """Transcribe 16 kHz mono PCM16 audio into text."""
        if not pcm_data:
            return ""
        audio = np.frombuffer(pcm_data, dtype=np.int16).astype(np.float32) / 32768.0
        if not len(audio):
            return ""
        segments, _info = self.model.transcribe(
            audio,
            language=self.config.language or None,
            vad_filter=True,
            vad_parameters={"min_silence_duration_ms": 250},
        )
        return " ".join(segment.text.strip() for segment in segments).strip()
