"""Audio output for synthesized speech."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass

import numpy as np

try:
    import sounddevice as sd
except (ImportError, OSError):  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore[assignment]

from monke.core.logger import get_logger

logger = get_logger("speech")

BYTES_PER_SAMPLE = 2  # pcm_s16le
# Guard covering buffering jitter at the end of a clip.
PLAYBACK_TAIL_SEC = 0.15


@dataclass(slots=True)
class PlaybackConfig:
    """Playback configuration."""

    sample_rate: int = 22_050
    channels: int = 1
    device_name: str | None = None


class SpeechPlayback:
    """Queue PCM16 buffers on an output stream."""

    def __init__(self, config: PlaybackConfig | None = None) -> None:
        self.config = config or PlaybackConfig()
        self._buffer = deque[bytes]()
        self._lock = threading.RLock()
        self._stream = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def play(self, pcm_data: bytes, sample_rate: int, channels: int = 1) -> float:
        """Queue a PCM buffer and return its duration in seconds."""
        if not pcm_data:
            return 0.0
        with self._lock:
            if sample_rate != self.config.sample_rate or channels != self.config.channels:
                self.stop()
                self.config.sample_rate = sample_rate
                self.config.channels = channels
            self._ensure_stream()
            self._buffer.append(pcm_data)
        return duration_of(pcm_data, sample_rate, channels)

    def stop(self) -> None:
        """Stop playback and clear the buffer."""
        with self._lock:
            self._buffer.clear()
            if self._stream is not None:
                stream, self._stream = self._stream, None
                stream.stop()
                stream.close()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_stream(self) -> None:
        if self._stream is not None:
            if not self._stream.active:
                self._stream.start()
            return
        if sd is None:
            raise RuntimeError("Audio output unavailable (PortAudio not found)")
        self._stream = sd.RawOutputStream(
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype="int16",
            callback=self._on_write,
            device=self.config.device_name,
        )
        self._stream.start()

    def _on_write(self, outdata, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            logger.warning("Audio output status: %s", status)
        with self._lock:
            if not self._buffer:
                outdata[:] = b"\x00" * len(outdata)
                return
            chunk = self._buffer.popleft()
            if len(chunk) >= len(outdata):
                outdata[:] = chunk[: len(outdata)]
                remainder = chunk[len(outdata) :]
                if remainder:
                    self._buffer.appendleft(remainder)
            else:
                outdata[: len(chunk)] = chunk
                outdata[len(chunk) :] = b"\x00" * (len(outdata) - len(chunk))


def duration_of(pcm_data: bytes, sample_rate: int, channels: int = 1) -> float:
    if not pcm_data or sample_rate <= 0:
        return 0.0
    return len(pcm_data) / (sample_rate * max(1, channels) * BYTES_PER_SAMPLE)


def scale_volume(pcm_data: bytes, volume: float) -> bytes:
    """Scale PCM16 samples by ``volume`` (0..1)."""
    volume = max(0.0, min(1.0, volume))
    if volume >= 1.0 or not pcm_data:
        return pcm_data
    samples = np.frombuffer(pcm_data, dtype=np.int16).astype(np.float32) * volume
    return np.clip(samples, -32768, 32767).astype(np.int16).tobytes()
