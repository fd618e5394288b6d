"""Synthesis through the remote speech proxy (``POST /api/text-to-speech``)."""

from __future__ import annotations

import base64
import binascii
import os
import tempfile
import wave
from pathlib import Path
from typing import Any

import httpx

from monke.core.config import Settings
from monke.core.errors import ErrorKind, SpeechSynthesisError
from monke.core.logger import get_logger
from monke.voice.playback import SpeechPlayback, scale_volume
from monke.voice.tts import SpeechSynthesizer

logger = get_logger("speech")

_SUFFIXES = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
}


class RemoteSpeechSynthesizer(SpeechSynthesizer):
    """Fetches base64 audio from the proxy and plays it from a temporary file.

    The temporary file is removed once playback ends, fails or is stopped.
    """

    name = "remote"

    def __init__(self, settings: Settings, playback: SpeechPlayback | None = None) -> None:
        super().__init__(settings, playback)
        self.url = settings.remote_tts_url
        self.speaking_rate = float(settings.remote_tts_speaking_rate)
        self.pitch = float(settings.remote_tts_pitch)
        self.volume = max(0.0, min(1.0, float(settings.remote_tts_volume)))
        self.timeout = float(settings.remote_tts_timeout_sec)
        self.temp_dir = settings.tts_temp_dir
        self._temp_files: set[Path] = set()

    @property
    def pending_files(self) -> set[Path]:
        return set(self._temp_files)

    async def _render_and_play(self, text: str) -> None:
        data = await self._fetch(text)
        audio = data.get("audio")
        if not isinstance(audio, str) or not audio:
            raise SpeechSynthesisError("Empty TTS audio response", ErrorKind.MALFORMED_RESPONSE)
        try:
            audio_bytes = base64.b64decode(audio, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SpeechSynthesisError(f"Failed to decode TTS audio: {exc}", ErrorKind.MALFORMED_RESPONSE) from exc

        path = self._write_temp(audio_bytes, str(data.get("contentType") or ""))
        try:
            pcm, sample_rate, channels = _read_wav(path)
            await self._play_pcm(scale_volume(pcm, self.volume), sample_rate, channels)
        finally:
            self._remove(path)

    async def _fetch(self, text: str) -> dict[str, Any]:
        payload = {"text": text, "speakingRate": self.speaking_rate, "pitch": self.pitch}
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
            try:
                resp = await client.post(self.url, json=payload)
            except httpx.TimeoutException as exc:
                raise SpeechSynthesisError(
                    f"TTS request timed out after {self.timeout:g}s", ErrorKind.TIMEOUT
                ) from exc
            except httpx.RequestError as exc:
                raise SpeechSynthesisError(
                    f"TTS request failed: network error: {exc}", ErrorKind.NETWORK_UNAVAILABLE
                ) from exc
        if not 200 <= resp.status_code < 300:
            raise _status_error(resp)
        try:
            data = resp.json()
        except ValueError as exc:
            raise SpeechSynthesisError(
                f"Failed to parse TTS response: {exc}", ErrorKind.MALFORMED_RESPONSE
            ) from exc
        if not isinstance(data, dict):
            raise SpeechSynthesisError("Failed to parse TTS response", ErrorKind.MALFORMED_RESPONSE)
        return data

    def _write_temp(self, audio_bytes: bytes, content_type: str) -> Path:
        suffix = _SUFFIXES.get(content_type.split(";")[0].strip().lower(), ".bin")
        if self.temp_dir:
            Path(self.temp_dir).mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="tts-", suffix=suffix, dir=self.temp_dir or None)
        path = Path(name)
        self._temp_files.add(path)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(audio_bytes)
        except OSError:
            self._remove(path)
            raise
        return path

    def _remove(self, path: Path) -> None:
        self._temp_files.discard(path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete temp file %s: %s", path, exc)

    def _release(self) -> None:
        for path in list(self._temp_files):
            self._remove(path)


def _read_wav(path: Path) -> tuple[bytes, int, int]:
    try:
        with wave.open(str(path), "rb") as wav:
            if wav.getsampwidth() != 2:
                raise SpeechSynthesisError(f"Unsupported TTS sample width: {wav.getsampwidth() * 8} bits")
            return wav.readframes(wav.getnframes()), wav.getframerate(), wav.getnchannels()
    except (wave.Error, EOFError) as exc:
        raise SpeechSynthesisError(f"Failed to load TTS audio: {exc}", ErrorKind.MALFORMED_RESPONSE) from exc


def _status_error(resp: Any) -> SpeechSynthesisError:
    status = int(resp.status_code)
    detail = ""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            detail = str(error.get("message") or "")
        elif error:
            detail = str(error)
    message = f"TTS request failed: HTTP {status}" + (f" {detail}" if detail else "")
    if status == 429:
        kind = ErrorKind.RATE_LIMITED
    elif status >= 500:
        kind = ErrorKind.SERVER_UNAVAILABLE
    elif status == 400:
        kind = ErrorKind.INVALID_INPUT
    else:
        kind = ErrorKind.SYNTHESIS_ERROR
    return SpeechSynthesisError(message, kind, status_code=status)
