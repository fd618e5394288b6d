from __future__ import annotations

import base64
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from monke.core.config import get_settings
from monke.core.logger import get_logger
from monke.core.rate_limit import RateLimiter

logger = get_logger("proxy")

_settings = get_settings()
tts_limiter = RateLimiter(_settings.tts_proxy_rate_limit, _settings.tts_proxy_rate_window_sec)

router = APIRouter(tags=["tts"])

DEFAULT_SPEAKING_RATE = 1.0
DEFAULT_PITCH = 4.0  # higher pitch for a kid-like tone


class TTSRequest(BaseModel):
    text: Optional[str] = None
    speakingRate: Optional[float] = None
    pitch: Optional[float] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("/health")
async def proxy_health(request: Request) -> dict[str, Any]:
    return {
        "status": "ok",
        "hasTtsClient": getattr(request.app.state, "tts_engine", None) is not None,
    }


@router.post("/api/text-to-speech", dependencies=[Depends(tts_limiter)])
async def text_to_speech(payload: TTSRequest, request: Request):
    settings = get_settings()
    text = payload.text
    if not text:
        return _error(400, "Text is required")
    if len(text) > settings.tts_proxy_max_chars:
        return _error(400, f"Text too long (max {settings.tts_proxy_max_chars} characters)")

    engine = getattr(request.app.state, "tts_engine", None)
    if engine is None:
        return _error(503, "Speech synthesis engine not configured")

    speaking_rate = payload.speakingRate if payload.speakingRate is not None else DEFAULT_SPEAKING_RATE
    pitch = payload.pitch if payload.pitch is not None else DEFAULT_PITCH
    try:
        audio = await run_in_threadpool(
            engine.synthesize_wav, text, speaking_rate=speaking_rate, pitch=pitch
        )
    except Exception:
        logger.exception("Text-to-speech error")
        return _error(500, "Failed to synthesize speech")

    logger.info("TTS request: %d chars", len(text))
    return {"audio": base64.b64encode(audio).decode("ascii"), "contentType": "audio/wav"}
