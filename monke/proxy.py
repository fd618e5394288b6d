"""Speech synthesis proxy: ``POST /api/text-to-speech`` returning base64 WAV audio."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from monke.api import tts_router
from monke.core.config import get_settings
from monke.core.logger import get_logger

logger = get_logger("proxy")
config = get_settings()


def load_engine():
    """Load the Piper voice used by the proxy, or None when unavailable."""
    if not config.tts_voice_path:
        logger.warning("No Piper voice configured (tts_voice_path); synthesis disabled")
        return None
    from monke.voice.tts import PiperTTS

    try:
        return PiperTTS.from_model(config.tts_voice_path)
    except (FileNotFoundError, RuntimeError) as exc:
        logger.error("Failed to initialize speech synthesis: %s", exc)
        return None


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if not hasattr(app.state, "tts_engine"):
        app.state.tts_engine = load_engine()
    logger.info("Speech proxy started (engine=%s)", app.state.tts_engine is not None)
    yield


app = FastAPI(lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=config.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tts_router)
