from __future__ import annotations

from .routes_conversation import router as conversation_router
from .routes_health import router as health_router
from .routes_tts import router as tts_router

__all__ = [
    "conversation_router",
    "health_router",
    "tts_router",
]
