from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from monke.api import conversation_router, health_router
from monke.core.config import get_settings
from monke.core.logger import get_logger
from monke.voice.orchestrator import build_orchestrator

config = get_settings()
logger = get_logger("server")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(config)
        await app.state.orchestrator.warmup()
    logger.info("Server started")
    try:
        yield
    finally:
        await app.state.orchestrator.aclose()
        logger.info("Server stopped")


app = FastAPI(lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=config.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(conversation_router)
