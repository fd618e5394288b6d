from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from monke.core.errors import error_response
from monke.core.logger import get_logger
from monke.core.ws import send_error, serialize_error, serialize_event
from monke.voice.orchestrator import ConversationOrchestrator
from monke.voice.state import ConversationEvent

router = APIRouter(prefix="/conversation", tags=["conversation"])
logger = get_logger("server")

_SOURCE = "conversation"


class ApiKeyPayload(BaseModel):
    key: str = Field(..., min_length=1)
    persist: bool = True


def _lookup(app: Any) -> ConversationOrchestrator:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail=error_response("not_ready", "conversation loop not initialised"),
        )
    return orchestrator


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    return _lookup(request.app)


@router.get("/state")
async def get_state(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.status().to_payload()


@router.post("/listen")
async def start_listening(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    orchestrator.start_listening()
    return {"state": orchestrator.state.value}


@router.post("/stop")
async def stop_listening(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    orchestrator.stop_listening()
    return {"state": orchestrator.state.value}


@router.post("/cancel")
async def cancel(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    orchestrator.cancel()
    return {"state": orchestrator.state.value}


@router.get("/history")
async def get_history(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    messages = [m.to_payload() for m in orchestrator.history_messages()]
    return {"messages": messages, "capacity": orchestrator.history.capacity}


@router.delete("/history")
async def clear_history(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> dict[str, str]:
    orchestrator.clear_history()
    return {"status": "cleared"}


@router.put("/api-key")
async def set_api_key(
    payload: ApiKeyPayload, orchestrator: ConversationOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    orchestrator.set_api_key(payload.key.strip(), persist=payload.persist)
    return {"service": orchestrator.ai_service.service_name, "configured": orchestrator.ai_service.is_configured}


_COMMANDS = {
    "listen": "start_listening",
    "stop": "stop_listening",
    "cancel": "cancel",
    "clear_history": "clear_history",
}


@router.websocket("/events")
async def events_ws(websocket: WebSocket) -> None:
    """Push every orchestrator notification; accept ``{"event": "listen"|"stop"|"cancel"}`` commands."""
    orchestrator = getattr(websocket.app.state, "orchestrator", None)
    await websocket.accept()
    if orchestrator is None:
        await send_error(websocket, _SOURCE, "conversation loop not initialised", code="not_ready")
        await websocket.close(code=1011)
        return

    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def _listener(event: ConversationEvent):
        def _enqueue(payload: Any) -> None:
            queue.put_nowait(serialize_event(_SOURCE, event.value, payload))

        return _enqueue

    unsubscribes = [orchestrator.subscribe(event, _listener(event)) for event in ConversationEvent]

    async def _pump() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    sender = asyncio.create_task(_pump())
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                queue.put_nowait(serialize_error(_SOURCE, "invalid JSON message"))
                continue
            command = message.get("event") if isinstance(message, dict) else None
            method = _COMMANDS.get(str(command))
            if method is None:
                queue.put_nowait(serialize_error(_SOURCE, f"unknown command: {command}"))
                continue
            getattr(orchestrator, method)()
    except WebSocketDisconnect:
        logger.debug("Event subscriber disconnected")
    finally:
        sender.cancel()
        for unsubscribe in unsubscribes:
            unsubscribe()
