from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import WebSocket

from monke.core.errors import ConversationError
from monke.core.trace import get_cycle_id


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, ConversationError):
        return payload.to_payload()
    if isinstance(payload, Enum):
        return payload.value
    return payload


def serialize_event(source: str, event: str, payload: Any) -> dict[str, Any]:
    """Serialise an orchestrator notification in the common WebSocket format."""
    return {
        "type": "event",
        "source": source,
        "event": event,
        "payload": _jsonable(payload),
        "cycle_id": get_cycle_id(),
        "ts": datetime.now(timezone.utc).isoformat(),
    }


def serialize_error(source: str, message: str, code: str = "invalid_request") -> dict[str, Any]:
    return {
        "type": "error",
        "source": source,
        "code": code,
        "message": message,
        "ts": datetime.now(timezone.utc).isoformat(),
    }


async def send_error(websocket: WebSocket, source: str, message: str, code: str = "invalid_request") -> None:
    await websocket.send_json(serialize_error(source, message, code))
