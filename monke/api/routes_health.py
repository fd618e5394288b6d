from __future__ import annotations

from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def get_health(request: Request) -> dict[str, object]:
    """Report liveness plus whether the conversation loop is usable."""
    try:
        pkg_version = version("monke")
    except PackageNotFoundError:  # pragma: no cover - depends on installation
        pkg_version = "unknown"

    orchestrator = getattr(request.app.state, "orchestrator", None)
    ai_configured = bool(orchestrator and orchestrator.ai_service.is_configured)
    return {
        "status": "ok" if orchestrator is not None else "starting",
        "version": pkg_version,
        "time": datetime.now(timezone.utc).isoformat(),
        "state": orchestrator.state.value if orchestrator is not None else None,
        "ai_configured": ai_configured,
    }
