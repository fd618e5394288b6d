from __future__ import annotations

import uuid
from contextvars import ContextVar


_cycle_id: ContextVar[str | None] = ContextVar("cycle_id", default=None)


def new_cycle_id() -> str:
    """Tag the current context with a fresh conversation cycle id."""
    cid = uuid.uuid4().hex[:8]
    _cycle_id.set(cid)
    return cid


def get_cycle_id() -> str | None:
    return _cycle_id.get()
