from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """Classification attached to every failure surfaced by the loop."""

    INVALID_INPUT = "invalid_input"
    UNAUTHENTICATED = "unauthenticated"
    RATE_LIMITED = "rate_limited"
    SERVER_UNAVAILABLE = "server_unavailable"
    NETWORK_UNAVAILABLE = "network_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"
    CAPTURE_ERROR = "capture_error"
    PERMISSION_DENIED = "permission_denied"
    SYNTHESIS_ERROR = "synthesis_error"
    UNKNOWN = "unknown"


class ConversationError(Exception):
    """Base error carrying a structured :class:`ErrorKind`."""

    default_kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, kind={self.kind.value})"


class AIServiceError(ConversationError):
    pass


class SpeechCaptureError(ConversationError):
    default_kind = ErrorKind.CAPTURE_ERROR


class SpeechSynthesisError(ConversationError):
    default_kind = ErrorKind.SYNTHESIS_ERROR


CONFIGURATION_MESSAGE = "Oops! I need to be set up first. Ask a grown-up to help!"
NETWORK_MESSAGE = "Oh no! I can't connect right now. Check your internet!"
TIMEOUT_MESSAGE = "That's taking too long. Let's try again!"
PERMISSION_MESSAGE = "I need permission to hear you. Can you allow it in settings?"
RATE_LIMIT_MESSAGE = "I'm a bit tired! Can you try again in a minute?"
GENERIC_MESSAGE = "Oops! Something went wrong. Let's try again!"

_KIND_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.UNAUTHENTICATED: CONFIGURATION_MESSAGE,
    ErrorKind.NETWORK_UNAVAILABLE: NETWORK_MESSAGE,
    ErrorKind.SERVER_UNAVAILABLE: NETWORK_MESSAGE,
    ErrorKind.TIMEOUT: TIMEOUT_MESSAGE,
    ErrorKind.PERMISSION_DENIED: PERMISSION_MESSAGE,
    ErrorKind.RATE_LIMITED: RATE_LIMIT_MESSAGE,
}

_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("api key", "not configured"), CONFIGURATION_MESSAGE),
    (("network", "connection"), NETWORK_MESSAGE),
    (("timeout", "too long"), TIMEOUT_MESSAGE),
    (("permission",), PERMISSION_MESSAGE),
    (("rate limit",), RATE_LIMIT_MESSAGE),
)


# Kinds too coarse to pick a phrasing from; their message text is scanned instead.
_UNSPECIFIC_KINDS = frozenset({ErrorKind.UNKNOWN, ErrorKind.CAPTURE_ERROR, ErrorKind.SYNTHESIS_ERROR})


def humanize_error(error: ConversationError | str) -> str:
    """Return a spoken-friendly phrasing for ``error``.

    Advisory only: the structured kind wins; the keyword scan over the message
    is a best-effort fallback for errors that carry no specific kind.
    """
    if isinstance(error, ConversationError):
        if error.kind not in _UNSPECIFIC_KINDS:
            return _KIND_MESSAGES.get(error.kind, GENERIC_MESSAGE)
        text = error.message
    else:
        text = error
    lowered = text.lower()
    for keywords, message in _KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return message
    return GENERIC_MESSAGE


def error_response(code: str, message: str, *, details: Any | None = None, cycle_id: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    if cycle_id is not None:
        payload["error"]["cycle_id"] = cycle_id
    return payload
