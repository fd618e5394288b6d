import pytest

from monke.core import errors
from monke.core.errors import AIServiceError, ConversationError, ErrorKind, SpeechCaptureError, humanize_error


@pytest.mark.parametrize(
    "kind, expected",
    [
        (ErrorKind.UNAUTHENTICATED, errors.CONFIGURATION_MESSAGE),
        (ErrorKind.NETWORK_UNAVAILABLE, errors.NETWORK_MESSAGE),
        (ErrorKind.SERVER_UNAVAILABLE, errors.NETWORK_MESSAGE),
        (ErrorKind.TIMEOUT, errors.TIMEOUT_MESSAGE),
        (ErrorKind.PERMISSION_DENIED, errors.PERMISSION_MESSAGE),
        (ErrorKind.RATE_LIMITED, errors.RATE_LIMIT_MESSAGE),
        (ErrorKind.MALFORMED_RESPONSE, errors.GENERIC_MESSAGE),
    ],
)
def test_humanize_uses_kind(kind: ErrorKind, expected: str) -> None:
    assert humanize_error(AIServiceError("https://host/timeout/path failed", kind)) == expected


def test_humanize_falls_back_to_keywords() -> None:
    assert humanize_error("OpenAI API key not configured") == errors.CONFIGURATION_MESSAGE
    assert humanize_error(ConversationError("connection reset")) == errors.NETWORK_MESSAGE
    assert humanize_error(SpeechCaptureError("Microphone permission missing")) == errors.PERMISSION_MESSAGE
    assert humanize_error("something odd") == errors.GENERIC_MESSAGE


def test_default_kinds_and_payload() -> None:
    assert SpeechCaptureError("x").kind is ErrorKind.CAPTURE_ERROR
    err = AIServiceError("Invalid API key", ErrorKind.UNAUTHENTICATED, status_code=401)
    assert err.to_payload() == {"kind": "unauthenticated", "message": "Invalid API key", "status_code": 401}
    assert errors.error_response("not_ready", "nope") == {"error": {"code": "not_ready", "message": "nope"}}
