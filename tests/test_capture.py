import asyncio

import pytest

from monke.core.errors import ErrorKind, SpeechCaptureError
from monke.voice.capture import SimulatedSpeechCapture


def bound(capture: SimulatedSpeechCapture):
    texts: list[str] = []
    errors: list[SpeechCaptureError] = []
    capture.bind(texts.append, errors.append)
    return texts, errors


@pytest.mark.asyncio
async def test_delivers_queued_utterance_once():
    capture = SimulatedSpeechCapture(["  hello there  "], delay=0.01)
    texts, errors = bound(capture)

    assert capture.start_recording() is True
    assert capture.is_recording
    await asyncio.sleep(0.05)

    assert texts == ["hello there"]
    assert errors == []
    assert not capture.is_recording


@pytest.mark.asyncio
async def test_second_start_while_recording_is_rejected():
    capture = SimulatedSpeechCapture(["one"], delay=0.01)
    texts, _ = bound(capture)

    assert capture.start_recording() is True
    assert capture.start_recording() is False
    await asyncio.sleep(0.05)

    assert texts == ["one"]
    assert capture.sessions_started == 1


@pytest.mark.asyncio
async def test_stopped_session_never_reports():
    capture = SimulatedSpeechCapture(["ignored"], delay=0.01)
    texts, errors = bound(capture)

    capture.start_recording()
    capture.stop_recording()
    capture.stop_recording()
    await asyncio.sleep(0.05)

    assert texts == []
    assert errors == []
    assert not capture.is_recording


@pytest.mark.asyncio
async def test_blank_recognition_is_an_error():
    capture = SimulatedSpeechCapture(["   "], delay=0.01)
    texts, errors = bound(capture)

    capture.start_recording()
    await asyncio.sleep(0.05)

    assert texts == []
    assert [e.message for e in errors] == ["No speech detected"]
    assert errors[0].kind is ErrorKind.CAPTURE_ERROR


@pytest.mark.asyncio
async def test_queued_error_and_denied_permission():
    capture = SimulatedSpeechCapture([SpeechCaptureError("Audio engine failed")], delay=0.01)
    _, errors = bound(capture)
    capture.start_recording()
    await asyncio.sleep(0.05)
    assert errors[-1].message == "Audio engine failed"

    capture.permission_granted = False
    capture.request_permission()
    capture.start_recording()
    await asyncio.sleep(0.05)
    assert errors[-1].kind is ErrorKind.PERMISSION_DENIED
    assert capture.permission_requests == 1


@pytest.mark.asyncio
async def test_empty_queue_uses_default_utterance():
    capture = SimulatedSpeechCapture(delay=0.01)
    texts, _ = bound(capture)
    capture.start_recording()
    await asyncio.sleep(0.05)
    assert texts == [SimulatedSpeechCapture.default_utterance]
