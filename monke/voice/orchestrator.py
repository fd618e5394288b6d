"""Conversation state machine: listen, ask the AI service, speak the reply.

States run ``IDLE -> LISTENING -> PROCESSING -> SPEAKING -> IDLE``. Any
failure moves to ``ERROR``, which falls back to ``IDLE`` after
``error_recovery_delay`` seconds or on :meth:`ConversationOrchestrator.cancel`.

All public methods must be called from the thread running the event loop.
Only one stage is active at a time; results that arrive after the cycle that
requested them has ended are dropped.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from monke.core.config import Settings
from monke.core.credentials import CredentialStore
from monke.core.errors import (
    AIServiceError,
    ConversationError,
    ErrorKind,
    SpeechCaptureError,
    SpeechSynthesisError,
    humanize_error,
)
from monke.core.filters import filter_response
from monke.core.history import ConversationHistory, Message
from monke.core.llm import AIService, build_request_messages
from monke.core.logger import get_logger
from monke.core.trace import new_cycle_id
from monke.voice.capture import SpeechCaptureSource
from monke.voice.events import EventBus
from monke.voice.state import ConversationEvent, ConversationState, ConversationStatus
from monke.voice.tts import SpeechSynthesizer

logger = get_logger("orchestrator")


class ConversationOrchestrator:
    """Owns the conversation state and sequences capture, AI request and speech."""

    def __init__(
        self,
        settings: Settings,
        ai_service: AIService,
        capture: SpeechCaptureSource,
        synthesizer: SpeechSynthesizer | None = None,
        *,
        history: ConversationHistory | None = None,
        credentials: CredentialStore | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.settings = settings
        self.ai_service = ai_service
        self.capture = capture
        self.synthesizer = synthesizer
        self.history = history or ConversationHistory(settings.max_conversation_history)
        self.credentials = credentials or CredentialStore(settings.credentials_path)
        self.events = events or EventBus()

        self._state = ConversationState.IDLE
        self._cycle = 0
        self._request_task: asyncio.Task[None] | None = None
        self._recovery: asyncio.TimerHandle | None = None

        self.capture.bind(self._on_speech_recognized, self._on_capture_error)
        if self.synthesizer is not None:
            self.synthesizer.bind(self._on_speech_finished, self._on_synthesis_error)
        self.capture.request_permission()
        logger.info(
            "Initialized with %s service, %s synthesizer",
            self.ai_service.service_name,
            self.synthesizer.name if self.synthesizer else "no",
        )

    # ------------------------------------------------------------------ #
    # Read-only surface
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state not in (ConversationState.IDLE, ConversationState.ERROR)

    def history_messages(self) -> list[Message]:
        return self.history.get_messages()

    def status(self) -> ConversationStatus:
        return ConversationStatus(
            state=self._state,
            ai_service=self.ai_service.service_name,
            ai_configured=self.ai_service.is_configured,
            synthesizer_ready=self.synthesizer is not None,
            history_length=len(self.history),
            is_recording=self.capture.is_recording,
            is_speaking=bool(self.synthesizer and self.synthesizer.is_speaking),
        )

    def subscribe(self, event: ConversationEvent, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Register ``listener`` for ``event``; call the result to unsubscribe."""
        return self.events.subscribe(event, listener)

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    def start_listening(self) -> None:
        if self._state is not ConversationState.IDLE:
            logger.warning("Cannot start listening in state: %s", self._state.value)
            return
        self._cycle += 1
        new_cycle_id()
        if not self.ai_service.is_configured:
            self._fail(
                AIServiceError(
                    f"{self.ai_service.service_name} is not configured. Please set your API key.",
                    ErrorKind.UNAUTHENTICATED,
                )
            )
            return
        if self.synthesizer is not None and self.synthesizer.is_speaking:
            # a spoken error message may still be playing
            self.synthesizer.stop()

        logger.info("Starting to listen...")
        self._set_state(ConversationState.LISTENING)
        if not self.capture.start_recording():
            reason = self.capture.last_error or "Failed to start listening. Check microphone permissions."
            self._fail(SpeechCaptureError(reason))

    def stop_listening(self) -> None:
        if self._state is not ConversationState.LISTENING:
            logger.debug("stop_listening ignored in state: %s", self._state.value)
            return
        logger.info("Stopping listening...")
        self.capture.stop_recording()
        self._set_state(ConversationState.IDLE)

    def cancel(self) -> None:
        """Abort whatever is running and return to IDLE; never raises."""
        logger.info("Cancelling current operation...")
        self._cycle += 1
        self._cancel_recovery()
        if self._request_task is not None:
            self._request_task.cancel()
            self._request_task = None
        try:
            self.capture.stop_recording()
        except Exception:
            logger.exception("Failed to stop speech capture")
        if self.synthesizer is not None:
            try:
                self.synthesizer.stop()
            except Exception:
                logger.exception("Failed to stop speech synthesis")
        self._set_state(ConversationState.IDLE)

    def clear_history(self) -> None:
        logger.info("Clearing conversation history")
        self.history.clear()

    def set_api_key(self, key: str, *, persist: bool = True) -> None:
        """Replace the active service's key; persisted for later runs unless told otherwise."""
        self.ai_service.set_api_key(key)
        if persist and self.ai_service.key_name:
            self.credentials.set(self.ai_service.key_name, key)
        logger.info("API key updated for %s", self.ai_service.service_name)

    async def warmup(self) -> None:
        """Preload the synthesizer so the first reply starts without delay."""
        if self.synthesizer is not None and self.settings.tts_warmup:
            await self.synthesizer.warmup()

    async def aclose(self) -> None:
        self.cancel()

    # ------------------------------------------------------------------ #
    # Collaborator callbacks
    # ------------------------------------------------------------------ #
    def _on_speech_recognized(self, text: str) -> None:
        if self._state is not ConversationState.LISTENING:
            logger.debug("Dropping speech recognized in state: %s", self._state.value)
            return
        text = (text or "").strip()
        if not text:
            self._fail(SpeechCaptureError("No speech detected"))
            return
        logger.info("User said: %s", text)
        self.events.publish(ConversationEvent.USER_SPEECH_RECOGNIZED, text)

        history_enabled = self.settings.enable_conversation_history
        if history_enabled:
            self.history.add_message("user", text)
        messages = build_request_messages(
            system=self.settings.system_prompt,
            history=self.history.get_messages() if history_enabled else None,
            prompt=text,
        )
        self._set_state(ConversationState.PROCESSING)
        loop = asyncio.get_running_loop()
        self._request_task = loop.create_task(self._process(messages, self._cycle))

    def _on_capture_error(self, error: SpeechCaptureError) -> None:
        if self._state is not ConversationState.LISTENING:
            logger.debug("Dropping capture error in state: %s", self._state.value)
            return
        self._fail(error)

    def _on_speech_finished(self) -> None:
        if self._state is not ConversationState.SPEAKING:
            return
        logger.info("Speech finished")
        self._set_state(ConversationState.IDLE)

    def _on_synthesis_error(self, error: SpeechSynthesisError) -> None:
        if self._state is not ConversationState.SPEAKING:
            logger.warning("Speech synthesis error outside a reply: %s", error.message)
            return
        self._fail(error)

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #
    async def _process(self, messages: list[Message], cycle: int) -> None:
        error: ConversationError | None = None
        reply = ""
        try:
            reply = await self.ai_service.get_response(messages)
        except asyncio.CancelledError:
            raise
        except ConversationError as exc:
            error = exc
        except Exception as exc:
            logger.exception("AI service failed")
            error = AIServiceError(str(exc) or type(exc).__name__, ErrorKind.UNKNOWN)

        if cycle != self._cycle or self._state is not ConversationState.PROCESSING:
            logger.debug("Dropping stale AI result of cycle %s", cycle)
            return
        self._request_task = None

        if error is not None:
            self._fail(error)
            return
        if not reply or not reply.strip():
            self._fail(AIServiceError("AI returned empty response", ErrorKind.MALFORMED_RESPONSE))
            return

        logger.info("AI response: %s", reply)
        if self.settings.enable_conversation_history:
            self.history.add_message("assistant", reply)
        self.events.publish(ConversationEvent.RESPONSE_RECEIVED, reply)

        filtered = filter_response(reply)
        logger.debug("Filtered for speech: %s", filtered)
        self.events.publish(ConversationEvent.RESPONSE_SPEAKING, filtered)

        if self.synthesizer is None:
            self._fail(SpeechSynthesisError("Text-to-speech not initialized"))
            return
        self._set_state(ConversationState.SPEAKING)
        self.synthesizer.speak(filtered)

    # ------------------------------------------------------------------ #
    # State & errors
    # ------------------------------------------------------------------ #
    def _set_state(self, new_state: ConversationState) -> None:
        if new_state is self._state:
            return
        logger.info("State: %s -> %s", self._state.value, new_state.value)
        self._state = new_state
        self.events.publish(ConversationEvent.STATE_CHANGED, new_state)

    def _fail(self, error: ConversationError) -> None:
        logger.error("Error (%s): %s", error.kind.value, error.message)
        self._set_state(ConversationState.ERROR)
        self.events.publish(ConversationEvent.ERROR, error)
        if self.settings.speak_errors and self.synthesizer is not None and not self.synthesizer.is_speaking:
            self.synthesizer.speak(humanize_error(error))
        self._schedule_recovery()

    def _schedule_recovery(self) -> None:
        self._cancel_recovery()
        loop = asyncio.get_running_loop()
        self._recovery = loop.call_later(self.settings.error_recovery_delay, self._recover)

    def _cancel_recovery(self) -> None:
        if self._recovery is not None:
            self._recovery.cancel()
            self._recovery = None

    def _recover(self) -> None:
        self._recovery = None
        if self._state is ConversationState.ERROR:
            self._set_state(ConversationState.IDLE)


def build_orchestrator(
    settings: Settings,
    *,
    simulate_capture: bool = False,
    capture: SpeechCaptureSource | None = None,
    synthesizer: Optional[SpeechSynthesizer] = None,
) -> ConversationOrchestrator:
    """Wire the collaborators selected by ``settings`` into one orchestrator."""
    from monke.core.llm import create_ai_service
    from monke.voice.capture import create_capture_source
    from monke.voice.tts import create_synthesizer

    store = CredentialStore(settings.credentials_path)
    return ConversationOrchestrator(
        settings,
        create_ai_service(settings, store),
        capture or create_capture_source(settings, simulate=simulate_capture),
        synthesizer or create_synthesizer(settings),
        credentials=store,
    )
