from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Iterable, Sequence

import httpx

from monke.core.config import Settings
from monke.core.credentials import CredentialStore, resolve_api_key
from monke.core.errors import AIServiceError, ErrorKind
from monke.core.history import Message
from monke.core.logger import get_logger, redact

logger = get_logger("llm")


class AIService(ABC):
    """Backend turning a full message list into the assistant's reply."""

    service_name = "AI"
    key_name = ""

    def __init__(self, settings: Settings, api_key: str = "") -> None:
        self.settings = settings
        self._api_key = api_key or ""
        if not self.is_configured:
            logger.warning("%s is not configured. Set an API key in the config or at runtime", self.service_name)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def set_api_key(self, key: str) -> None:
        self._api_key = key or ""

    @abstractmethod
    async def get_response(self, messages: Sequence[Message]) -> str:
        """Return the assistant text or raise :class:`AIServiceError`."""


class HTTPChatService(AIService):
    """Shared request/response handling for JSON-over-HTTP completion APIs."""

    def __init__(self, settings: Settings, api_key: str = "") -> None:
        super().__init__(settings, api_key)
        self.timeout = float(settings.llm_timeout_sec)
        self.temperature = float(settings.llm_temperature)
        self.max_tokens = int(settings.llm_max_tokens)

    @abstractmethod
    def _build_request(self, messages: list[Message]) -> tuple[str, dict[str, Any], dict[str, str]]:
        """Return ``(url, payload, headers)``."""

    @abstractmethod
    def _extract_text(self, data: Any) -> str:
        """Pull the assistant text out of a decoded response body."""

    async def get_response(self, messages: Sequence[Message]) -> str:
        items = list(messages)
        if not items:
            raise AIServiceError("No messages provided", ErrorKind.INVALID_INPUT)
        if not self.is_configured:
            raise AIServiceError(f"{self.service_name} API key not configured", ErrorKind.UNAUTHENTICATED)

        url, payload, headers = self._build_request(items)
        if self.settings.log_api_requests:
            logger.info(
                "%s request: %s",
                self.service_name,
                json.dumps(redact({"url": url, "headers": headers, "body": payload}), ensure_ascii=False),
            )
        try:
            data = await asyncio.wait_for(self._post(url, payload, headers), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AIServiceError(
                f"{self.service_name} request timed out after {self.timeout:g}s", ErrorKind.TIMEOUT
            ) from exc

        if self.settings.log_api_requests:
            logger.info("%s response: %s", self.service_name, json.dumps(redact(data), ensure_ascii=False))
            usage = data.get("usage") if isinstance(data, dict) else None
            if isinstance(usage, dict):
                logger.info("%s tokens used: %s", self.service_name, usage.get("total_tokens", usage))
        return self._extract_text(data)

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> Any:
        timeout = httpx.Timeout(self.timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            try:
                resp = await client.post(url, json=payload, headers=headers)
            except httpx.TimeoutException as exc:
                raise AIServiceError(
                    f"{self.service_name} request timed out after {self.timeout:g}s", ErrorKind.TIMEOUT
                ) from exc
            except httpx.RequestError as exc:
                raise AIServiceError(f"Network error: {exc}", ErrorKind.NETWORK_UNAVAILABLE) from exc
            if not 200 <= resp.status_code < 300:
                error = self._status_error(resp)
                if self.settings.log_api_requests:
                    logger.error("%s error: %s", self.service_name, error.message)
                raise error
            try:
                return resp.json()
            except ValueError as exc:
                raise AIServiceError(
                    f"Failed to parse response: {exc}", ErrorKind.MALFORMED_RESPONSE, status_code=resp.status_code
                ) from exc

    def _status_error(self, resp: Any) -> AIServiceError:
        status = int(resp.status_code)
        detail = _error_detail(resp)
        if status == 401:
            kind, default = ErrorKind.UNAUTHENTICATED, "Invalid API key"
        elif status == 429:
            kind, default = ErrorKind.RATE_LIMITED, "Rate limit exceeded. Please try again later"
        elif 500 <= status < 600:
            kind, default = ErrorKind.SERVER_UNAVAILABLE, f"{self.service_name} server error. Please try again"
        else:
            reason = getattr(resp, "reason_phrase", "") or ""
            kind, default = ErrorKind.NETWORK_UNAVAILABLE, f"Network error: HTTP {status} {reason}".rstrip()
        return AIServiceError(detail or default, kind, status_code=status)


def _error_detail(resp: Any) -> str:
    """Read ``{"error": {"message": ...}}`` (or ``{"error": "..."}``) from an error body."""
    try:
        body = resp.json()
    except Exception:
        return ""
    if not isinstance(body, dict):
        return ""
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else ""
    if isinstance(error, str):
        return error
    return ""


class OpenAIService(HTTPChatService):
    """Hosted chat completion API (gpt-4o-mini, gpt-4, ...)."""

    service_name = "OpenAI"
    key_name = "openai"

    def _build_request(self, messages: list[Message]) -> tuple[str, dict[str, Any], dict[str, str]]:
        payload: dict[str, Any] = {
            "model": self.settings.openai_model,
            "messages": [m.to_payload() for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        return self.settings.openai_api_url, payload, headers

    def _extract_text(self, data: Any) -> str:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise AIServiceError("No response from OpenAI", ErrorKind.MALFORMED_RESPONSE)
        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message")
        if not isinstance(message, dict):
            raise AIServiceError("Failed to parse response: choice without message", ErrorKind.MALFORMED_RESPONSE)
        content = message.get("content")
        if content is None:
            return ""
        if not isinstance(content, str):
            raise AIServiceError("Failed to parse response: non-text content", ErrorKind.MALFORMED_RESPONSE)
        return content


class ClaudeService(HTTPChatService):
    """Anthropic Messages API."""

    service_name = "Claude"
    key_name = "claude"

    def _build_request(self, messages: list[Message]) -> tuple[str, dict[str, Any], dict[str, str]]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict[str, Any] = {
            "model": self.settings.claude_model,
            "messages": [m.to_payload() for m in messages if m.role != "system"],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if system:
            payload["system"] = system
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": self.settings.claude_api_version,
        }
        return self.settings.claude_api_url, payload, headers

    def _extract_text(self, data: Any) -> str:
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list) or not blocks:
            raise AIServiceError("No response from Claude", ErrorKind.MALFORMED_RESPONSE)
        parts = [
            str(block.get("text") or "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "".join(parts)


class LocalLLMService(HTTPChatService):
    """llama.cpp server ``/completion`` endpoint; the key is optional."""

    service_name = "LocalLLM"
    key_name = "local_llm"

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.local_llm_url)

    def _build_request(self, messages: list[Message]) -> tuple[str, dict[str, Any], dict[str, str]]:
        payload: dict[str, Any] = {
            "prompt": render_prompt(messages),
            "n_predict": self.max_tokens,
            "temperature": self.temperature,
            "stop": ["\nUser:"],
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return self.settings.local_llm_url, payload, headers

    def _extract_text(self, data: Any) -> str:
        if not isinstance(data, dict) or "content" not in data:
            raise AIServiceError("No response from local model", ErrorKind.MALFORMED_RESPONSE)
        return str(data.get("content") or "").strip()


_ROLE_LABELS = {"system": "System", "user": "User", "assistant": "Assistant"}


def render_prompt(messages: Iterable[Message]) -> str:
    lines = [f"{_ROLE_LABELS.get(m.role, 'User')}: {m.content}" for m in messages]
    lines.append("Assistant:")
    return "\n".join(lines)


SERVICES: dict[str, type[AIService]] = {
    "openai": OpenAIService,
    "claude": ClaudeService,
    "local_llm": LocalLLMService,
}


def create_ai_service(settings: Settings, store: CredentialStore | None = None) -> AIService:
    """Instantiate the backend selected by ``settings.ai_service``."""
    try:
        service_cls = SERVICES[settings.ai_service]
    except KeyError:
        raise ValueError(f"Unknown AI service: {settings.ai_service}") from None
    api_key = resolve_api_key(settings, service_cls.key_name, store)
    return service_cls(settings, api_key=api_key)


def build_request_messages(
    *,
    system: str | None,
    history: Iterable[Message] | None = None,
    prompt: str | None = None,
) -> list[Message]:
    """System prompt first, then either the stored history or the single user prompt."""
    messages: list[Message] = []
    if system:
        messages.append(Message("system", system))
    if history is not None:
        messages.extend(history)
    elif prompt is not None:
        messages.append(Message("user", prompt))
    return messages
