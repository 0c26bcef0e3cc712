"""Language-model completion gateway with bounded retries and a canned fallback."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from voice_assistant.errors import (
    NetworkTimeoutError,
    ParameterInvalidError,
    ProviderUnavailableError,
    RateLimitedError,
    UpstreamAuthError,
)
from voice_assistant.models import ChatMessage, ChatRequest, ChatResponse

_TRANSIENT_STATUS = frozenset({408, 502, 503, 504})
_AUTH_STATUS = frozenset({401, 403})
_VALIDATION_STATUS = frozenset({400, 422})


@dataclass(slots=True)
class CannedResponse:
    """Offline reply; chosen when one of ``keywords`` appears in the user's message."""

    text: str
    keywords: tuple[str, ...] = ()

    def matches(self, message: str) -> bool:
        lowered = message.lower()
        return any(keyword.lower() in lowered for keyword in self.keywords)


DEFAULT_CANNED_RESPONSES: tuple[CannedResponse, ...] = (
    CannedResponse(
        text=(
            "I can't reach my language service right now, but regular checks are always worth it. "
            "Look over the basics first and write down anything unusual so we can go through it together later."
        ),
        keywords=("maintenance", "maintain", "inspect", "check"),
    ),
    CannedResponse(
        text=(
            "My connection is down for the moment. A good rule while you wait: slow, steady and precise "
            "beats fast and sloppy. Practice the hard step until it feels boring."
        ),
        keywords=("technique", "tip", "efficient", "faster", "operate"),
    ),
    CannedResponse(
        text=(
            "I'm offline right now, so here's a general planning tip: break the job into small steps, "
            "do the dependent ones first, and leave some slack for surprises."
        ),
        keywords=("schedule", "plan", "arrange", "organize"),
    ),
    CannedResponse(
        text="Sorry, I couldn't reach my language service just now. Please try again in a moment.",
    ),
)


class CompletionGateway:
    """Sends chat requests upstream and never lets upstream unavailability stall the caller.

    Timeouts and transient upstream statuses are retried ``max_retries`` times with
    a fixed delay; when every attempt fails that way a canned response comes back
    with ``used_fallback=True``. Authentication, validation and rate-limit answers
    raise immediately without retry.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        chat_url: str,
        *,
        timeout_seconds: float = 30.0,
        constrained_timeout_seconds: float = 15.0,
        connect_timeout_seconds: float = 5.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 1.0,
        constrained_system_chars: int = 400,
        canned_responses: tuple[CannedResponse, ...] = DEFAULT_CANNED_RESPONSES,
        demo_mode: bool = False,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        if not canned_responses:
            raise ValueError("At least one canned response is required")
        self._http_client = http_client
        self._chat_url = chat_url
        self._timeout_seconds = timeout_seconds
        self._constrained_timeout_seconds = constrained_timeout_seconds
        self._connect_timeout_seconds = connect_timeout_seconds
        self._max_retries = max_retries
        self._retry_delay_seconds = retry_delay_seconds
        self._constrained_system_chars = constrained_system_chars
        self._canned_responses = canned_responses
        self._demo_mode = demo_mode
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._logger = logger or logging.getLogger("voice_assistant.completion")

    async def complete(self, request: ChatRequest, *, constrained: bool = False) -> ChatResponse:
        if not request.messages:
            raise ParameterInvalidError("Chat request needs at least one message")

        if self._demo_mode:
            self._logger.info("completion_demo_response")
            return ChatResponse(text=self.canned_reply(request.messages), used_fallback=True, attempts=0)

        messages = self._prepare_messages(request.messages, constrained=constrained)
        body = {
            "messages": [{"role": message.role, "content": message.content} for message in messages],
            "temperature": request.temperature,
        }
        tier = self._constrained_timeout_seconds if constrained else self._timeout_seconds
        timeout = httpx.Timeout(tier, connect=self._connect_timeout_seconds)

        last_error: NetworkTimeoutError | None = None
        for attempt in range(1, self._max_retries + 2):
            try:
                response = await self._send(body, timeout)
                self._logger.info("completion_succeeded", extra={"attempt": attempt, "chars": len(response.text)})
                response.attempts = attempt
                return response
            except NetworkTimeoutError as exc:
                last_error = exc
                self._logger.warning(
                    "completion_retry",
                    extra={"attempt": attempt, "max_attempts": self._max_retries + 1, "error": str(exc)},
                )

            if attempt <= self._max_retries:
                await self._sleep(self._retry_delay_seconds)

        self._logger.warning(
            "completion_fallback",
            extra={"attempts": self._max_retries + 1, "error": str(last_error) if last_error else None},
        )
        return ChatResponse(
            text=self.canned_reply(request.messages),
            used_fallback=True,
            attempts=self._max_retries + 1,
        )

    def canned_reply(self, messages: list[ChatMessage]) -> str:
        """Pick the canned response whose keywords match the last user message, else a random one."""
        user_text = next((message.content for message in reversed(messages) if message.role == "user"), "")
        for canned in self._canned_responses:
            if canned.keywords and canned.matches(user_text):
                return canned.text
        return self._rng.choice(self._canned_responses).text

    def _prepare_messages(self, messages: list[ChatMessage], *, constrained: bool) -> list[ChatMessage]:
        if not constrained:
            return list(messages)
        limit = self._constrained_system_chars
        return [
            ChatMessage(role=message.role, content=message.content[:limit])
            if message.role == "system" and len(message.content) > limit
            else message
            for message in messages
        ]

    async def _send(self, body: dict[str, Any], timeout: httpx.Timeout) -> ChatResponse:
        try:
            response = await self._http_client.post(self._chat_url, json=body, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise NetworkTimeoutError("Chat completion request timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkTimeoutError(f"Chat completion got no response: {exc}") from exc

        status = response.status_code
        if status in _TRANSIENT_STATUS:
            raise NetworkTimeoutError(f"Chat upstream unavailable (HTTP {status})")
        if status in _AUTH_STATUS:
            raise UpstreamAuthError(
                f"Chat upstream rejected credentials (HTTP {status})", vendor_message=_error_text(response)
            )
        if status == 429:
            raise RateLimitedError("Chat upstream is rate limiting requests")
        if status in _VALIDATION_STATUS:
            raise ParameterInvalidError(
                f"Chat upstream rejected the request (HTTP {status})", vendor_message=_error_text(response)
            )
        if not response.is_success:
            raise ProviderUnavailableError(
                f"Chat upstream failed (HTTP {status})", vendor_message=_error_text(response)
            )

        try:
            payload = response.json()
            text = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderUnavailableError("Chat upstream returned a malformed completion") from exc
        if not isinstance(text, str):
            raise ProviderUnavailableError("Chat upstream returned a malformed completion")

        return ChatResponse(text=text.strip(), used_fallback=bool(payload.get("usedFallback", False)))


def _error_text(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(payload, dict):
        for key in ("message", "error", "details"):
            value = payload.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)
    return None
