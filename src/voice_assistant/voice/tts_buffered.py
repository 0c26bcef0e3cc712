"""Buffered text-to-speech: one authenticated request, one complete audio payload."""

from __future__ import annotations

import io
import json
import logging
from typing import Callable

import httpx

from voice_assistant.errors import (
    AudioPlaybackError,
    NetworkTimeoutError,
    ParameterInvalidError,
    ProviderUnavailableError,
)
from voice_assistant.models import (
    VOICE_PARAM_MAX,
    VOICE_PARAM_MIN,
    AudioFrame,
    SynthesisChannel,
    SynthesisRequest,
)
from voice_assistant.rate_limit import SlidingWindowRateLimiter
from voice_assistant.token_cache import TokenCache

from .interfaces import PlaybackListener, SpeechSynthesizer
from .output import ExclusiveAudioOutput

BUFFERED_MAX_CHARS = 1_000


def validate_request(request: SynthesisRequest, *, max_chars: int = BUFFERED_MAX_CHARS) -> None:
    """Raise ParameterInvalidError when text or voice parameters are out of contract."""
    if not request.text or not request.text.strip():
        raise ParameterInvalidError("Synthesis text is empty")
    if len(request.text) > max_chars:
        raise ParameterInvalidError(f"Synthesis text has {len(request.text)} characters; limit is {max_chars}")

    params = request.voice_params
    for name in ("speed", "pitch", "volume"):
        value = getattr(params, name)
        if isinstance(value, bool) or not isinstance(value, int) or not VOICE_PARAM_MIN <= value <= VOICE_PARAM_MAX:
            raise ParameterInvalidError(
                f"Voice parameter {name}={value!r} is outside {VOICE_PARAM_MIN}-{VOICE_PARAM_MAX}"
            )


def decode_audio(payload: bytes) -> AudioFrame:
    """Decode an encoded audio payload (mp3/wav) into mono float samples."""
    try:
        import soundfile as sf
    except (ImportError, OSError) as exc:  # pragma: no cover - import guard
        raise RuntimeError(
            "Audio decoder unavailable. Install extras with: pip install 'voice-assistant[voice]'"
        ) from exc

    try:
        samples, sample_rate = sf.read(io.BytesIO(payload), dtype="float32", always_2d=True)
    except (RuntimeError, ValueError) as exc:
        raise AudioPlaybackError(f"Could not decode synthesized audio: {exc}") from exc
    return AudioFrame(samples=samples.mean(axis=1), sample_rate=int(sample_rate))


def vendor_error_message(body: bytes) -> str | None:
    """Best-effort extraction of the vendor's message from a JSON error body."""
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    for key in ("error_msg", "details", "error"):
        if payload.get(key):
            return str(payload[key])
    return None


class BufferedSynthesisClient(SpeechSynthesizer):
    """Requests a whole utterance from the buffered vendor endpoint and plays it."""

    channel = SynthesisChannel.BUFFERED

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        synthesis_url: str,
        token_cache: TokenCache,
        output: ExclusiveAudioOutput,
        *,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        client_identity: str = "local-client",
        max_chars: int = BUFFERED_MAX_CHARS,
        decoder: Callable[[bytes], AudioFrame] = decode_audio,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http_client = http_client
        self._synthesis_url = synthesis_url
        self._token_cache = token_cache
        self._output = output
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._client_identity = client_identity
        self._max_chars = max_chars
        self._decoder = decoder
        self._logger = logger or logging.getLogger("voice_assistant.tts_buffered")

    async def synthesize(self, request: SynthesisRequest, listener: PlaybackListener) -> None:
        audio = await self.fetch_audio(request)
        frame = self._decoder(audio)
        await self._output.play(frame, listener)

    async def fetch_audio(self, request: SynthesisRequest) -> bytes:
        """Validate, rate-limit, authenticate and download the encoded audio for ``request``."""
        validate_request(request, max_chars=self._max_chars)
        self._rate_limiter.acquire(self._client_identity)
        token = await self._token_cache.get()

        params = request.voice_params
        body = {
            "text": request.text,
            "spd": params.speed,
            "pit": params.pitch,
            "vol": params.volume,
            "per": params.voice_id,
        }
        try:
            response = await self._http_client.post(
                self._synthesis_url,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise NetworkTimeoutError("Buffered synthesis request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"Buffered synthesis request failed: {exc}") from exc

        content_type = response.headers.get("content-type", "")
        if response.is_success and "audio" in content_type:
            self._logger.info(
                "buffered_audio_received",
                extra={"bytes": len(response.content), "content_type": content_type},
            )
            return response.content

        vendor_message = vendor_error_message(response.content)
        if response.status_code == 401:
            self._token_cache.invalidate()
        if response.status_code == 400:
            raise ParameterInvalidError("Buffered synthesis rejected the request", vendor_message=vendor_message)
        self._logger.warning(
            "buffered_synthesis_failed",
            extra={"status_code": response.status_code, "vendor_message": vendor_message},
        )
        raise ProviderUnavailableError(
            f"Buffered synthesis failed (HTTP {response.status_code})",
            vendor_message=vendor_message,
        )

    def close(self) -> None:
        self._output.stop()
