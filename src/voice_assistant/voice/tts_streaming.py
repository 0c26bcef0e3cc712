"""Streaming text-to-speech over the vendor's realtime duplex channel.

One request frame goes out as soon as the channel opens; the vendor answers with
frames of the form ``{"code": 0, "message": ..., "data": {"audio": <b64 PCM16>,
"status": 1|2}}``. ``status == 2`` marks the last frame. Audio is only handed to
the output once the whole utterance arrived, so listeners observe speaking
semantics (``on_start`` when sound starts) rather than download progress.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import numpy as np
import websockets

from voice_assistant.errors import NetworkTimeoutError, ProviderUnavailableError
from voice_assistant.models import (
    VOICE_PARAM_MAX,
    AudioFrame,
    SynthesisChannel,
    SynthesisRequest,
    VoiceParams,
)

from .interfaces import PlaybackListener, SpeechSynthesizer
from .output import ExclusiveAudioOutput

FRAME_STATUS_LAST = 2
_VENDOR_SCALE_MAX = 100
_MAX_MESSAGE_BYTES = 10 * 1024 * 1024


@dataclass(slots=True)
class ChannelInfo:
    url: str
    app_id: str


def vendor_scale(value: int) -> int:
    """Map a 0-15 voice parameter onto the streaming vendor's 0-100 scale."""
    return round(value * _VENDOR_SCALE_MAX / VOICE_PARAM_MAX)


def build_synthesis_frame(
    *,
    app_id: str,
    text: str,
    params: VoiceParams,
    voice_name: str,
    sample_rate: int,
) -> dict[str, Any]:
    return {
        "common": {"app_id": app_id},
        "business": {
            "aue": "raw",
            "auf": f"audio/L16;rate={sample_rate}",
            "vcn": voice_name,
            "speed": vendor_scale(params.speed),
            "volume": vendor_scale(params.volume),
            "pitch": vendor_scale(params.pitch),
            "tte": "UTF8",
        },
        "data": {
            "status": FRAME_STATUS_LAST,
            "text": base64.b64encode(text.encode("utf-8")).decode("ascii"),
        },
    }


def decode_pcm_chunk(encoded: str) -> np.ndarray:
    """Decode one base64 chunk of little-endian 16-bit PCM."""
    raw = base64.b64decode(encoded)
    if len(raw) % 2:
        raw = raw[:-1]
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)


class StreamingSynthesisClient(SpeechSynthesizer):
    """Synthesizes speech through the realtime duplex channel and plays it."""

    channel = SynthesisChannel.STREAMING

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        info_url: str,
        output: ExclusiveAudioOutput,
        *,
        voice_name: str = "x4_lingbosong",
        sample_rate: int = 16_000,
        receive_timeout_seconds: float = 15.0,
        connect: Callable[..., Any] = websockets.connect,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http_client = http_client
        self._info_url = info_url
        self._output = output
        self._voice_name = voice_name
        self._sample_rate = sample_rate
        self._receive_timeout_seconds = receive_timeout_seconds
        self._connect = connect
        self._logger = logger or logging.getLogger("voice_assistant.tts_streaming")
        self._channel: Any | None = None
        self._task: asyncio.Task | None = None

    async def synthesize(self, request: SynthesisRequest, listener: PlaybackListener) -> None:
        self._task = asyncio.current_task()
        try:
            info = await self._fetch_channel_info()
            frame = await self._receive_audio(info, request)
        finally:
            self._task = None
        await self._output.play(frame, listener)

    def close(self) -> None:
        """Drop the channel and any playback this client started."""
        channel, self._channel = self._channel, None
        transport = getattr(channel, "transport", None)
        if transport is not None:
            transport.abort()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self._output.stop()

    async def _fetch_channel_info(self) -> ChannelInfo:
        try:
            response = await self._http_client.get(self._info_url)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise NetworkTimeoutError("Streaming channel info request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                f"Streaming channel info returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderUnavailableError(f"Streaming channel info request failed: {exc}") from exc

        url = payload.get("url") if isinstance(payload, dict) else None
        app_id = payload.get("appId") if isinstance(payload, dict) else None
        if not url or not app_id:
            raise ProviderUnavailableError("Streaming channel info is missing url or appId")
        return ChannelInfo(url=url, app_id=app_id)

    async def _receive_audio(self, info: ChannelInfo, request: SynthesisRequest) -> AudioFrame:
        chunks: list[np.ndarray] = []
        outgoing = build_synthesis_frame(
            app_id=info.app_id,
            text=request.text,
            params=request.voice_params,
            voice_name=self._voice_name,
            sample_rate=self._sample_rate,
        )
        try:
            async with self._connect(info.url, max_size=_MAX_MESSAGE_BYTES) as channel:
                self._channel = channel
                await channel.send(json.dumps(outgoing))
                self._logger.info("streaming_request_sent", extra={"text_chars": len(request.text)})
                while True:
                    raw = await asyncio.wait_for(channel.recv(), timeout=self._receive_timeout_seconds)
                    message = self._parse_frame(raw)
                    code = message.get("code")
                    if code != 0:
                        vendor_message = str(message.get("message") or "")
                        self._logger.warning(
                            "streaming_frame_error", extra={"code": code, "vendor_message": vendor_message}
                        )
                        raise ProviderUnavailableError(
                            f"Streaming synthesis failed with code {code}",
                            vendor_message=vendor_message or None,
                        )
                    data = message.get("data") or {}
                    if data.get("audio"):
                        chunks.append(decode_pcm_chunk(data["audio"]))
                    if data.get("status") == FRAME_STATUS_LAST:
                        break
        except asyncio.TimeoutError as exc:
            raise NetworkTimeoutError(
                f"No synthesis frame within {self._receive_timeout_seconds}s"
            ) from exc
        except websockets.exceptions.ConnectionClosed as exc:
            raise ProviderUnavailableError("Streaming channel closed before synthesis completed") from exc
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            raise ProviderUnavailableError(f"Streaming channel failed: {exc}") from exc
        finally:
            self._channel = None

        if not chunks:
            raise ProviderUnavailableError("Streaming synthesis completed without audio")
        samples = np.concatenate(chunks)
        self._logger.info("streaming_audio_received", extra={"chunks": len(chunks), "samples": len(samples)})
        return AudioFrame(samples=samples, sample_rate=self._sample_rate)

    @staticmethod
    def _parse_frame(raw: str | bytes) -> dict[str, Any]:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ProviderUnavailableError("Streaming channel sent a malformed frame") from exc
        if not isinstance(message, dict):
            raise ProviderUnavailableError("Streaming channel sent a malformed frame")
        return message
