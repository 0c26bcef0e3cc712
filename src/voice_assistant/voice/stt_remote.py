"""Remote chunked speech recognition: microphone audio uploaded to the ASR endpoint.

Captured PCM is grouped into fixed-duration chunks (one second by default); each
chunk is posted with ``isFinal=false`` and its text reported as an interim
result. On ``stop`` the whole recording is posted once with ``isFinal=true`` and
that answer is the authoritative final transcript. Uploads run one at a time so
results arrive in capture order.
"""

from __future__ import annotations

import asyncio
import io
import logging
import wave
from typing import Callable, Protocol

import httpx

from voice_assistant.errors import NetworkTimeoutError, ProviderUnavailableError, VoiceAssistantError
from voice_assistant.models import RecognitionProvider
from voice_assistant.token_cache import TokenCache

from .interfaces import RecognitionAdapter, RecognitionListener

_SAMPLE_WIDTH = 2


class MicrophoneStream(Protocol):
    """Push-style microphone: delivers raw 16-bit mono PCM blocks to a callback on the event loop."""

    def is_available(self) -> bool:
        """Whether an input device exists."""

    def open(self, on_block: Callable[[bytes], None]) -> None:
        """Acquire the microphone and start delivering blocks."""

    def close(self) -> None:
        """Release the microphone immediately."""


class SoundDeviceMicrophone(MicrophoneStream):
    """Microphone capture through a ``sounddevice`` raw input stream."""

    def __init__(
        self,
        *,
        sample_rate: int = 16_000,
        block_seconds: float = 0.1,
        device: int | str | None = None,
    ) -> None:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Microphone backend unavailable. Install extras with: pip install 'voice-assistant[voice]'"
            ) from exc
        self._sd = sd
        self._sample_rate = sample_rate
        self._blocksize = max(1, int(sample_rate * block_seconds))
        self._device = device
        self._stream = None

    def is_available(self) -> bool:
        try:
            self._sd.query_devices(self._device, kind="input")
        except (ValueError, self._sd.PortAudioError):
            return False
        return True

    def open(self, on_block: Callable[[bytes], None]) -> None:
        loop = asyncio.get_running_loop()

        def _callback(indata, frames, time_info, status) -> None:
            loop.call_soon_threadsafe(on_block, bytes(indata))

        stream = self._sd.RawInputStream(
            samplerate=self._sample_rate,
            channels=1,
            dtype="int16",
            blocksize=self._blocksize,
            device=self._device,
            callback=_callback,
        )
        stream.start()
        self._stream = stream

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.abort()
            stream.close()


def pcm_to_wav(pcm: bytes, sample_rate: int) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(_SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class RemoteRecognitionAdapter(RecognitionAdapter):
    """Chunked upload recognition against the token-authenticated ASR endpoint."""

    provider = RecognitionProvider.REMOTE

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        asr_url: str,
        microphone: MicrophoneStream,
        *,
        token_cache: TokenCache | None = None,
        sample_rate: int = 16_000,
        chunk_seconds: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http_client = http_client
        self._asr_url = asr_url
        self._microphone = microphone
        self._token_cache = token_cache
        self._sample_rate = sample_rate
        self._chunk_bytes = max(_SAMPLE_WIDTH, int(sample_rate * chunk_seconds) * _SAMPLE_WIDTH)
        self._logger = logger or logging.getLogger("voice_assistant.recognition.remote")

        self._listener: RecognitionListener | None = None
        self._recording = False
        self._pending = bytearray()
        self._recorded = bytearray()
        self._uploads: asyncio.Queue[tuple[bytes, bool]] | None = None
        self._worker: asyncio.Task[None] | None = None

    def is_supported(self) -> bool:
        return self._microphone.is_available()

    async def start(self, listener: RecognitionListener) -> None:
        if self._listener is not None:
            return
        if self._token_cache is not None:
            await self._token_cache.get()

        self._pending = bytearray()
        self._recorded = bytearray()
        self._uploads = asyncio.Queue()
        try:
            self._microphone.open(self._on_block)
        except Exception as exc:  # noqa: BLE001 - device errors vary by host audio stack.
            raise ProviderUnavailableError(f"Microphone unavailable: {exc}") from exc

        self._listener = listener
        self._recording = True
        self._worker = asyncio.create_task(self._upload_loop(listener, self._uploads), name="remote-recognition")
        self._logger.info("remote_recognition_started", extra={"chunk_bytes": self._chunk_bytes})

    def stop(self) -> None:
        if not self._recording or self._uploads is None:
            return
        self._recording = False
        self._microphone.close()
        self._recorded.extend(self._pending)
        self._pending = bytearray()
        self._uploads.put_nowait((bytes(self._recorded), True))
        self._logger.info("remote_recognition_finalizing", extra={"recorded_bytes": len(self._recorded)})

    def cancel(self) -> None:
        self._teardown()

    def _on_block(self, block: bytes) -> None:
        if not self._recording or self._uploads is None:
            return
        self._pending.extend(block)
        while len(self._pending) >= self._chunk_bytes:
            chunk = bytes(self._pending[: self._chunk_bytes])
            del self._pending[: self._chunk_bytes]
            self._recorded.extend(chunk)
            self._uploads.put_nowait((chunk, False))

    async def _upload_loop(self, listener: RecognitionListener, uploads: asyncio.Queue[tuple[bytes, bool]]) -> None:
        while True:
            audio, is_final = await uploads.get()
            try:
                text = await self._recognize(audio, is_final=is_final) if audio else ""
            except VoiceAssistantError as exc:
                if self._listener is listener:
                    self._teardown()
                    self._logger.warning("remote_recognition_failed", extra={"error": exc.kind, "final": is_final})
                    listener.on_error(exc)
                return

            if self._listener is not listener:
                return
            if is_final:
                self._teardown()
                listener.on_transcript(text, True)
                listener.on_end()
                return
            if text:
                listener.on_transcript(text, False)

    async def _recognize(self, audio: bytes, *, is_final: bool) -> str:
        headers = {}
        if self._token_cache is not None:
            headers["Authorization"] = f"Bearer {await self._token_cache.get()}"
        try:
            response = await self._http_client.post(
                self._asr_url,
                files={"audio": ("chunk.wav", pcm_to_wav(audio, self._sample_rate), "audio/wav")},
                data={"isFinal": "true" if is_final else "false"},
                headers=headers,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise NetworkTimeoutError("Recognition chunk upload timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                f"Recognition endpoint returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderUnavailableError(f"Recognition chunk upload failed: {exc}") from exc

        result = payload.get("result") if isinstance(payload, dict) else None
        return str(result).strip() if result else ""

    def _teardown(self) -> None:
        self._listener = None
        if self._recording:
            self._recording = False
            self._microphone.close()
        worker, self._worker = self._worker, None
        if worker is not None and worker is not asyncio.current_task() and not worker.done():
            worker.cancel()
        self._uploads = None
