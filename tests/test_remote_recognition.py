from __future__ import annotations

import asyncio

import httpx
import pytest

from voice_assistant.errors import ProviderUnavailableError, TokenAcquisitionError
from voice_assistant.token_cache import TokenCache
from voice_assistant.voice.stt_remote import RemoteRecognitionAdapter, pcm_to_wav

SAMPLE_RATE = 100
CHUNK_BYTES = 20  # 0.1 s of 16-bit mono at 100 Hz


class FakeMicrophone:
    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.on_block = None
        self.opened = 0
        self.closed = 0

    def is_available(self) -> bool:
        return self.available

    def open(self, on_block) -> None:
        self.opened += 1
        self.on_block = on_block

    def close(self) -> None:
        self.closed += 1

    def push(self, data: bytes) -> None:
        self.on_block(data)


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[tuple[str, bool]] = []
        self.ended = 0
        self.errors: list[Exception] = []

    def on_transcript(self, text: str, is_final: bool) -> None:
        self.events.append((text, is_final))

    def on_end(self) -> None:
        self.ended += 1

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)


class AsrBackend:
    def __init__(self, *, fail_on_upload: int | None = None) -> None:
        self.fail_on_upload = fail_on_upload
        self.uploads: list[tuple[bool, int]] = []
        self.authorization: list[str | None] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "asr-token", "expires_in": 2_592_000})
        body = request.content
        is_final = b'name="isFinal"\r\n\r\ntrue' in body
        self.uploads.append((is_final, len(body)))
        self.authorization.append(request.headers.get("Authorization"))
        if self.fail_on_upload == len(self.uploads):
            return httpx.Response(500, json={"error": "asr failed"})
        if is_final:
            return httpx.Response(200, json={"result": "the whole sentence", "isFinal": True})
        return httpx.Response(200, json={"result": f"part {len(self.uploads)}", "isFinal": False})


async def _until(predicate) -> None:
    for _ in range(500):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def _adapter(client: httpx.AsyncClient, microphone: FakeMicrophone, *, token_cache=None) -> RemoteRecognitionAdapter:
    return RemoteRecognitionAdapter(
        client,
        "http://backend/asr",
        microphone,
        token_cache=token_cache,
        sample_rate=SAMPLE_RATE,
        chunk_seconds=0.1,
    )


def test_chunks_report_interim_text_and_final_pass_is_authoritative() -> None:
    backend = AsrBackend()
    microphone = FakeMicrophone()
    listener = RecordingListener()

    async def _run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
            adapter = _adapter(client, microphone, token_cache=TokenCache(client, "http://backend/token"))
            await adapter.start(listener)
            microphone.push(b"\x01\x00" * 7)
            microphone.push(b"\x01\x00" * 7)
            await _until(lambda: len(listener.events) == 1)
            adapter.stop()
            await _until(lambda: listener.ended == 1)

    asyncio.run(_run())

    assert listener.events == [("part 1", False), ("the whole sentence", True)]
    assert [final for final, _ in backend.uploads] == [False, True]
    assert set(backend.authorization) == {"Bearer asr-token"}
    assert microphone.closed == 1
    assert listener.errors == []


def test_chunk_failure_surfaces_one_error_and_drops_later_results() -> None:
    backend = AsrBackend(fail_on_upload=1)
    microphone = FakeMicrophone()
    listener = RecordingListener()

    async def _run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
            adapter = _adapter(client, microphone)
            await adapter.start(listener)
            microphone.push(b"\x00" * CHUNK_BYTES * 2)
            await _until(lambda: listener.errors)
            microphone.push(b"\x00" * CHUNK_BYTES)
            adapter.stop()
            for _ in range(20):
                await asyncio.sleep(0)

    asyncio.run(_run())

    assert len(listener.errors) == 1
    assert isinstance(listener.errors[0], ProviderUnavailableError)
    assert listener.events == []
    assert listener.ended == 0
    assert len(backend.uploads) == 1
    assert microphone.closed == 1


def test_token_failure_prevents_start() -> None:
    microphone = FakeMicrophone()
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "bad key"}))

    async def _run() -> None:
        async with httpx.AsyncClient(transport=transport) as client:
            adapter = _adapter(client, microphone, token_cache=TokenCache(client, "http://backend/token"))
            await adapter.start(RecordingListener())

    with pytest.raises(TokenAcquisitionError):
        asyncio.run(_run())
    assert microphone.opened == 0


def test_stop_without_audio_finishes_with_empty_transcript() -> None:
    backend = AsrBackend()
    listener = RecordingListener()

    async def _run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
            adapter = _adapter(client, FakeMicrophone())
            await adapter.start(listener)
            adapter.stop()
            await _until(lambda: listener.ended == 1)

    asyncio.run(_run())

    assert listener.events == [("", True)]
    assert backend.uploads == []


def test_pcm_to_wav_wraps_samples_in_riff_header() -> None:
    wav = pcm_to_wav(b"\x00\x00" * 10, 16_000)

    assert wav[:4] == b"RIFF"
    assert wav[8:12] == b"WAVE"
    assert len(wav) == 44 + 20
