from __future__ import annotations

import asyncio

import pytest

from voice_assistant.errors import NoSpeechDetected, ProviderUnavailableError
from voice_assistant.voice.stt_speechrecognition import LocalRecognitionAdapter


class QueueEngine:
    """Speech engine whose segments are scripted through a queue."""

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.segments: asyncio.Queue = asyncio.Queue()
        self.closed = 0
        self.runs = 0

    def is_available(self) -> bool:
        return self.available

    async def run_segment(self) -> str:
        self.runs += 1
        item = await self.segments.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed += 1


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


async def _drain() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def test_segments_accumulate_and_no_speech_keeps_listening() -> None:
    async def _run() -> tuple[RecordingListener, QueueEngine]:
        engine = QueueEngine()
        adapter = LocalRecognitionAdapter(engine)
        listener = RecordingListener()
        await adapter.start(listener)
        for item in ("turn on", NoSpeechDetected(), "", "the lights"):
            engine.segments.put_nowait(item)
        await _drain()
        adapter.stop()
        await _drain()
        return listener, engine

    listener, engine = asyncio.run(_run())

    assert listener.events == [
        ("turn on", False),
        ("turn on the lights", False),
        ("turn on the lights", True),
    ]
    assert listener.ended == 1
    assert listener.errors == []
    assert engine.runs == 5
    assert engine.closed == 1


def test_engine_failure_is_reported_once_and_releases_microphone() -> None:
    async def _run() -> tuple[RecordingListener, QueueEngine]:
        engine = QueueEngine()
        adapter = LocalRecognitionAdapter(engine)
        listener = RecordingListener()
        await adapter.start(listener)
        engine.segments.put_nowait(ProviderUnavailableError("recognizer offline"))
        engine.segments.put_nowait("ignored")
        await _drain()
        adapter.stop()
        return listener, engine

    listener, engine = asyncio.run(_run())

    assert len(listener.errors) == 1
    assert listener.events == []
    assert listener.ended == 0
    assert engine.closed == 1


def test_cancel_discards_pending_results() -> None:
    async def _run() -> RecordingListener:
        engine = QueueEngine()
        adapter = LocalRecognitionAdapter(engine)
        listener = RecordingListener()
        await adapter.start(listener)
        await _drain()
        adapter.cancel()
        engine.segments.put_nowait("too late")
        await _drain()
        return listener

    listener = asyncio.run(_run())

    assert listener.events == []
    assert listener.ended == 0


def test_unsupported_runtime_refuses_to_start() -> None:
    adapter = LocalRecognitionAdapter(QueueEngine(available=False))

    with pytest.raises(ProviderUnavailableError):
        asyncio.run(adapter.start(RecordingListener()))
