from __future__ import annotations

import asyncio

import numpy as np
import pytest

from voice_assistant.errors import AudioPlaybackError
from voice_assistant.models import AudioFrame
from voice_assistant.voice.interfaces import PlaybackListener
from voice_assistant.voice.output import ExclusiveAudioOutput


class FakeBackend:
    """Audio device that plays until ``finish()`` or ``stop()``."""

    def __init__(self, *, fail_on_start: bool = False) -> None:
        self.fail_on_start = fail_on_start
        self.started: list[np.ndarray] = []
        self.stops = 0
        self._done = asyncio.Event()

    def start(self, samples: np.ndarray, sample_rate: int) -> None:
        if self.fail_on_start:
            raise OSError("no output device")
        self._done = asyncio.Event()
        self.started.append(samples)

    async def wait(self) -> None:
        await self._done.wait()

    def finish(self) -> None:
        self._done.set()

    def stop(self) -> None:
        self.stops += 1
        self._done.set()


class RecordingListener(PlaybackListener):
    def __init__(self, name: str, log: list[str]) -> None:
        self.name = name
        self.log = log

    def on_start(self) -> None:
        self.log.append(f"{self.name}:start")

    def on_end(self) -> None:
        self.log.append(f"{self.name}:end")


def _frame() -> AudioFrame:
    return AudioFrame(samples=np.array([0, 16384, -32768], dtype=np.int16), sample_rate=16_000)


def test_playback_normalizes_pcm_and_fires_callbacks_once() -> None:
    log: list[str] = []

    async def _run() -> FakeBackend:
        backend = FakeBackend()
        output = ExclusiveAudioOutput(backend)
        task = asyncio.create_task(output.play(_frame(), RecordingListener("a", log)))
        await asyncio.sleep(0)
        assert output.busy
        backend.finish()
        await task
        output.stop()
        assert not output.busy
        return backend

    backend = asyncio.run(_run())

    assert log == ["a:start", "a:end"]
    np.testing.assert_allclose(backend.started[0], [0.0, 0.5, -1.0])
    assert backend.stops == 0


def test_new_playback_displaces_previous_holder_first() -> None:
    log: list[str] = []

    async def _run() -> None:
        backend = FakeBackend()
        output = ExclusiveAudioOutput(backend)
        first = asyncio.create_task(output.play(_frame(), RecordingListener("first", log)))
        await asyncio.sleep(0)
        second = asyncio.create_task(output.play(_frame(), RecordingListener("second", log)))
        await asyncio.sleep(0)
        await first
        backend.finish()
        await second

    asyncio.run(_run())

    assert log == ["first:start", "first:end", "second:start", "second:end"]


def test_device_failure_is_audio_playback_error() -> None:
    log: list[str] = []

    async def _run() -> None:
        output = ExclusiveAudioOutput(FakeBackend(fail_on_start=True))
        await output.play(_frame(), RecordingListener("a", log))

    with pytest.raises(AudioPlaybackError):
        asyncio.run(_run())
    assert log == []
