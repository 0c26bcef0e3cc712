"""Single-owner audio output shared by every synthesis client."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import numpy as np

from voice_assistant.errors import AudioPlaybackError
from voice_assistant.models import AudioFrame

from .interfaces import AudioBackend, PlaybackListener


@dataclass(slots=True)
class _Playback:
    listener: PlaybackListener
    ended: bool = False


class ExclusiveAudioOutput:
    """Plays one frame at a time; a new playback stops the previous holder first.

    ``on_start`` fires once the backend is emitting sound and ``on_end`` fires
    exactly once per playback, whether it ran to completion or was displaced.
    """

    def __init__(self, backend: AudioBackend, logger: logging.Logger | None = None) -> None:
        self._backend = backend
        self._logger = logger or logging.getLogger("voice_assistant.audio_output")
        self._current: _Playback | None = None

    @property
    def busy(self) -> bool:
        return self._current is not None

    async def play(self, frame: AudioFrame, listener: PlaybackListener | None = None) -> None:
        """Play ``frame`` and return when it finished or was stopped."""
        self.stop()
        playback = _Playback(listener=listener or PlaybackListener())
        self._current = playback

        samples = frame.as_float()
        try:
            self._backend.start(samples, frame.sample_rate)
        except Exception as exc:  # noqa: BLE001 - any device failure is a playback failure.
            self._current = None
            raise AudioPlaybackError(f"Audio output failed to start: {exc}") from exc

        self._logger.info(
            "playback_started",
            extra={"sample_rate": frame.sample_rate, "duration_seconds": round(frame.duration_seconds, 2)},
        )
        playback.listener.on_start()
        try:
            await self._backend.wait()
        except asyncio.CancelledError:
            self._finish(playback, stop_device=True)
            raise
        except Exception as exc:  # noqa: BLE001
            self._finish(playback, stop_device=True)
            raise AudioPlaybackError(f"Audio output failed during playback: {exc}") from exc
        self._finish(playback, stop_device=False)

    def stop(self) -> None:
        """Silence the current holder, if any, and fire its ``on_end``."""
        if self._current is not None:
            self._logger.info("playback_stopped")
            self._finish(self._current, stop_device=True)

    def _finish(self, playback: _Playback, *, stop_device: bool) -> None:
        if playback.ended:
            return
        playback.ended = True
        if self._current is playback:
            self._current = None
            if stop_device:
                self._backend.stop()
        playback.listener.on_end()


class SoundDeviceBackend(AudioBackend):
    """Speaker playback through a ``sounddevice`` output stream."""

    def __init__(self, *, device: int | str | None = None) -> None:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Audio output backend unavailable. Install extras with: pip install 'voice-assistant[voice]'"
            ) from exc
        self._sd = sd
        self._device = device
        self._stream = None
        self._done: asyncio.Event | None = None

    def start(self, samples: np.ndarray, sample_rate: int) -> None:
        self.stop()
        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        position = 0
        sd = self._sd

        def _callback(outdata, frames, time_info, status) -> None:
            nonlocal position
            chunk = samples[position : position + frames]
            outdata[: len(chunk), 0] = chunk
            if len(chunk) < frames:
                outdata[len(chunk) :, 0] = 0
                raise sd.CallbackStop()
            position += frames

        def _finished() -> None:
            loop.call_soon_threadsafe(done.set)

        stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=1,
            dtype="float32",
            device=self._device,
            callback=_callback,
            finished_callback=_finished,
        )
        stream.start()
        self._stream = stream
        self._done = done

    async def wait(self) -> None:
        done, stream = self._done, self._stream
        if done is None:
            return
        await done.wait()
        if stream is not None and stream is self._stream:
            stream.close()
            self._stream = None

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.abort()
            stream.close()
        if self._done is not None:
            self._done.set()
