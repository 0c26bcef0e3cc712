"""Local speech recognition powered by ``speech_recognition``."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Protocol

from voice_assistant.errors import NoSpeechDetected, ProviderUnavailableError
from voice_assistant.models import RecognitionProvider

from .interfaces import RecognitionAdapter, RecognitionListener


class SpeechEngine(Protocol):
    """A recognizer that captures and transcribes one utterance segment at a time."""

    def is_available(self) -> bool:
        """Whether a microphone and the engine can be used in this runtime."""

    async def run_segment(self) -> str:
        """Listen until the engine ends the segment; raise NoSpeechDetected when nothing was said."""

    def close(self) -> None:
        """Release the microphone."""


class LocalRecognitionAdapter(RecognitionAdapter):
    """Continuous capture that restarts the engine after every segment while asked to continue.

    Each recognized segment is appended to the running transcript and reported as
    an interim result; the accumulated text becomes the final transcript on ``stop``.
    """

    provider = RecognitionProvider.LOCAL

    def __init__(self, engine: SpeechEngine, logger: logging.Logger | None = None) -> None:
        self._engine = engine
        self._logger = logger or logging.getLogger("voice_assistant.recognition.local")
        self._listener: RecognitionListener | None = None
        self._task: asyncio.Task[None] | None = None
        self._segments: list[str] = []
        self._continue_requested = False

    @property
    def transcript(self) -> str:
        return " ".join(self._segments)

    def is_supported(self) -> bool:
        return self._engine.is_available()

    async def start(self, listener: RecognitionListener) -> None:
        if self._listener is not None:
            return
        if not self.is_supported():
            raise ProviderUnavailableError("Local speech recognition is not supported in this runtime")

        self._listener = listener
        self._segments = []
        self._continue_requested = True
        self._task = asyncio.create_task(self._capture_loop(listener), name="local-recognition")
        self._logger.info("local_recognition_started")

    def stop(self) -> None:
        listener = self._release()
        if listener is None:
            return
        listener.on_transcript(self.transcript, True)
        listener.on_end()

    def cancel(self) -> None:
        self._release()

    async def _capture_loop(self, listener: RecognitionListener) -> None:
        while self._continue_requested:
            try:
                text = await self._engine.run_segment()
            except NoSpeechDetected:
                self._logger.debug("local_recognition_no_speech")
                continue
            except Exception as exc:  # noqa: BLE001 - any engine failure ends the attempt.
                if self._listener is listener:
                    self._release()
                    self._logger.warning("local_recognition_failed", extra={"error": str(exc)})
                    listener.on_error(exc)
                return

            if not self._continue_requested:
                return
            text = text.strip()
            if text:
                self._segments.append(text)
                listener.on_transcript(self.transcript, False)
            self._logger.debug("local_recognition_segment_ended", extra={"segments": len(self._segments)})

    def _release(self) -> RecognitionListener | None:
        listener, self._listener = self._listener, None
        if listener is None:
            return None
        self._continue_requested = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self._engine.close()
        return listener


class SpeechRecognitionEngine(SpeechEngine):
    """Microphone capture plus transcription through ``speech_recognition``."""

    def __init__(
        self,
        *,
        language: str = "zh-CN",
        sample_rate: int = 16_000,
        chunk_size: int = 1024,
        listen_timeout: float | None = 5.0,
        phrase_time_limit: float | None = 10.0,
        adjust_noise_seconds: float = 0.2,
    ) -> None:
        try:
            import speech_recognition as sr
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Voice STT backend unavailable. Install extras with: pip install 'voice-assistant[voice]'"
            ) from exc
        self._sr = sr
        self._recognizer = sr.Recognizer()
        self._language = language
        self._sample_rate = sample_rate
        self._chunk_size = chunk_size
        self._listen_timeout = listen_timeout
        self._phrase_time_limit = phrase_time_limit
        self._adjust_noise_seconds = max(0.0, adjust_noise_seconds)
        self._microphone = None
        self._source = None
        # Guards the microphone between the event loop and the worker thread.
        self._idle = threading.Condition()
        self._generation = 0
        self._in_flight = False

    def is_available(self) -> bool:
        try:
            return bool(self._sr.Microphone.list_microphone_names())
        except (AttributeError, OSError):
            return False

    async def run_segment(self) -> str:
        return await asyncio.to_thread(self._listen_and_transcribe, self._generation)

    def close(self) -> None:
        """Release the microphone; a segment still listening releases it from its own thread."""
        with self._idle:
            self._generation += 1
            if not self._in_flight:
                self._release()

    def _release(self) -> None:
        microphone, self._microphone = self._microphone, None
        self._source = None
        if microphone is not None:
            microphone.__exit__(None, None, None)

    def _open_source(self) -> tuple[object, bool]:
        if self._source is not None:
            return self._source, False
        microphone = self._sr.Microphone(sample_rate=self._sample_rate, chunk_size=self._chunk_size)
        try:
            source = microphone.__enter__()
        except (AttributeError, OSError) as exc:
            raise ProviderUnavailableError(f"Microphone unavailable: {exc}") from exc
        self._microphone = microphone
        self._source = source
        return source, True

    def _listen_and_transcribe(self, generation: int) -> str:
        with self._idle:
            self._idle.wait_for(lambda: not self._in_flight)
            if generation != self._generation:
                return ""
            source, opened = self._open_source()
            self._in_flight = True

        try:
            if opened and self._adjust_noise_seconds > 0:
                self._recognizer.adjust_for_ambient_noise(source, duration=self._adjust_noise_seconds)
            audio = self._recognizer.listen(
                source,
                timeout=self._listen_timeout,
                phrase_time_limit=self._phrase_time_limit,
            )
        except self._sr.WaitTimeoutError as exc:
            raise NoSpeechDetected() from exc
        finally:
            with self._idle:
                self._in_flight = False
                stale = generation != self._generation
                if stale:
                    self._release()
                self._idle.notify_all()

        if stale:
            return ""
        try:
            return self._recognizer.recognize_google(audio, language=self._language)
        except self._sr.UnknownValueError as exc:
            raise NoSpeechDetected() from exc
        except self._sr.RequestError as exc:
            raise ProviderUnavailableError(
                "Speech recognition service request failed. Check internet access or switch STT backend."
            ) from exc
