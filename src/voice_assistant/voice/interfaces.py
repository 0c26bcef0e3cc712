"""Contracts for speech recognition and synthesis."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from voice_assistant.errors import VoiceAssistantError
    from voice_assistant.models import (
        RecognitionProvider,
        RecognitionSession,
        SynthesisChannel,
        SynthesisRequest,
        TranscriptEvent,
    )


class RecognitionListener(Protocol):
    """Events a recognition adapter reports to whoever started it."""

    def on_transcript(self, text: str, is_final: bool) -> None:
        """Report an interim or final transcript."""

    def on_end(self) -> None:
        """Report that capture finished and no further transcripts will follow."""

    def on_error(self, error: Exception) -> None:
        """Report a terminal adapter failure; no further events will follow."""


class RecognitionAdapter(Protocol):
    """One interchangeable speech recognition provider."""

    provider: RecognitionProvider

    def is_supported(self) -> bool:
        """Whether the runtime can host this provider at all."""

    async def start(self, listener: RecognitionListener) -> None:
        """Acquire the microphone and begin capture."""

    def stop(self) -> None:
        """Release the microphone now and finish the session (final transcript, then ``on_end``)."""

    def cancel(self) -> None:
        """Release everything now and discard any outstanding results silently."""


class SessionListener:
    """Caller-facing recognition events; override the ones you need."""

    def on_transcript(self, event: TranscriptEvent) -> None:
        pass

    def on_end(self, session: RecognitionSession) -> None:
        pass

    def on_no_speech(self, session: RecognitionSession) -> None:
        pass

    def on_cancelled(self, session: RecognitionSession) -> None:
        pass

    def on_error(self, session: RecognitionSession, error: VoiceAssistantError) -> None:
        pass


class PlaybackListener:
    """Speaking-state callbacks, fired at audio-output events rather than download completion."""

    def on_start(self) -> None:
        pass

    def on_end(self) -> None:
        pass


class AudioBackend(Protocol):
    """Raw output device driven by the exclusive audio output."""

    def start(self, samples: np.ndarray, sample_rate: int) -> None:
        """Begin emitting float32 samples; must not block until playback ends."""

    async def wait(self) -> None:
        """Resolve when the current playback finished or was stopped."""

    def stop(self) -> None:
        """Silence the device immediately."""


class SpeechSynthesizer(Protocol):
    """Converts text into audible speech on the shared audio output."""

    channel: SynthesisChannel

    async def synthesize(self, request: SynthesisRequest, listener: PlaybackListener) -> None:
        """Synthesize and play ``request``; returns once playback ended."""

    def close(self) -> None:
        """Abort any in-flight request and release its channel."""
