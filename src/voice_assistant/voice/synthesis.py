"""Text-to-speech orchestration for spoken assistant responses."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from voice_assistant.errors import ParameterInvalidError, RateLimitedError, VoiceAssistantError
from voice_assistant.models import DeviceClass, SynthesisChannel, SynthesisRequest, VoiceParams

from .interfaces import PlaybackListener, SpeechSynthesizer
from .output import ExclusiveAudioOutput

# Caller errors: reported as-is, never retried on the other channel.
_NO_FALLBACK = (ParameterInvalidError, RateLimitedError)


@dataclass(slots=True)
class VoiceOutputConfig:
    """Configurable controls for response speech."""

    enabled: bool = True
    max_chars: int = 1_000
    voice_params: VoiceParams = field(default_factory=VoiceParams)


class SynthesisCoordinator:
    """Routes speech to the streaming or buffered client with one cross-channel fallback.

    Constrained (mobile) callers start on the buffered channel, everyone else on
    the streaming channel. Requests are serialized: a new ``speak`` stops the
    audio and in-flight work of the previous one before starting.
    A channel that fails after playback started is not retried on the other one.
    """

    def __init__(
        self,
        *,
        streaming: SpeechSynthesizer,
        buffered: SpeechSynthesizer,
        output: ExclusiveAudioOutput,
        device_class: DeviceClass = DeviceClass.DESKTOP,
        config: VoiceOutputConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._clients: dict[SynthesisChannel, SpeechSynthesizer] = {
            SynthesisChannel.STREAMING: streaming,
            SynthesisChannel.BUFFERED: buffered,
        }
        self._output = output
        self._device_class = device_class
        self._config = config or VoiceOutputConfig()
        self._logger = logger or logging.getLogger("voice_assistant.synthesis")
        self._current: asyncio.Task[SynthesisChannel] | None = None
        self._active: SpeechSynthesizer | None = None

    @property
    def config(self) -> VoiceOutputConfig:
        return self._config

    @property
    def primary_channel(self) -> SynthesisChannel:
        return SynthesisChannel.BUFFERED if self._device_class.constrained else SynthesisChannel.STREAMING

    async def speak(
        self,
        text: str,
        listener: PlaybackListener | None = None,
        *,
        channel: SynthesisChannel | None = None,
    ) -> SynthesisChannel | None:
        """Speak ``text`` and return the channel that produced the audio.

        Returns None when output is disabled, the text is blank, or a newer
        request superseded this one.
        """
        if not self._config.enabled:
            return None

        normalized = " ".join(text.split())
        if not normalized:
            return None

        request = SynthesisRequest(
            text=normalized[: self._config.max_chars],
            voice_params=self._config.voice_params,
            channel=channel or self.primary_channel,
        )

        self.stop()
        task = asyncio.create_task(self._synthesize(request, listener or PlaybackListener()), name="synthesis")
        self._current = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._current is task:
                self._current = None

        if task.cancelled():
            self._logger.info("synthesis_superseded", extra={"channel": request.channel.value})
            return None
        return task.result()

    def stop(self) -> None:
        """Stop current playback (its ``on_end`` fires now) and abandon in-flight synthesis."""
        task, self._current = self._current, None
        client, self._active = self._active, None
        if client is not None:
            client.close()
        if task is not None and not task.done():
            task.cancel()
        self._output.stop()

    async def _synthesize(self, request: SynthesisRequest, listener: PlaybackListener) -> SynthesisChannel:
        tracked = _StartTracker(listener)
        primary = request.channel
        try:
            await self._run_client(primary, request, tracked)
            return primary
        except _NO_FALLBACK:
            raise
        except VoiceAssistantError as exc:
            if tracked.started:
                # Playback already began on this listener.
                raise
            self._logger.warning(
                "synthesis_fallback",
                extra={"failed_channel": primary.value, "error": exc.kind, "detail": str(exc)},
            )

        secondary = primary.other
        fallback = SynthesisRequest(text=request.text, voice_params=request.voice_params, channel=secondary)
        await self._run_client(secondary, fallback, tracked)
        return secondary

    async def _run_client(
        self, channel: SynthesisChannel, request: SynthesisRequest, listener: PlaybackListener
    ) -> None:
        client = self._clients[channel]
        self._active = client
        try:
            await client.synthesize(request, listener)
        finally:
            if self._active is client and self._current is asyncio.current_task():
                self._active = None


class _StartTracker(PlaybackListener):
    def __init__(self, listener: PlaybackListener) -> None:
        self._listener = listener
        self.started = False

    def on_start(self) -> None:
        self.started = True
        self._listener.on_start()

    def on_end(self) -> None:
        self._listener.on_end()
