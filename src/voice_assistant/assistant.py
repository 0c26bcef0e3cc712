from __future__ import annotations

import logging
from dataclasses import dataclass

from .completion import CompletionGateway
from .errors import VoiceAssistantError
from .models import ChatRequest, ChatResponse, DeviceClass, SynthesisChannel
from .telemetry.logging import LoggingTelemetry, Telemetry
from .voice.dialogue import ConversationState
from .voice.input import CaptureListener, RecognitionSessionManager
from .voice.interfaces import PlaybackListener
from .voice.synthesis import SynthesisCoordinator


@dataclass(slots=True)
class TurnResult:
    """Outcome of one conversation turn; a failed reply playback does not discard the text."""

    response: ChatResponse
    channel: SynthesisChannel | None = None
    synthesis_error: VoiceAssistantError | None = None


class VoiceAssistant:
    def __init__(
        self,
        gateway: CompletionGateway,
        coordinator: SynthesisCoordinator | None = None,
        *,
        recognition: RecognitionSessionManager | None = None,
        telemetry: Telemetry | None = None,
        state: ConversationState | None = None,
        system_prompt: str = "",
        temperature: float = 0.7,
        device_class: DeviceClass = DeviceClass.DESKTOP,
        logger: logging.Logger | None = None,
    ):
        self.gateway = gateway
        self.coordinator = coordinator
        self.recognition = recognition
        self.telemetry = telemetry or LoggingTelemetry()
        self.state = state or ConversationState()
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.device_class = device_class
        self._logger = logger or logging.getLogger("voice_assistant.assistant")

    async def listen(self, listener: CaptureListener | None = None) -> str:
        """Run one recognition session until it ends; ``""`` means no speech was captured or it was cancelled."""
        if self.recognition is None:
            raise RuntimeError("No recognition session manager configured")
        capture = listener or CaptureListener()
        await self.recognition.start(capture)
        return await capture.result

    async def respond(
        self,
        text: str,
        *,
        speak: bool = True,
        listener: PlaybackListener | None = None,
    ) -> TurnResult:
        request = ChatRequest(
            messages=self.state.messages_for(text, self.system_prompt),
            temperature=self.temperature,
        )
        response = await self.gateway.complete(request, constrained=self.device_class.constrained)
        self.state.record(text, response.text)

        result = TurnResult(response=response)
        if speak and self.coordinator is not None:
            try:
                result.channel = await self.coordinator.speak(response.text, listener)
            except VoiceAssistantError as exc:
                self._logger.warning("reply_playback_failed", extra={"error": exc.kind})
                result.synthesis_error = exc

        self.telemetry.emit(
            "turn_completed",
            {
                "transcript_chars": len(text),
                "reply_chars": len(response.text),
                "used_fallback": response.used_fallback,
                "attempts": response.attempts,
                "channel": result.channel.value if result.channel else None,
                "synthesis_error": result.synthesis_error.kind if result.synthesis_error else None,
            },
        )
        return result

    def stop(self) -> None:
        """Silence any reply in progress and abandon an active recognition session."""
        if self.coordinator is not None:
            self.coordinator.stop()
        if self.recognition is not None:
            self.recognition.cancel()
