"""CLI startup entrypoint for the voice assistant."""

from __future__ import annotations

import asyncio

import httpx
import typer
from rich import print

from voice_assistant.assistant import VoiceAssistant
from voice_assistant.completion import CompletionGateway
from voice_assistant.config import settings
from voice_assistant.errors import VoiceAssistantError
from voice_assistant.models import DeviceClass, SynthesisChannel, VoiceParams, resolve_device_class
from voice_assistant.rate_limit import SlidingWindowRateLimiter
from voice_assistant.telemetry.logging import LoggingTelemetry, configure_logging
from voice_assistant.token_cache import DAY_SECONDS, TokenCache
from voice_assistant.voice.dialogue import ConversationState
from voice_assistant.voice.input import CaptureListener, RecognitionSessionManager
from voice_assistant.voice.output import ExclusiveAudioOutput
from voice_assistant.voice.synthesis import SynthesisCoordinator, VoiceOutputConfig
from voice_assistant.voice.tts_buffered import BufferedSynthesisClient
from voice_assistant.voice.tts_streaming import StreamingSynthesisClient

app = typer.Typer(help="Voice assistant service entrypoint")

_INSTALL_HINT = "Voice extras are missing. Install with: pip install 'voice-assistant[voice]'"


@app.callback()
def main() -> None:
    configure_logging(settings.log_level)


def _device_class() -> DeviceClass:
    return resolve_device_class(settings.device_class, settings.user_agent)


def _build_token_cache(client: httpx.AsyncClient) -> TokenCache:
    return TokenCache(
        client,
        settings.url(settings.token_path),
        cache_seconds=settings.token_cache_days * DAY_SECONDS,
        safety_margin_seconds=settings.token_safety_margin_days * DAY_SECONDS,
    )


def _build_gateway(client: httpx.AsyncClient) -> CompletionGateway:
    return CompletionGateway(
        client,
        settings.url(settings.chat_path),
        timeout_seconds=settings.chat_timeout_seconds,
        constrained_timeout_seconds=settings.chat_constrained_timeout_seconds,
        connect_timeout_seconds=settings.chat_connect_timeout_seconds,
        max_retries=settings.chat_max_retries,
        retry_delay_seconds=settings.chat_retry_delay_seconds,
        constrained_system_chars=settings.constrained_system_prompt_chars,
        demo_mode=settings.demo_mode,
    )


def _build_output() -> ExclusiveAudioOutput:
    from voice_assistant.voice.output import SoundDeviceBackend

    return ExclusiveAudioOutput(SoundDeviceBackend())


def _build_coordinator(
    client: httpx.AsyncClient,
    token_cache: TokenCache,
    output: ExclusiveAudioOutput,
    device_class: DeviceClass,
) -> SynthesisCoordinator:
    streaming = StreamingSynthesisClient(
        client,
        settings.url(settings.streaming_info_path),
        output,
        voice_name=settings.streaming_voice,
        sample_rate=settings.sample_rate,
        receive_timeout_seconds=settings.streaming_receive_timeout_seconds,
    )
    buffered = BufferedSynthesisClient(
        client,
        settings.url(settings.buffered_tts_path),
        token_cache,
        output,
        rate_limiter=SlidingWindowRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds),
        client_identity=settings.client_identity,
        max_chars=settings.buffered_max_chars,
    )
    return SynthesisCoordinator(
        streaming=streaming,
        buffered=buffered,
        output=output,
        device_class=device_class,
        config=VoiceOutputConfig(
            max_chars=settings.buffered_max_chars,
            voice_params=VoiceParams(
                speed=settings.voice_speed,
                pitch=settings.voice_pitch,
                volume=settings.voice_volume,
                voice_id=settings.voice_id,
            ),
        ),
    )


def _build_recognition(
    client: httpx.AsyncClient,
    token_cache: TokenCache,
    device_class: DeviceClass,
) -> RecognitionSessionManager:
    from voice_assistant.voice.stt_remote import RemoteRecognitionAdapter, SoundDeviceMicrophone
    from voice_assistant.voice.stt_speechrecognition import LocalRecognitionAdapter, SpeechRecognitionEngine

    engine = SpeechRecognitionEngine(
        language=settings.recognition_language,
        sample_rate=settings.sample_rate,
        phrase_time_limit=settings.phrase_time_limit_seconds,
    )
    remote = RemoteRecognitionAdapter(
        client,
        settings.url(settings.asr_path),
        SoundDeviceMicrophone(sample_rate=settings.sample_rate),
        token_cache=token_cache,
        sample_rate=settings.sample_rate,
        chunk_seconds=settings.recognition_chunk_seconds,
    )
    return RecognitionSessionManager(
        local=LocalRecognitionAdapter(engine),
        remote=remote,
        device_class=device_class,
    )


def _build_assistant(
    client: httpx.AsyncClient,
    *,
    coordinator: SynthesisCoordinator | None = None,
    recognition: RecognitionSessionManager | None = None,
) -> VoiceAssistant:
    return VoiceAssistant(
        _build_gateway(client),
        coordinator,
        recognition=recognition,
        telemetry=LoggingTelemetry(),
        state=ConversationState(max_turns=settings.chat_history_turns),
        system_prompt=settings.system_prompt,
        temperature=settings.chat_temperature,
        device_class=_device_class(),
    )


def _fail(exc: Exception) -> None:
    payload = exc.as_dict() if isinstance(exc, VoiceAssistantError) else {"error": str(exc)}
    print(payload)
    raise typer.Exit(code=1)


@app.command()
def start() -> None:
    """Show runtime backend configuration."""
    print(
        {
            "app_name": settings.app_name,
            "api_base_url": settings.api_base_url,
            "device_class": _device_class().value,
            "recognition_language": settings.recognition_language,
            "streaming_voice": settings.streaming_voice,
            "demo_mode": settings.demo_mode,
        }
    )


@app.command()
def ask(
    text: str,
    mute: bool = typer.Option(False, help="Print the reply without speaking it"),
) -> None:
    """Send one typed turn to the language model and speak the reply."""

    async def _run():
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            coordinator = None
            if not mute:
                coordinator = _build_coordinator(client, _build_token_cache(client), _build_output(), _device_class())
            assistant = _build_assistant(client, coordinator=coordinator)
            return await assistant.respond(text, speak=not mute)

    try:
        result = asyncio.run(_run())
    except (RuntimeError, VoiceAssistantError) as exc:
        _fail(exc)

    payload = {
        "response": result.response.text,
        "used_fallback": result.response.used_fallback,
        "channel": result.channel.value if result.channel else None,
    }
    if result.synthesis_error is not None:
        payload["synthesis_error"] = result.synthesis_error.as_dict()
    print(payload)


@app.command()
def speak(
    text: str,
    channel: str = typer.Option(None, help="Force a synthesis channel: streaming or buffered"),
) -> None:
    """Synthesize and play ``text``."""
    try:
        forced = SynthesisChannel(channel) if channel else None
    except ValueError:
        raise typer.BadParameter("channel must be 'streaming' or 'buffered'")

    async def _run() -> SynthesisChannel | None:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            coordinator = _build_coordinator(client, _build_token_cache(client), _build_output(), _device_class())
            return await coordinator.speak(text, channel=forced)

    try:
        used = asyncio.run(_run())
    except (RuntimeError, VoiceAssistantError) as exc:
        _fail(exc)
    print({"spoken": used is not None, "channel": used.value if used else None})


@app.command("voice-chat")
def voice_chat() -> None:
    """Run an interactive push-to-talk loop: listen, answer, speak."""

    async def _run() -> None:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            device_class = _device_class()
            token_cache = _build_token_cache(client)
            try:
                recognition = _build_recognition(client, token_cache, device_class)
                coordinator = _build_coordinator(client, token_cache, _build_output(), device_class)
            except ImportError as exc:
                raise RuntimeError(_INSTALL_HINT) from exc
            assistant = _build_assistant(client, coordinator=coordinator, recognition=recognition)

            print(
                {
                    "voice_chat": "started",
                    "device_class": device_class.value,
                    "hint": "Press Enter to start talking, Enter again to finish; say 'stop listening' to exit.",
                }
            )
            while True:
                await asyncio.to_thread(input, "Press Enter to talk (Ctrl+C to quit) ...")
                capture = CaptureListener()
                await recognition.start(capture)
                await asyncio.to_thread(input, "Listening, press Enter when done ...")
                recognition.stop()

                try:
                    transcript = await capture.result
                except VoiceAssistantError as exc:
                    print(exc.as_dict())
                    continue
                if not transcript:
                    print({"heard": None, "hint": "No speech captured, try again."})
                    continue
                if "stop listening" in transcript.lower():
                    try:
                        await coordinator.speak("Okay, stopping voice chat.")
                    except VoiceAssistantError as exc:
                        print(exc.as_dict())
                    print({"voice_chat": "stopped"})
                    return

                try:
                    result = await assistant.respond(transcript)
                except VoiceAssistantError as exc:
                    print({"heard": transcript, **exc.as_dict()})
                    continue
                print(
                    {
                        "heard": transcript,
                        "response": result.response.text,
                        "used_fallback": result.response.used_fallback,
                        "channel": result.channel.value if result.channel else None,
                    }
                )

    try:
        asyncio.run(_run())
    except RuntimeError as exc:
        _fail(exc)


if __name__ == "__main__":
    app()
