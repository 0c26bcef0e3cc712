"""Recognition session lifecycle and provider fallback."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from voice_assistant.errors import ProviderUnavailableError, VoiceAssistantError
from voice_assistant.models import (
    DeviceClass,
    RecognitionAttempt,
    RecognitionProvider,
    RecognitionSession,
    SessionState,
    TranscriptEvent,
)

from .interfaces import RecognitionAdapter, SessionListener


class _AttemptListener:
    """Binds adapter callbacks to one session attempt so stale attempts are ignored."""

    def __init__(self, manager: RecognitionSessionManager, session: RecognitionSession, attempt: RecognitionAttempt):
        self._manager = manager
        self._session = session
        self._attempt = attempt

    def on_transcript(self, text: str, is_final: bool) -> None:
        if self._manager._is_current(self._session, self._attempt):
            self._manager._handle_transcript(self._session, text, is_final)

    def on_end(self) -> None:
        if self._manager._is_current(self._session, self._attempt):
            self._manager._handle_end(self._session, self._attempt)

    def on_error(self, error: Exception) -> None:
        if self._manager._is_current(self._session, self._attempt):
            self._manager._handle_error(self._session, self._attempt, error)


class RecognitionSessionManager:
    """Owns at most one recognition session and exposes one transcript stream for it.

    Mobile devices start on the remote provider, everything else on the local one.
    A remote failure (at start-up or mid-session) restarts the session on the local
    provider once without telling the caller; only a failure with no fallback left
    reaches ``SessionListener.on_error``.
    """

    def __init__(
        self,
        *,
        local: RecognitionAdapter,
        remote: RecognitionAdapter | None = None,
        device_class: DeviceClass = DeviceClass.DESKTOP,
        logger: logging.Logger | None = None,
    ) -> None:
        self._adapters: dict[RecognitionProvider, RecognitionAdapter] = {RecognitionProvider.LOCAL: local}
        if remote is not None:
            self._adapters[RecognitionProvider.REMOTE] = remote
        self._device_class = device_class
        self._logger = logger or logging.getLogger("voice_assistant.recognition")

        self._session: RecognitionSession | None = None
        self._listener = SessionListener()
        self._adapter: RecognitionAdapter | None = None
        self._attempt: RecognitionAttempt | None = None
        self._fallback_used = False
        self._fallback_task: asyncio.Task[None] | None = None

    @property
    def session(self) -> RecognitionSession | None:
        return self._session

    @property
    def listening(self) -> bool:
        return self._session is not None and self._session.state is SessionState.LISTENING

    def select_provider(self) -> RecognitionProvider:
        if self._device_class.constrained and RecognitionProvider.REMOTE in self._adapters:
            return RecognitionProvider.REMOTE
        return RecognitionProvider.LOCAL

    async def start(self, listener: SessionListener | None = None) -> RecognitionSession:
        """Start a new session, or return the current one unchanged if it is still active."""
        if self._session is not None and not self._session.state.terminal:
            return self._session

        session = RecognitionSession()
        self._session = session
        self._listener = listener or SessionListener()
        self._fallback_used = False
        session.started_at = datetime.now(timezone.utc)
        session.state = SessionState.LISTENING
        await self._launch(session, self.select_provider())
        return session

    def stop(self) -> None:
        """Finish the listening session; the terminal callback follows once the provider wraps up."""
        session = self._session
        if session is None or session.state is not SessionState.LISTENING:
            return
        session.state = SessionState.FINALIZING
        self._logger.info("recognition_finalizing", extra={"session_id": session.id})
        if self._adapter is not None:
            self._adapter.stop()

    async def toggle(self, listener: SessionListener | None = None) -> RecognitionSession | None:
        if self.listening:
            self.stop()
            return self._session
        return await self.start(listener)

    def cancel(self) -> None:
        """Abandon the session now; ``on_cancelled`` is the last event delivered for it."""
        session = self._session
        if session is None or session.state.terminal:
            return
        session.state = SessionState.ENDED
        if self._attempt is not None:
            self._attempt.state = SessionState.ENDED
        self._release_adapter()
        self._logger.info("recognition_cancelled", extra={"session_id": session.id})
        listener, self._listener = self._listener, SessionListener()
        listener.on_cancelled(session)

    async def _launch(self, session: RecognitionSession, provider: RecognitionProvider) -> None:
        adapter = self._adapters[provider]
        attempt = RecognitionAttempt(provider=provider)
        session.attempts.append(attempt)
        session.provider = provider
        self._adapter = adapter
        self._attempt = attempt
        self._logger.info("recognition_started", extra={"session_id": session.id, "provider": provider.value})

        try:
            if not adapter.is_supported():
                raise ProviderUnavailableError(f"{provider.value} speech recognition is not supported here")
            await adapter.start(_AttemptListener(self, session, attempt))
        except Exception as exc:  # noqa: BLE001 - any start-up failure is eligible for fallback.
            if not self._is_current(session, attempt):
                return
            if self._begin_fallback(session, attempt, exc):
                await self._launch(session, RecognitionProvider.LOCAL)
            return

        if not self._is_current(session, attempt):
            adapter.cancel()
        elif session.state is SessionState.FINALIZING:
            # stop() arrived while the provider was still starting.
            adapter.stop()

    def _is_current(self, session: RecognitionSession, attempt: RecognitionAttempt) -> bool:
        return session is self._session and attempt is self._attempt and session.active

    def _handle_transcript(self, session: RecognitionSession, text: str, is_final: bool) -> None:
        event = TranscriptEvent(session_id=session.id, text=text, is_final=is_final)
        if not is_final:
            session.interim_text = text
            self._listener.on_transcript(event)
            return

        session.final_text = text
        self._listener.on_transcript(event)
        if session.state is SessionState.LISTENING:
            session.state = SessionState.FINALIZING
            if self._adapter is not None:
                self._adapter.stop()

    def _handle_end(self, session: RecognitionSession, attempt: RecognitionAttempt) -> None:
        attempt.state = SessionState.ENDED
        session.state = SessionState.ENDED
        self._adapter = None
        self._attempt = None

        if not session.final_text.strip():
            session.no_speech = True
            self._logger.info("recognition_no_speech", extra={"session_id": session.id})
            self._listener.on_no_speech(session)
            return
        self._logger.info(
            "recognition_ended",
            extra={"session_id": session.id, "provider": attempt.provider.value, "chars": len(session.final_text)},
        )
        self._listener.on_end(session)

    def _handle_error(self, session: RecognitionSession, attempt: RecognitionAttempt, error: Exception) -> None:
        if self._begin_fallback(session, attempt, error):
            self._fallback_task = asyncio.get_running_loop().create_task(
                self._launch(session, RecognitionProvider.LOCAL),
                name="recognition-fallback",
            )

    def _begin_fallback(self, session: RecognitionSession, attempt: RecognitionAttempt, error: Exception) -> bool:
        """Mark ``attempt`` failed; return True when the session should restart on the local provider."""
        attempt.state = SessionState.ERROR
        attempt.error = str(error)
        self._release_adapter()

        if (
            attempt.provider is RecognitionProvider.REMOTE
            and not self._fallback_used
            and session.state is SessionState.LISTENING
        ):
            self._fallback_used = True
            self._logger.warning(
                "recognition_provider_fallback",
                extra={"session_id": session.id, "from": attempt.provider.value, "error": str(error)},
            )
            return True

        self._fail(session, error)
        return False

    def _fail(self, session: RecognitionSession, error: Exception) -> None:
        session.state = SessionState.ERROR
        self._attempt = None
        surfaced: VoiceAssistantError
        if isinstance(error, ProviderUnavailableError):
            surfaced = error
        else:
            surfaced = ProviderUnavailableError(f"Speech recognition failed: {error}")
            surfaced.__cause__ = error
        self._logger.error("recognition_failed", extra={"session_id": session.id, "error": str(error)})
        self._listener.on_error(session, surfaced)

    def _release_adapter(self) -> None:
        adapter, self._adapter = self._adapter, None
        if adapter is not None:
            adapter.cancel()
        task, self._fallback_task = self._fallback_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()


class CaptureListener(SessionListener):
    """Collects one session's outcome into a future: final text, ``""`` for no speech or cancellation, or the error."""

    def __init__(self) -> None:
        self.events: list[TranscriptEvent] = []
        self.result: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    def on_transcript(self, event: TranscriptEvent) -> None:
        self.events.append(event)

    def on_end(self, session: RecognitionSession) -> None:
        if not self.result.done():
            self.result.set_result(session.final_text.strip())

    def on_no_speech(self, session: RecognitionSession) -> None:
        if not self.result.done():
            self.result.set_result("")

    def on_cancelled(self, session: RecognitionSession) -> None:
        if not self.result.done():
            self.result.set_result("")

    def on_error(self, session: RecognitionSession, error: VoiceAssistantError) -> None:
        if not self.result.done():
            self.result.set_exception(error)
