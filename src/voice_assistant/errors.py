"""Classified failures raised by the speech and completion services.

Hierarchy:
    VoiceAssistantError (base)
    +-- ProviderUnavailableError   recognition/synthesis vendor unreachable or malfunctioning
    +-- ParameterInvalidError      caller-supplied value out of contract, never retried
    +-- TokenAcquisitionError      bearer token exchange failed
    +-- NetworkTimeoutError        request or channel did not answer in time
    +-- RateLimitedError           request volume over the sliding-window budget
    +-- AudioPlaybackError         decode or output-device failure
    +-- UpstreamAuthError          language model rejected credentials, never retried
"""

from __future__ import annotations


class VoiceAssistantError(RuntimeError):
    """Base for all classified voice assistant failures."""

    kind = "error"

    def __init__(self, message: str, *, vendor_message: str | None = None) -> None:
        super().__init__(message)
        self.vendor_message = vendor_message

    def as_dict(self) -> dict[str, str]:
        payload = {"error": self.kind, "message": str(self)}
        if self.vendor_message:
            payload["vendor_message"] = self.vendor_message
        return payload


class ProviderUnavailableError(VoiceAssistantError):
    kind = "provider_unavailable"


class ParameterInvalidError(VoiceAssistantError):
    kind = "parameter_invalid"


class TokenAcquisitionError(VoiceAssistantError):
    kind = "token_acquisition_failed"


class NetworkTimeoutError(VoiceAssistantError):
    kind = "network_timeout"


class RateLimitedError(VoiceAssistantError):
    kind = "rate_limited"

    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AudioPlaybackError(VoiceAssistantError):
    kind = "audio_playback_error"


class UpstreamAuthError(VoiceAssistantError):
    kind = "upstream_auth_error"


class NoSpeechDetected(Exception):
    """Raised by a recognition engine when a segment ended without any speech.

    Not a failure: adapters treat it as a transient condition and keep listening.
    """
