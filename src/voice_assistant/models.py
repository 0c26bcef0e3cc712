from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

import numpy as np

VOICE_PARAM_MIN = 0
VOICE_PARAM_MAX = 15

_MOBILE_UA = re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)


class DeviceClass(str, Enum):
    """Caller device classes; ``mobile`` is the constrained class."""

    DESKTOP = "desktop"
    MOBILE = "mobile"

    @property
    def constrained(self) -> bool:
        return self is DeviceClass.MOBILE


def classify_user_agent(user_agent: str) -> DeviceClass:
    return DeviceClass.MOBILE if _MOBILE_UA.search(user_agent or "") else DeviceClass.DESKTOP


def resolve_device_class(configured: str, user_agent: str = "") -> DeviceClass:
    """Map a configured device class (``desktop``/``mobile``/``auto``) to a DeviceClass."""
    value = configured.strip().lower()
    if value == "auto":
        return classify_user_agent(user_agent)
    return DeviceClass(value)


class RecognitionProvider(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class SessionState(str, Enum):
    """Recognition session lifecycle: IDLE -> LISTENING -> FINALIZING -> ENDED, ERROR from either active state."""

    IDLE = "idle"
    LISTENING = "listening"
    FINALIZING = "finalizing"
    ENDED = "ended"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.ENDED, SessionState.ERROR)


@dataclass(slots=True)
class TranscriptEvent:
    session_id: str
    text: str
    is_final: bool


@dataclass(slots=True)
class RecognitionAttempt:
    """One provider run inside a session; a failed remote attempt ends in ERROR internally."""

    provider: RecognitionProvider
    state: SessionState = SessionState.LISTENING
    error: str | None = None


@dataclass(slots=True)
class RecognitionSession:
    id: str = field(default_factory=lambda: uuid4().hex)
    provider: RecognitionProvider | None = None
    state: SessionState = SessionState.IDLE
    interim_text: str = ""
    final_text: str = ""
    started_at: datetime | None = None
    attempts: list[RecognitionAttempt] = field(default_factory=list)
    no_speech: bool = False

    @property
    def active(self) -> bool:
        return self.state in (SessionState.LISTENING, SessionState.FINALIZING)


class SynthesisChannel(str, Enum):
    STREAMING = "streaming"
    BUFFERED = "buffered"

    @property
    def other(self) -> SynthesisChannel:
        return SynthesisChannel.BUFFERED if self is SynthesisChannel.STREAMING else SynthesisChannel.STREAMING


@dataclass(slots=True)
class VoiceParams:
    """Voice controls on the shared 0-15 scale."""

    speed: int = 4
    pitch: int = 4
    volume: int = 5
    voice_id: str = "5003"


@dataclass(slots=True)
class SynthesisRequest:
    text: str
    voice_params: VoiceParams = field(default_factory=VoiceParams)
    channel: SynthesisChannel = SynthesisChannel.STREAMING


@dataclass(slots=True)
class AudioFrame:
    """Mono audio ready for playback.

    ``samples`` holds 16-bit signed PCM (``int16``) or samples normalized to [-1, 1]
    (``float32``); :meth:`as_float` always returns the normalized form.
    """

    samples: np.ndarray
    sample_rate: int

    @property
    def duration_seconds(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0

    def as_float(self) -> np.ndarray:
        if self.samples.dtype == np.int16:
            return self.samples.astype(np.float32) / 32768.0
        return self.samples.astype(np.float32, copy=False)


@dataclass(slots=True)
class AccessToken:
    value: str
    expires_at: float


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str


@dataclass(slots=True)
class ChatRequest:
    messages: list[ChatMessage]
    temperature: float = 0.7


@dataclass(slots=True)
class ChatResponse:
    text: str
    used_fallback: bool = False
    attempts: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
