"""Voice input and output module boundaries."""

from .dialogue import ConversationState
from .input import CaptureListener, RecognitionSessionManager
from .interfaces import (
    AudioBackend,
    PlaybackListener,
    RecognitionAdapter,
    RecognitionListener,
    SessionListener,
    SpeechSynthesizer,
)
from .output import ExclusiveAudioOutput
from .stt_remote import MicrophoneStream, RemoteRecognitionAdapter
from .stt_speechrecognition import LocalRecognitionAdapter, SpeechEngine
from .synthesis import SynthesisCoordinator, VoiceOutputConfig
from .tts_buffered import BufferedSynthesisClient
from .tts_streaming import StreamingSynthesisClient

__all__ = [
    "AudioBackend",
    "BufferedSynthesisClient",
    "CaptureListener",
    "ConversationState",
    "ExclusiveAudioOutput",
    "LocalRecognitionAdapter",
    "MicrophoneStream",
    "PlaybackListener",
    "RecognitionAdapter",
    "RecognitionListener",
    "RecognitionSessionManager",
    "RemoteRecognitionAdapter",
    "SessionListener",
    "SpeechEngine",
    "SpeechSynthesizer",
    "StreamingSynthesisClient",
    "SynthesisCoordinator",
    "VoiceOutputConfig",
]
