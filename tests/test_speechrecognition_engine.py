from __future__ import annotations

import asyncio
import sys
import threading
import types

from voice_assistant.voice.stt_speechrecognition import SpeechRecognitionEngine


class FakeSpeechRecognition:
    """Stand-in ``speech_recognition`` module whose ``listen`` blocks until released."""

    def __init__(self, transcript: str = "hello there") -> None:
        self.transcript = transcript
        self.listening = threading.Event()
        self.release = threading.Event()
        self.microphones: list = []
        self.recognized = 0
        fake = self

        class Microphone:
            def __init__(self, sample_rate=None, chunk_size=None) -> None:
                self.exited = False
                fake.microphones.append(self)

            def __enter__(self):
                return self

            def __exit__(self, *exc_info) -> None:
                self.exited = True

            @staticmethod
            def list_microphone_names() -> list[str]:
                return ["default"]

        class Recognizer:
            def adjust_for_ambient_noise(self, source, duration=0) -> None:
                pass

            def listen(self, source, timeout=None, phrase_time_limit=None):
                fake.listening.set()
                fake.release.wait(2.0)
                return b"audio"

            def recognize_google(self, audio, language=None) -> str:
                fake.recognized += 1
                return fake.transcript

        self.module = types.ModuleType("speech_recognition")
        self.module.Microphone = Microphone
        self.module.Recognizer = Recognizer
        self.module.WaitTimeoutError = type("WaitTimeoutError", (Exception,), {})
        self.module.UnknownValueError = type("UnknownValueError", (Exception,), {})
        self.module.RequestError = type("RequestError", (Exception,), {})


def _engine(monkeypatch, fake: FakeSpeechRecognition) -> SpeechRecognitionEngine:
    monkeypatch.setitem(sys.modules, "speech_recognition", fake.module)
    return SpeechRecognitionEngine(adjust_noise_seconds=0)


def test_segment_keeps_microphone_open_until_close(monkeypatch) -> None:
    fake = FakeSpeechRecognition()
    fake.release.set()
    engine = _engine(monkeypatch, fake)

    async def _run() -> list[str]:
        return [await engine.run_segment(), await engine.run_segment()]

    assert asyncio.run(_run()) == ["hello there", "hello there"]
    assert len(fake.microphones) == 1
    assert fake.microphones[0].exited is False

    engine.close()
    assert fake.microphones[0].exited is True


def test_close_during_listen_leaves_release_to_the_segment(monkeypatch) -> None:
    fake = FakeSpeechRecognition()
    engine = _engine(monkeypatch, fake)

    async def _run() -> tuple[bool, str]:
        segment = asyncio.create_task(engine.run_segment())
        while not fake.listening.is_set():
            await asyncio.sleep(0.01)
        engine.close()
        exited_while_listening = fake.microphones[0].exited
        fake.release.set()
        return exited_while_listening, await segment

    exited_while_listening, text = asyncio.run(_run())

    assert exited_while_listening is False
    assert text == ""
    assert fake.microphones[0].exited is True
    assert fake.recognized == 0


def test_segment_scheduled_before_close_never_opens_microphone(monkeypatch) -> None:
    fake = FakeSpeechRecognition()
    fake.release.set()
    engine = _engine(monkeypatch, fake)

    engine.close()

    assert engine._listen_and_transcribe(0) == ""
    assert fake.microphones == []
