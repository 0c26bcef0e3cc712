from __future__ import annotations

import sys
import types

import pytest


def test_voice_chat_reports_actionable_error_when_voice_backends_missing(monkeypatch) -> None:
    typer_testing = pytest.importorskip("typer.testing")
    from voice_assistant.main import app

    fake_stt = types.ModuleType("voice_assistant.voice.stt_speechrecognition")

    class _MissingBackend:
        def __init__(self, *args, **kwargs) -> None:
            raise RuntimeError("voice extras missing")

    fake_stt.SpeechRecognitionEngine = _MissingBackend
    fake_stt.LocalRecognitionAdapter = _MissingBackend

    monkeypatch.setitem(sys.modules, "voice_assistant.voice.stt_speechrecognition", fake_stt)

    result = typer_testing.CliRunner().invoke(app, ["voice-chat"], catch_exceptions=False)

    assert result.exit_code == 1
    assert "voice extras missing" in result.stdout


def test_speak_reports_missing_audio_output(monkeypatch) -> None:
    typer_testing = pytest.importorskip("typer.testing")
    from voice_assistant import main

    def _no_output():
        raise RuntimeError("no audio output")

    monkeypatch.setattr(main, "_build_output", _no_output)

    result = typer_testing.CliRunner().invoke(main.app, ["speak", "hello"], catch_exceptions=False)

    assert result.exit_code == 1
    assert "no audio output" in result.stdout
