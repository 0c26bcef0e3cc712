from __future__ import annotations

from voice_assistant.config import Settings
from voice_assistant.models import DeviceClass, classify_user_agent, resolve_device_class


def test_settings_read_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("VOICE_ASSISTANT_API_BASE_URL", "https://assistant.example/api/")
    monkeypatch.setenv("VOICE_ASSISTANT_CHAT_MAX_RETRIES", "4")
    monkeypatch.setenv("VOICE_ASSISTANT_DEMO_MODE", "true")

    settings = Settings(_env_file=None)

    assert settings.chat_max_retries == 4
    assert settings.demo_mode is True
    assert settings.url("/tts/buffered") == "https://assistant.example/api/tts/buffered"


def test_settings_defaults_match_vendor_limits() -> None:
    settings = Settings(_env_file=None)

    assert settings.buffered_max_chars == 1_000
    assert settings.rate_limit_requests == 100
    assert settings.rate_limit_window_seconds == 900
    assert settings.token_cache_days == 29
    assert (settings.voice_speed, settings.voice_pitch, settings.voice_volume) == (4, 4, 5)


def test_user_agent_classification() -> None:
    iphone = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"
    linux = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/126.0 Safari/537.36"

    assert classify_user_agent(iphone) is DeviceClass.MOBILE
    assert classify_user_agent(linux) is DeviceClass.DESKTOP
    assert classify_user_agent("") is DeviceClass.DESKTOP
    assert resolve_device_class("auto", iphone) is DeviceClass.MOBILE
    assert resolve_device_class("Mobile") is DeviceClass.MOBILE
    assert DeviceClass.MOBILE.constrained and not DeviceClass.DESKTOP.constrained
