#!/usr/bin/env python3
"""
Tests for the pydantic configuration model.
"""

import pytest
from pydantic import ValidationError

from voice_mail_assistant.config import Config, DEFAULT_SYSTEM_PROMPT


def test_defaults():
    config = Config()
    assert config.sample_rate == 16000
    assert config.silence_threshold == 0.02
    assert config.silence_duration_sec == 1.5
    assert config.min_recording_sec == 0.5
    assert config.block_samples == 320
    assert config.max_tool_iterations == 5
    assert config.system_prompt == DEFAULT_SYSTEM_PROMPT


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Config(silence_threshold=0)
    with pytest.raises(ValidationError):
        Config(system_prompt="   ")
    with pytest.raises(ValidationError):
        Config(chat_backend="openai")
    with pytest.raises(ValidationError):
        Config(unknown_option=True)

    config = Config()
    with pytest.raises(ValidationError):
        config.interrupt_multiplier = 0.5


def test_from_env(monkeypatch):
    monkeypatch.setenv("NYLAS_API_KEY", "key-123")
    monkeypatch.setenv("NYLAS_GRANT_ID", "grant-456")
    monkeypatch.setenv("VOICE_MAIL_CHAT_BACKEND", "http")
    monkeypatch.setenv("VOICE_MAIL_MODEL", "qwen2.5:7b")
    monkeypatch.delenv("OLLAMA_HOST", raising=False)

    config = Config.from_env(voice_name="en-GB-SoniaNeural")
    assert config.nylas_api_key == "key-123"
    assert config.nylas_grant_id == "grant-456"
    assert config.chat_backend == "http"
    assert config.ollama_model == "qwen2.5:7b"
    assert config.ollama_host is None
    assert config.voice_name == "en-GB-SoniaNeural"

    assert Config.from_env(chat_backend="ollama").chat_backend == "ollama"
