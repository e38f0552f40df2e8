#!/usr/bin/env python3
"""
Configuration settings for the Voice Mail Assistant using Pydantic.
"""

import os
from typing import Literal, Optional
from pydantic import BaseModel, Field, computed_field, ConfigDict, field_validator


DEFAULT_SYSTEM_PROMPT = """You are a personal email assistant with voice interface. You help the user manage and understand their email inbox.

Your capabilities:
- Search emails by sender, subject, keywords, or date
- Read full email contents including body text
- Read the contents of text attachments and report attachment metadata (filenames, types, sizes)
- Send new emails to any recipient
- Reply to existing emails

Guidelines:
- Always use the available tools to answer questions. Never guess or make up email content.
- Keep responses concise and conversational since they will be spoken aloud. Do not use markdown.
- When summarizing emails, mention the sender, subject, and key points.
- To read an attachment, first use read_email to get the attachment_id, then call read_attachment.

Sending and replying to emails:
- When the user wants to send an email or reply to one, compose a draft and READ IT BACK to the user before sending.
- You MUST ask for explicit verbal confirmation (e.g. "Shall I send this?") and wait for the user to say "yes" before calling send_email or reply_to_email.
- If the user says "no" or wants changes, adjust the draft and ask for confirmation again.
- For replies, use search_emails and read_email first to find the message, then compose the reply."""


class Config(BaseModel):
    """
    Configuration for the Voice Mail Assistant.

    The voice-activity thresholds and timings were tuned by ear on a laptop
    microphone; they are plain fields so they can be recalibrated per device.
    """

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        frozen=False,
    )

    # Audio Configuration
    sample_rate: int = Field(
        default=16000,
        description="Microphone sample rate in Hz",
        ge=8000,
        le=48000
    )

    block_ms: int = Field(
        default=20,
        description="Milliseconds of audio delivered per input callback",
        ge=1,
        le=250
    )

    analyser_size: int = Field(
        default=2048,
        description="Number of most recent samples used for RMS level analysis",
        ge=32,
        le=65536
    )

    sample_interval_ms: int = Field(
        default=16,
        description="Period of the level-sampling loop (~60 Hz)",
        ge=1,
        le=500
    )

    # Voice activity detection
    silence_threshold: float = Field(
        default=0.02,
        description="RMS level (0-1 scale) above which input counts as speech",
        gt=0.0,
        le=1.0
    )

    silence_duration_ms: int = Field(
        default=1500,
        description="Continuous silence that ends an utterance (ms)",
        ge=50,
        le=10000
    )

    min_recording_ms: int = Field(
        default=500,
        description="Minimum utterance duration, rejects transient noise spikes (ms)",
        ge=0,
        le=10000
    )

    preroll_ms: int = Field(
        default=300,
        description="Audio kept from just before speech start so the first syllable is not clipped (ms)",
        ge=0,
        le=2000
    )

    interrupt_multiplier: float = Field(
        default=3.0,
        description="Barge-in triggers above silence_threshold times this factor",
        ge=1.0,
        le=50.0
    )

    # Speech-to-Text Configuration
    whisper_model: str = Field(
        default="base.en",
        description="faster-whisper model to use for speech-to-text"
    )

    whisper_compute: Literal["auto", "cpu", "cuda"] = Field(
        default="auto",
        description="Compute device for Whisper model"
    )

    whisper_compute_type: str = Field(
        default="default",
        description="CTranslate2 compute type (default, int8, float16, ...)"
    )

    # Chat Configuration
    chat_backend: Literal["ollama", "http"] = Field(
        default="ollama",
        description="Run the chat tool loop in-process (ollama) or consume a remote stream (http)"
    )

    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model name; must support tool calling"
    )

    ollama_host: Optional[str] = Field(
        default=None,
        description="Ollama server URL (None uses the client default)"
    )

    chat_url: str = Field(
        default="http://127.0.0.1:8000/api/chat",
        description="Remote chat endpoint used when chat_backend is 'http'"
    )

    chat_timeout_sec: float = Field(
        default=120.0,
        description="Read timeout for the remote chat stream",
        gt=0.0
    )

    max_tool_iterations: int = Field(
        default=5,
        description="Maximum rounds of tool calls before the final answer is forced",
        ge=1,
        le=20
    )

    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt for the email assistant"
    )

    # Text-to-Speech Configuration
    voice_name: str = Field(
        default="en-US-AriaNeural",
        description="edge-tts voice name"
    )

    # Sentence segmentation
    sentence_end_chars: str = Field(
        default=r"\.\!\?",
        description="Regex character set for sentence endings"
    )

    # Mail provider
    nylas_api_key: Optional[str] = Field(default=None, description="Nylas API key")
    nylas_grant_id: Optional[str] = Field(default=None, description="Nylas grant (mailbox) id")
    nylas_api_uri: str = Field(
        default="https://api.us.nylas.com",
        description="Nylas API region endpoint"
    )

    search_limit: int = Field(
        default=5,
        description="Default number of search results",
        ge=1,
        le=50
    )

    max_body_chars: int = Field(
        default=3000,
        description="Email bodies longer than this are truncated before reaching the model",
        ge=100
    )

    max_attachment_chars: int = Field(
        default=4000,
        description="Attachment text longer than this is truncated",
        ge=100
    )

    @computed_field
    @property
    def block_samples(self) -> int:
        """Number of audio samples per input block."""
        return int(self.sample_rate * self.block_ms / 1000)

    @computed_field
    @property
    def interrupt_threshold(self) -> float:
        """RMS level that counts as the user talking over playback."""
        return self.silence_threshold * self.interrupt_multiplier

    @computed_field
    @property
    def preroll_blocks(self) -> int:
        """Number of input blocks held as pre-roll while listening."""
        return -(-self.preroll_ms // self.block_ms)

    @property
    def sample_interval_sec(self) -> float:
        return self.sample_interval_ms / 1000

    @property
    def silence_duration_sec(self) -> float:
        return self.silence_duration_ms / 1000

    @property
    def min_recording_sec(self) -> float:
        return self.min_recording_ms / 1000

    @field_validator('system_prompt')
    @classmethod
    def validate_system_prompt(cls, v):
        """Ensure system prompt is not empty."""
        if not v.strip():
            raise ValueError("system_prompt cannot be empty")
        return v

    @field_validator('sentence_end_chars')
    @classmethod
    def validate_sentence_end_chars(cls, v):
        if not v:
            raise ValueError("sentence_end_chars cannot be empty")
        return v

    @classmethod
    def from_env(cls, **overrides) -> "Config":
        """Build a configuration from environment variables on top of the defaults."""
        env_map = {
            'nylas_api_key': 'NYLAS_API_KEY',
            'nylas_grant_id': 'NYLAS_GRANT_ID',
            'nylas_api_uri': 'NYLAS_API_URI',
            'ollama_host': 'OLLAMA_HOST',
            'ollama_model': 'VOICE_MAIL_MODEL',
            'chat_backend': 'VOICE_MAIL_CHAT_BACKEND',
            'chat_url': 'VOICE_MAIL_CHAT_URL',
            'voice_name': 'VOICE_MAIL_VOICE',
            'whisper_model': 'VOICE_MAIL_WHISPER_MODEL',
        }
        values = {}
        for field, var in env_map.items():
            value = os.environ.get(var)
            if value:
                values[field] = value
        values.update(overrides)
        return cls(**values)


# Default configuration instance
default_config = Config()
