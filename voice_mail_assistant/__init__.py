#!/usr/bin/env python3
"""
Voice Mail Assistant
====================

A hands-free email assistant you talk to. Speak a request ("search emails from
Alice", "read me the latest one", "reply that I'll be there"), hear the answer,
and talk over it at any time to interrupt.

Features
--------
1. Microphone capture @ 16 kHz mono using a sounddevice InputStream.
2. RMS-based voice activity detection: speech starts above a silence threshold and
   ends after a minimum duration plus a run of continuous silence.
3. Speech-to-Text via faster-whisper (GPU auto, fallback CPU).
4. Chat via Ollama with mail tools (search, read, read attachment, send, reply)
   resolved server-side in a bounded loop, then the answer is streamed.
5. Sentence segmentation of the streaming reply; each sentence is synthesized with
   edge-tts as soon as it completes while earlier sentences are still playing.
6. Barge-in: talking over the assistant stops playback and starts a new recording.
7. Optional FastAPI chat endpoint so the voice client can run against a remote service.

Quick Start
-----------
```python
from voice_mail_assistant import main
import asyncio

asyncio.run(main())
```
"""

from .core import SessionController, ConversationOrchestrator, main
from .config import Config, default_config
from .state import AppState, Session
from .audio import AudioLevelMonitor, Microphone, rms
from .detection import (
    CaptureController, InterruptDetector, TranscriptionClient, VoiceActivityDetector, WhisperTranscriber,
)
from .llm import (
    Conversation, EventStreamDecoder, HttpChatClient, Message, OllamaChatService, SentenceSegmenter,
    StreamEvent, StreamingChatClient, sentence_stream,
)
from .mail import MailClient, MailToolbox, NylasMailClient
from .pipeline import CancellationToken, SentenceJob, SpeechPipeline
from .tts import EdgeTTSSynthesizer, PlaybackController, SpeechSynthesisClient
from .errors import (
    CaptureError, ChatStreamError, MailError, PlaybackError, SynthesisError, TranscriptionError,
    VoiceAssistantError,
)

__version__ = "1.0.0"
__all__ = [
    'SessionController',
    'ConversationOrchestrator',
    'main',
    'Config',
    'default_config',
    'AppState',
    'Session',
    'AudioLevelMonitor',
    'Microphone',
    'rms',
    'CaptureController',
    'InterruptDetector',
    'TranscriptionClient',
    'VoiceActivityDetector',
    'WhisperTranscriber',
    'Conversation',
    'EventStreamDecoder',
    'HttpChatClient',
    'Message',
    'OllamaChatService',
    'SentenceSegmenter',
    'StreamEvent',
    'StreamingChatClient',
    'sentence_stream',
    'MailClient',
    'MailToolbox',
    'NylasMailClient',
    'CancellationToken',
    'SentenceJob',
    'SpeechPipeline',
    'EdgeTTSSynthesizer',
    'PlaybackController',
    'SpeechSynthesisClient',
    'CaptureError',
    'ChatStreamError',
    'MailError',
    'PlaybackError',
    'SynthesisError',
    'TranscriptionError',
    'VoiceAssistantError',
]
