#!/usr/bin/env python3
"""
Voice activity detection, utterance capture, barge-in detection and speech-to-text.
"""

import asyncio
import io
import logging
import time
import wave
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, Optional

import numpy as np
from faster_whisper import WhisperModel

from .config import default_config
from .errors import TranscriptionError
from .state import AppState

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"


class VADState(str, Enum):
    LISTENING = "listening"
    RECORDING = "recording"
    SILENCE = "silence"      # recording, silence timer running
    FINALIZED = "finalized"


class VADEvent(str, Enum):
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


class VoiceActivityDetector:
    """Decides when an utterance starts and ends from a stream of RMS levels.

    Logic:
      - listening -> recording once the level exceeds the silence threshold.
      - While recording, a level below the threshold starts a silence timer; a
        louder level cancels it again.
      - The utterance ends once it has lasted at least ``min_recording_ms`` AND
        the current silence has lasted ``silence_duration_ms``.
    One detector covers one turn; after SPEECH_END it ignores further input.
    """

    def __init__(self, config=None):
        self.config = config or default_config
        self.state = VADState.LISTENING
        self.recording_started: Optional[float] = None
        self.silence_started: Optional[float] = None

    def update(self, level: float, now: float) -> Optional[VADEvent]:
        threshold = self.config.silence_threshold
        if self.state is VADState.FINALIZED:
            return None

        if self.state is VADState.LISTENING:
            if level > threshold:
                self.state = VADState.RECORDING
                self.recording_started = now
                self.silence_started = None
                return VADEvent.SPEECH_START
            return None

        if level > threshold:
            self.silence_started = None
            self.state = VADState.RECORDING
            return None

        if self.silence_started is None:
            self.silence_started = now
            self.state = VADState.SILENCE
        elapsed = now - self.recording_started
        silent_for = now - self.silence_started
        if elapsed >= self.config.min_recording_sec and silent_for >= self.config.silence_duration_sec:
            self.state = VADState.FINALIZED
            return VADEvent.SPEECH_END
        return None


class SegmentRecorder:
    """Collects 16-bit PCM chunks from the microphone for one utterance.

    After start() the recorder is "armed": it only keeps the last ``preroll_blocks``
    chunks. begin_segment() (on speech start) moves that pre-roll into the segment
    and every later chunk is kept until stop().
    """

    def __init__(self, microphone, sample_rate: int, preroll_blocks: int = 0):
        self.microphone = microphone
        self.sample_rate = sample_rate
        self.chunks: List[bytes] = []
        self.preroll: Deque[bytes] = deque(maxlen=max(preroll_blocks, 1))
        self.preroll_blocks = preroll_blocks
        self.state = "inactive"

    def start(self):
        self.chunks = []
        self.preroll.clear()
        self.state = "armed"
        self.microphone.subscribe(self._on_data)

    def begin_segment(self):
        if self.state != "armed":
            return
        if self.preroll_blocks:
            self.chunks.extend(self.preroll)
        self.preroll.clear()
        self.state = "recording"

    def _on_data(self, chunk: bytes):
        if not chunk:
            return
        if self.state == "recording":
            self.chunks.append(chunk)
        elif self.state == "armed":
            self.preroll.append(chunk)

    def stop(self):
        if self.state == "inactive":
            return
        self.state = "inactive"
        self.microphone.unsubscribe(self._on_data)

    def finish(self) -> bytes:
        """Assemble the collected chunks into one WAV segment (empty bytes if none)."""
        pcm = b''.join(self.chunks)
        self.chunks = []
        if not pcm:
            return b''
        buffer = io.BytesIO()
        with wave.open(buffer, 'wb') as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(self.sample_rate)
            wav.writeframes(pcm)
        return buffer.getvalue()


class CaptureController:
    """Runs one VAD cycle per call: listen, record, finalize one utterance.

    Exactly one recorder exists per cycle; ``stop_recorder`` ends the current one
    and makes the running cycle return without a segment.
    """

    def __init__(self, microphone, monitor, session, config=None,
                 clock: Callable[[], float] = time.monotonic):
        self.microphone = microphone
        self.monitor = monitor
        self.session = session
        self.config = config or default_config
        self.clock = clock
        self.mime_type = WAV_MIME_TYPE
        self._recorder: Optional[SegmentRecorder] = None

    @property
    def recording(self) -> bool:
        return self._recorder is not None and self._recorder.state != "inactive"

    def stop_recorder(self):
        recorder, self._recorder = self._recorder, None
        if recorder is not None:
            recorder.stop()

    async def record_utterance(self) -> Optional[bytes]:
        """Return the next finalized utterance, or None if the cycle ended without one."""
        self.stop_recorder()
        session = self.session
        session.transition(AppState.LISTENING)

        recorder = SegmentRecorder(self.microphone, self.config.sample_rate, self.config.preroll_blocks)
        self._recorder = recorder
        recorder.start()
        vad = VoiceActivityDetector(self.config)

        def on_level(level: float) -> bool:
            event = vad.update(level, self.clock())
            if event is VADEvent.SPEECH_START:
                recorder.begin_segment()
                session.transition(AppState.RECORDING)
            return event is VADEvent.SPEECH_END

        try:
            finalized = await self.monitor.watch(
                on_level, lambda: session.active and self._recorder is recorder
            )
        finally:
            recorder.stop()
            if self._recorder is recorder:
                self._recorder = None

        if not finalized or not session.active:
            return None
        segment = recorder.finish()
        if not segment:
            logger.info("Recorder produced no audio; listening again")
            return None
        logger.debug("Utterance finalized: %d bytes", len(segment))
        return segment


class InterruptDetector:
    """Watches for the user talking over playback (barge-in).

    Runs only while the session is speaking, using a threshold well above the
    VAD threshold so residual echo of our own voice does not trigger it.
    """

    def __init__(self, monitor, session, on_interrupt: Callable[[], None], config=None):
        self.monitor = monitor
        self.session = session
        self.on_interrupt = on_interrupt
        self.config = config or default_config
        self._task: Optional[asyncio.Task] = None
        self._token = None

    def arm(self, token):
        if self._task is not None and not self._task.done():
            if self._token is token:
                return
            self._task.cancel()
        self._token = token
        self._task = asyncio.create_task(self._watch(token))

    def _speaking(self, token) -> bool:
        return self.session.is_live(token) and self.session.state is AppState.SPEAKING

    async def _watch(self, token):
        threshold = self.config.interrupt_threshold
        triggered = await self.monitor.watch(
            lambda level: level > threshold, lambda: self._speaking(token)
        )
        if triggered and self._speaking(token):
            logger.info("Barge-in detected (level %.3f)", self.monitor.level)
            self.on_interrupt()

    def cancel(self):
        task, self._task = self._task, None
        self._token = None
        if task is not None and not task.done():
            task.cancel()


class TranscriptionClient:
    """Speech-to-text backend: audio segment bytes in, text out."""

    async def transcribe(self, audio: bytes, mime_type: str = WAV_MIME_TYPE) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class WhisperTranscriber(TranscriptionClient):
    """faster-whisper speech-to-text with GPU acceleration when available."""

    def __init__(self, config=None, model_name=None, compute=None):
        self.config = config or default_config
        model_name = model_name or self.config.whisper_model
        compute = compute or self.config.whisper_compute
        self.device = self._select_device(compute)
        logger.info("Loading Whisper model %s on %s", model_name, self.device)
        self.model = WhisperModel(
            model_name, device=self.device, compute_type=self.config.whisper_compute_type
        )

    def _select_device(self, compute: str) -> str:
        if compute == 'cpu':
            return 'cpu'
        try:
            import ctranslate2
            if ctranslate2.get_cuda_device_count() > 0:
                return 'cuda'
        except Exception as e:
            logger.debug("CUDA detection failed: %s", e)
        if compute == 'cuda':
            logger.warning("CUDA requested but not available, falling back to CPU")
        return 'cpu'

    @staticmethod
    def _wav_to_float32(audio: bytes) -> np.ndarray:
        with wave.open(io.BytesIO(audio), 'rb') as wav:
            pcm = wav.readframes(wav.getnframes())
        return np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / 32768.0

    def _transcribe_blocking(self, audio: bytes, mime_type: str) -> str:
        source = self._wav_to_float32(audio) if mime_type == WAV_MIME_TYPE else io.BytesIO(audio)
        segments, _info = self.model.transcribe(source, beam_size=5)
        return "".join(segment.text for segment in segments).strip()

    async def transcribe(self, audio: bytes, mime_type: str = WAV_MIME_TYPE) -> str:
        if not audio:
            raise TranscriptionError("No audio provided")
        try:
            return await asyncio.to_thread(self._transcribe_blocking, audio, mime_type)
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e
