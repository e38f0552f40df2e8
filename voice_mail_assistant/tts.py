#!/usr/bin/env python3
"""
Text-to-speech synthesis and audio playback for the Voice Mail Assistant.

Synthesis and playback are separate so that the speech pipeline can request
audio for the next sentence while the current one is still playing.
"""

import asyncio
import io
import logging
from typing import Optional

import edge_tts
import numpy as np
from pydub import AudioSegment

from .config import default_config
from .errors import PlaybackError, SynthesisError

logger = logging.getLogger(__name__)


class SpeechSynthesisClient:
    """Text in, encoded audio bytes out. Cancelling the awaiting task aborts the request."""

    async def synthesize(self, text: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError


class EdgeTTSSynthesizer(SpeechSynthesisClient):
    """Edge TTS synthesis; returns MP3 bytes for one sentence."""

    def __init__(self, config=None, voice=None):
        self.config = config or default_config
        self.voice = voice or self.config.voice_name or 'en-US-AriaNeural'

    async def synthesize(self, text: str) -> bytes:
        communicate = edge_tts.Communicate(text, voice=self.voice)
        audio_bytes = bytearray()
        try:
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio_bytes.extend(chunk["data"])
        except Exception as e:
            raise SynthesisError(f"Speech synthesis failed: {e}") from e
        if not audio_bytes:
            raise SynthesisError("Speech synthesis returned no audio")
        return bytes(audio_bytes)


class PlaybackController:
    """Plays one audio segment at a time through a sounddevice output stream.

    ``play`` returns when the segment ends, fails, or ``stop`` is called. The
    output stream is opened per segment and always closed on the way out.
    """

    def __init__(self, audio_format: str = "mp3", device=None):
        self.audio_format = audio_format
        self.device = device
        self._done: Optional[asyncio.Event] = None
        self._stream = None

    @property
    def playing(self) -> bool:
        return self._done is not None

    def _decode(self, audio: bytes):
        try:
            segment = AudioSegment.from_file(io.BytesIO(audio), format=self.audio_format)
        except Exception as e:
            raise PlaybackError(f"Could not decode audio: {e}") from e
        scale = float(1 << (8 * segment.sample_width - 1))
        samples = np.array(segment.get_array_of_samples(), dtype=np.float32) / scale
        return samples.reshape(-1, segment.channels), segment.frame_rate

    async def play(self, audio: bytes):
        self.stop()
        try:
            import sounddevice as sd
        except OSError as e:  # PortAudio library missing
            logger.warning("Playback unavailable: %s", e)
            return
        done = asyncio.Event()
        self._done = done
        loop = asyncio.get_running_loop()
        stream = None
        try:
            samples, frame_rate = await asyncio.to_thread(self._decode, audio)
            if done.is_set():
                return
            position = 0

            def callback(outdata, frames, time_info, status):
                nonlocal position
                chunk = samples[position:position + frames]
                outdata[:len(chunk)] = chunk
                position += len(chunk)
                if len(chunk) < frames:
                    outdata[len(chunk):] = 0
                    raise sd.CallbackStop

            stream = sd.OutputStream(
                samplerate=frame_rate,
                channels=samples.shape[1],
                dtype='float32',
                device=self.device,
                callback=callback,
                finished_callback=lambda: loop.call_soon_threadsafe(done.set),
            )
            self._stream = stream
            stream.start()
            await done.wait()
        except (PlaybackError, sd.PortAudioError) as e:
            logger.warning("Playback failed: %s", e)
        finally:
            if stream is not None:
                try:
                    if stream.active:
                        stream.abort()
                    stream.close()
                except sd.PortAudioError as e:
                    logger.debug("Error closing output stream: %s", e)
            if self._done is done:
                self._done = None
                self._stream = None

    def stop(self):
        """Halt the current segment immediately; its ``play`` call returns."""
        done, stream = self._done, self._stream
        self._done = None
        self._stream = None
        if stream is not None:
            import sounddevice as sd
            try:
                stream.abort()
            except sd.PortAudioError as e:
                logger.debug("Error aborting output stream: %s", e)
        if done is not None:
            done.set()
