#!/usr/bin/env python3
"""
Microphone ownership and loudness sampling for the Voice Mail Assistant.

The microphone delivers audio on a PortAudio thread. Two things are derived from it:
  - a rolling analysis window (the last ``analyser_size`` samples) that the level
    monitor reads to compute RMS loudness,
  - 16-bit PCM chunks forwarded on the event loop to whoever subscribed (the
    segment recorder).
"""

import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np

from .config import default_config
from .errors import CaptureError

logger = logging.getLogger(__name__)


def rms(samples: np.ndarray) -> float:
    """Root-mean-square amplitude of float samples in [-1, 1]."""
    if samples is None or len(samples) == 0:
        return 0.0
    data = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(data * data)))


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767).astype(np.int16).tobytes()


class Microphone:
    """Owns the input stream and its analysis window for the whole session.

    Only the session controller opens and closes it; the recorder and the level
    monitors borrow it.
    """

    def __init__(self, config=None, device=None):
        self.config = config or default_config
        self.device = device
        self._stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._window = np.zeros(self.config.analyser_size, dtype=np.float32)
        self._subscribers: List[Callable[[bytes], None]] = []

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self):
        """Acquire the microphone. Raises CaptureError when it is unavailable."""
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._window = np.zeros(self.config.analyser_size, dtype=np.float32)
        try:
            import sounddevice as sd
        except OSError as e:  # PortAudio library missing
            raise CaptureError("Microphone access failed. PortAudio is not installed.") from e
        try:
            stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                blocksize=self.config.block_samples,
                channels=1,
                dtype='float32',
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            raise CaptureError(
                "Microphone access failed. Check that an input device is connected and permitted."
            ) from e
        self._stream = stream
        logger.info("Microphone opened at %d Hz", self.config.sample_rate)

    def close(self):
        """Release the microphone. Safe to call repeatedly."""
        stream, self._stream = self._stream, None
        self._subscribers.clear()
        if stream is None:
            return
        import sounddevice as sd
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error while closing microphone: %s", e)
        logger.info("Microphone closed")

    def _callback(self, indata, frames, time_info, status):  # sounddevice InputStream callback
        if status.input_overflow:
            logger.debug("Input overflow")
        mono = indata[:, 0].copy()
        window = np.concatenate((self._window, mono))
        self._window = window[-self.config.analyser_size:]
        if self._subscribers and self._loop is not None:
            chunk = float_to_pcm16(mono)
            for subscriber in list(self._subscribers):
                self._loop.call_soon_threadsafe(subscriber, chunk)

    def analyser_window(self) -> np.ndarray:
        """Most recent samples as float32 in [-1, 1]."""
        return self._window

    def subscribe(self, callback: Callable[[bytes], None]):
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[bytes], None]):
        if callback in self._subscribers:
            self._subscribers.remove(callback)


class AudioLevelMonitor:
    """Samples microphone loudness at a bounded interval.

    ``watch`` runs one sampling loop: every tick it computes the RMS of the
    analysis window and hands it to a callback. The loop ends when the callback
    returns True (returns True) or ``keep_going`` turns false (returns False).
    """

    def __init__(self, microphone: Microphone, config=None,
                 on_level: Optional[Callable[[float], None]] = None):
        self.microphone = microphone
        self.config = config or default_config
        self.on_level = on_level
        self.level = 0.0

    def sample(self) -> float:
        self.level = rms(self.microphone.analyser_window())
        if self.on_level:
            self.on_level(self.level)
        return self.level

    async def watch(self, callback: Callable[[float], bool],
                    keep_going: Callable[[], bool]) -> bool:
        while keep_going():
            if callback(self.sample()):
                return True
            await asyncio.sleep(self.config.sample_interval_sec)
        return False

    def reset(self):
        self.level = 0.0
        if self.on_level:
            self.on_level(0.0)
