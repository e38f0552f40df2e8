#!/usr/bin/env python3
"""
Tests for PlaybackController against a stand-in ``sounddevice`` module.

The stand-in OutputStream records start/abort/close and lets a test drive the
audio callback and the finished callback the way the PortAudio thread would.
"""

import asyncio
import sys
import types

import numpy as np
import pytest

from voice_mail_assistant.errors import PlaybackError
from voice_mail_assistant.tts import PlaybackController


class PortAudioError(Exception):
    pass


class CallbackStop(Exception):
    pass


class FakeOutputStream:
    def __init__(self, module, samplerate, channels, dtype, device, callback, finished_callback):
        self.module = module
        self.samplerate = samplerate
        self.channels = channels
        self.callback = callback
        self.finished_callback = finished_callback
        self.active = False
        self.aborted = False
        self.closed = False
        self.rendered = []
        module.streams.append(self)

    def start(self):
        if self.module.fail_start:
            raise PortAudioError("Device unavailable")
        self.active = True

    def abort(self):
        self.aborted = True
        self.active = False

    def close(self):
        self.closed = True
        self.active = False

    def finish(self, frames=64):
        """Pull blocks until the callback stops the stream, then report it finished."""
        while True:
            outdata = np.full((frames, self.channels), -1.0, dtype=np.float32)
            try:
                self.callback(outdata, frames, None, None)
            except CallbackStop:
                self.rendered.append(outdata)
                break
            self.rendered.append(outdata)
        self.active = False
        self.finished_callback()


@pytest.fixture
def sounddevice(monkeypatch):
    module = types.ModuleType("sounddevice")
    module.PortAudioError = PortAudioError
    module.CallbackStop = CallbackStop
    module.streams = []
    module.fail_start = False
    module.OutputStream = lambda **kwargs: FakeOutputStream(module, **kwargs)
    monkeypatch.setitem(sys.modules, "sounddevice", module)
    return module


def make_player(samples=None):
    player = PlaybackController()
    if samples is None:
        samples = np.full((100, 1), 0.5, dtype=np.float32)
    player._decode = lambda audio: (samples, 24000)
    return player


async def first_stream(module, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not module.streams:
        if loop.time() > deadline:
            raise AssertionError("no output stream opened")
        await asyncio.sleep(0.002)
    return module.streams[0]


def test_segment_plays_to_the_end_and_closes(sounddevice):
    async def run():
        player = make_player()
        task = asyncio.create_task(player.play(b"mp3"))
        stream = await first_stream(sounddevice)
        playing = player.playing
        stream.finish()
        await asyncio.wait_for(task, 1.0)
        return player, stream, playing

    player, stream, playing = asyncio.run(run())
    assert playing is True
    assert player.playing is False
    assert stream.samplerate == 24000
    assert stream.closed
    assert not stream.aborted
    audio = np.concatenate(stream.rendered)
    assert np.all(audio[:100] == 0.5)
    assert np.all(audio[100:] == 0.0)


def test_stop_resolves_a_pending_play(sounddevice):
    async def run():
        player = make_player()
        task = asyncio.create_task(player.play(b"mp3"))
        stream = await first_stream(sounddevice)
        player.stop()
        await asyncio.wait_for(task, 1.0)
        return player, stream

    player, stream = asyncio.run(run())
    assert stream.aborted
    assert stream.closed
    assert player.playing is False


def test_new_segment_cuts_off_the_previous_one(sounddevice):
    async def run():
        player = make_player()
        first = asyncio.create_task(player.play(b"one"))
        await first_stream(sounddevice)
        second = asyncio.create_task(player.play(b"two"))
        await asyncio.wait_for(first, 1.0)
        while len(sounddevice.streams) < 2:
            await asyncio.sleep(0.002)
        sounddevice.streams[1].finish()
        await asyncio.wait_for(second, 1.0)
        return player

    player = asyncio.run(run())
    earlier, later = sounddevice.streams
    assert earlier.aborted and earlier.closed
    assert later.closed and not later.aborted
    assert player.playing is False


def test_stream_start_failure_still_closes_the_stream(sounddevice, caplog):
    sounddevice.fail_start = True

    async def run():
        player = make_player()
        await asyncio.wait_for(player.play(b"mp3"), 1.0)
        return player

    with caplog.at_level("WARNING", logger="voice_mail_assistant.tts"):
        player = asyncio.run(run())
    (stream,) = sounddevice.streams
    assert stream.closed
    assert player.playing is False
    assert "Playback failed: Device unavailable" in caplog.text


def test_undecodable_audio_opens_no_stream(sounddevice, caplog):
    def broken(audio):
        raise PlaybackError("Could not decode audio: truncated frame")

    async def run():
        player = PlaybackController()
        player._decode = broken
        await asyncio.wait_for(player.play(b"\x00"), 1.0)
        return player

    with caplog.at_level("WARNING", logger="voice_mail_assistant.tts"):
        player = asyncio.run(run())
    assert sounddevice.streams == []
    assert player.playing is False
    assert "truncated frame" in caplog.text
