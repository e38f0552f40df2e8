#!/usr/bin/env python3
"""
Tests for the sentence-level speech pipeline: ordered playback over concurrent synthesis.
"""

import asyncio

from voice_mail_assistant.errors import SynthesisError
from voice_mail_assistant.pipeline import CancellationToken, SpeechPipeline
from voice_mail_assistant.state import Session


class FakeSynthesizer:
    """Returns the text as audio after a per-sentence delay."""

    def __init__(self, delays=None, failures=()):
        self.delays = delays or {}
        self.failures = set(failures)
        self.requested = []
        self.finished = []

    async def synthesize(self, text):
        self.requested.append(text)
        await asyncio.sleep(self.delays.get(text, 0))
        if text in self.failures:
            raise SynthesisError(f"cannot say {text!r}")
        self.finished.append(text)
        return text.encode()


class FakePlayer:
    def __init__(self, duration=0.01):
        self.duration = duration
        self.played = []
        self.active = 0
        self.max_active = 0

    async def play(self, audio):
        self.played.append(audio.decode())
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(self.duration)
        self.active -= 1

    def stop(self):
        pass


def _pipeline(synthesizer, player, on_speaking=None):
    session = Session(active=True)
    token = CancellationToken()
    session.token = token
    return SpeechPipeline(synthesizer, player, session, token, on_speaking=on_speaking), session, token


def test_playback_order_survives_out_of_order_synthesis():
    """S2 finishes synthesis first but still plays after S1."""

    async def run():
        synthesizer = FakeSynthesizer(delays={"First, slowly.": 0.05, "Second.": 0.0})
        player = FakePlayer()
        pipeline, _, _ = _pipeline(synthesizer, player)
        pipeline.enqueue("First, slowly.")
        pipeline.enqueue("Second.")
        await pipeline.drain()
        return synthesizer, player

    synthesizer, player = asyncio.run(run())
    assert synthesizer.finished == ["Second.", "First, slowly."]
    assert player.played == ["First, slowly.", "Second."]
    assert player.max_active == 1


def test_synthesis_overlaps_playback():
    """Every sentence is requested right away, not after the previous one plays."""

    async def run():
        synthesizer = FakeSynthesizer()
        player = FakePlayer(duration=0.05)
        pipeline, _, _ = _pipeline(synthesizer, player)
        for sentence in ("One.", "Two.", "Three."):
            pipeline.enqueue(sentence)
        await asyncio.sleep(0.01)
        requested_early = list(synthesizer.requested)
        await pipeline.drain()
        return requested_early, player

    requested_early, player = asyncio.run(run())
    assert requested_early == ["One.", "Two.", "Three."]
    assert player.played == ["One.", "Two.", "Three."]


def test_failed_sentence_is_skipped():
    async def run():
        synthesizer = FakeSynthesizer(failures={"Broken."})
        player = FakePlayer()
        pipeline, _, _ = _pipeline(synthesizer, player)
        for sentence in ("Before.", "Broken.", "After."):
            pipeline.enqueue(sentence)
        await pipeline.drain()
        return player

    assert asyncio.run(run()).played == ["Before.", "After."]


def test_cancelled_token_stops_later_audio():
    """Audio resolving after cancellation never reaches the player."""

    async def run():
        synthesizer = FakeSynthesizer(delays={"Later.": 0.05})
        player = FakePlayer(duration=0.01)
        speaking = []
        pipeline, session, token = _pipeline(synthesizer, player, on_speaking=speaking.append)
        pipeline.enqueue("Now.")
        later = pipeline.enqueue("Later.")
        await asyncio.sleep(0.02)
        token.cancel()
        assert pipeline.enqueue("Too late.") is None
        await pipeline.drain()
        await asyncio.sleep(0.06)
        return player, later, speaking, token

    player, later, speaking, token = asyncio.run(run())
    assert player.played == ["Now."]
    assert later.aborted
    assert later.synthesis.cancelled()
    assert speaking == [token]


def test_inactive_session_plays_nothing():
    async def run():
        synthesizer = FakeSynthesizer(delays={"Hello.": 0.01})
        player = FakePlayer()
        pipeline, session, _ = _pipeline(synthesizer, player)
        pipeline.enqueue("Hello.")
        session.active = False
        await pipeline.drain()
        return player

    assert asyncio.run(run()).played == []


def test_cancellation_token_callbacks():
    token = CancellationToken()
    calls = []
    token.add_callback(lambda: calls.append("a"))
    token.cancel()
    token.cancel()
    token.add_callback(lambda: calls.append("b"))
    assert calls == ["a", "b"]
    assert token.cancelled


def test_blank_sentences_are_ignored():
    async def run():
        pipeline, _, _ = _pipeline(FakeSynthesizer(), FakePlayer())
        result = pipeline.enqueue("   ")
        await pipeline.drain()
        return result, pipeline

    result, pipeline = asyncio.run(run())
    assert result is None
    assert pipeline.jobs == []


def test_playback_failure_ends_only_that_sentence(caplog):
    """A player exception is logged and the next sentence still plays."""

    class FlakyPlayer(FakePlayer):
        async def play(self, audio):
            if audio == b"Bad device.":
                raise ValueError("Invalid output device")
            await super().play(audio)

    async def run():
        player = FlakyPlayer()
        pipeline, _, _ = _pipeline(FakeSynthesizer(), player)
        for sentence in ("Bad device.", "Still here."):
            pipeline.enqueue(sentence)
        await pipeline.drain()
        return player, pipeline

    with caplog.at_level("WARNING", logger="voice_mail_assistant.pipeline"):
        player, pipeline = asyncio.run(run())
    assert player.played == ["Still here."]
    assert "playback failed: Invalid output device" in caplog.text
    assert pipeline._tail.exception() is None
