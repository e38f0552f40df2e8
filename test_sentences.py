#!/usr/bin/env python3
"""
Tests for sentence segmentation, the chat event wire format and conversation history.
"""

import asyncio

from voice_mail_assistant.llm import (
    Conversation, EventStreamDecoder, SentenceSegmenter, StreamEvent, sentence_stream, strip_markdown,
)


async def _fragments(*chunks):
    for chunk in chunks:
        await asyncio.sleep(0)
        yield chunk


async def _collect(stream):
    return [item async for item in stream]


def test_segmenter_cuts_sentences_as_they_complete():
    """No sentence is emitted before its terminator arrives."""
    segmenter = SentenceSegmenter()
    assert segmenter.feed("Hello there. How are ") == ["Hello there."]
    assert segmenter.feed("you? Fine.") == ["How are you?", "Fine."]
    assert segmenter.flush() is None


def test_segmenter_waits_for_whitespace_after_terminator():
    segmenter = SentenceSegmenter()
    assert segmenter.feed("The total is 3") == []
    assert segmenter.feed(".5 dollars") == []
    assert segmenter.feed(" today! Ok") == ["The total is 3.5 dollars today!"]
    assert segmenter.flush() == "Ok"


def test_segmenter_keeps_closing_quotes():
    segmenter = SentenceSegmenter()
    assert segmenter.feed('She wrote "see you soon." Then ') == ['She wrote "see you soon."']


def test_sentence_stream_flushes_trailing_text_once():
    sentences = asyncio.run(_collect(sentence_stream(_fragments("Sure. I will", " send it, ", "thanks"))))
    assert sentences == ["Sure.", "I will send it, thanks"]


def test_sentence_stream_of_nothing():
    assert asyncio.run(_collect(sentence_stream(_fragments()))) == []
    assert asyncio.run(_collect(sentence_stream(_fragments("   ")))) == []


def test_stream_event_encoding():
    assert StreamEvent(delta="Hi").encode() == 'data: {"delta":"Hi"}\n\n'
    assert StreamEvent(done=True, reply="Hi there").encode() == 'data: {"done":true,"reply":"Hi there"}\n\n'
    assert StreamEvent(error="boom").encode() == 'data: {"error":"boom"}\n\n'
    assert StreamEvent(error="boom").terminal
    assert not StreamEvent(delta="x").terminal


def test_decoder_buffers_records_split_across_reads():
    decoder = EventStreamDecoder()
    wire = StreamEvent(delta="Hello ").encode() + StreamEvent(done=True, reply="Hello").encode()
    events = []
    for i in range(0, len(wire), 7):
        events.extend(decoder.feed(wire[i:i + 7]))
    assert [e.delta for e in events] == ["Hello ", None]
    assert events[-1].done and events[-1].reply == "Hello"


def test_decoder_tolerates_noise():
    """Comments, blank lines, bare JSON and malformed records are handled line by line."""
    decoder = EventStreamDecoder()
    events = decoder.feed(
        ": keep-alive\n"
        "\n"
        "data: {not json}\n"
        "data: [1, 2]\n"
        "data: {\"done\": \"maybe\"}\n"
        "{\"delta\": \"bare\"}\n"
        "data:{\"delta\":\"tight\"}\n"
        "data: {\"delta\": \"partial"
    )
    assert [e.delta for e in events] == ["bare", "tight"]
    assert decoder.feed("\"}\n")[0].delta == "partial"


def test_conversation_keeps_order_and_content():
    conversation = Conversation()
    user = conversation.add_user("search emails from Alice")
    snapshot = conversation.history()
    conversation.add_assistant("I found three emails from Alice.")

    assert snapshot == [user]
    assert [(m.role, m.content) for m in conversation.history()] == [
        ("user", "search emails from Alice"),
        ("assistant", "I found three emails from Alice."),
    ]
    assert not conversation.ends_with(user)


def test_strip_markdown():
    text = "# Inbox\n- **Alice**: `budget` review\n> quoted\nPlain *text*."
    assert strip_markdown(text) == "Inbox\nAlice: budget review\nquoted\nPlain text."
