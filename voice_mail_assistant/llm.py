#!/usr/bin/env python3
"""
Chat streaming and conversation management for the Voice Mail Assistant.

The chat service resolves mail tool calls first (non-streaming rounds, capped) and
emits only the final spoken answer as ``delta`` events followed by a single
``done`` event carrying the authoritative reply. Over HTTP the events travel as
newline-delimited ``data: {json}`` records.
"""

import json
import logging
import re
from typing import AsyncGenerator, AsyncIterator, List, Literal, Optional

import httpx
import ollama
from pydantic import BaseModel, ValidationError

from .config import default_config

logger = logging.getLogger(__name__)


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class Conversation:
    """Append-only conversation history for the current session."""

    def __init__(self):
        self.messages: List[Message] = []

    def add_user(self, text: str) -> Message:
        message = Message(role="user", content=text)
        self.messages.append(message)
        return message

    def add_assistant(self, text: str) -> Message:
        message = Message(role="assistant", content=text)
        self.messages.append(message)
        return message

    def history(self) -> List[Message]:
        """Snapshot of the conversation history."""
        return list(self.messages)

    def ends_with(self, message: Message) -> bool:
        return bool(self.messages) and self.messages[-1] is message


class StreamEvent(BaseModel):
    """One record of the chat stream: a text delta, the final reply, or an error."""
    delta: Optional[str] = None
    done: bool = False
    reply: Optional[str] = None
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.done or self.error is not None

    def encode(self) -> str:
        return f"data: {self.model_dump_json(exclude_defaults=True)}\n\n"


class EventStreamDecoder:
    """Incremental parser for the chat wire format.

    Text arrives in arbitrary pieces; only complete lines are parsed, a partial
    trailing line waits in the buffer for the rest of it.
    """

    def __init__(self):
        self._buffer = ''

    def feed(self, text: str) -> List[StreamEvent]:
        self._buffer += text
        lines = self._buffer.split('\n')
        self._buffer = lines.pop()
        events = []
        for line in lines:
            event = self.parse_line(line)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def parse_line(line: str) -> Optional[StreamEvent]:
        line = line.strip()
        if not line or line.startswith(':'):
            return None
        if line.startswith('data:'):
            line = line[len('data:'):].strip()
        try:
            payload = json.loads(line)
        except ValueError:
            logger.debug("Ignoring malformed stream record: %r", line)
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return StreamEvent.model_validate(payload)
        except ValidationError:
            logger.debug("Ignoring invalid stream record: %r", payload)
            return None


class SentenceSegmenter:
    """Cuts completed sentences off the front of a growing text buffer.

    A sentence ends at terminal punctuation (plus closing quotes or brackets)
    followed by whitespace or the end of the buffer. One segmenter per exchange.
    """

    def __init__(self, config=None):
        config = config or default_config
        self._pattern = re.compile(
            rf"(.+?[{config.sentence_end_chars}](?:[\"'\)\]]*)(?:\s+|$))", re.DOTALL
        )
        self._buffer = ''

    def feed(self, text: str) -> List[str]:
        self._buffer += text
        sentences = []
        while True:
            match = self._pattern.match(self._buffer)
            if not match:
                break
            sentence = match.group(1)
            self._buffer = self._buffer[len(sentence):]
            if sentence.strip():
                sentences.append(sentence.strip())
        return sentences

    def flush(self) -> Optional[str]:
        """Return whatever is left, even without terminal punctuation."""
        tail = self._buffer.strip()
        self._buffer = ''
        return tail or None


async def sentence_stream(token_stream: AsyncIterator[str], config=None) -> AsyncGenerator[str, None]:
    """Yield completed sentences as text fragments stream in, then flush the remainder."""
    segmenter = SentenceSegmenter(config)
    async for chunk in token_stream:
        for sentence in segmenter.feed(chunk):
            yield sentence
    tail = segmenter.flush()
    if tail:
        yield tail


def strip_markdown(text: str) -> str:
    """Strip markdown formatting so the reply reads well as plain speech."""
    s = text
    s = re.sub(r'\*\*(.+?)\*\*', r'\1', s)
    s = re.sub(r'\*(.+?)\*', r'\1', s)
    s = re.sub(r'__(.+?)__', r'\1', s)
    s = re.sub(r'`(.+?)`', r'\1', s)
    s = re.sub(r'^#{1,6}\s+', '', s, flags=re.MULTILINE)
    s = re.sub(r'^\s*[-*+]\s+', '', s, flags=re.MULTILINE)
    s = re.sub(r'^>\s+', '', s, flags=re.MULTILINE)
    s = s.replace('```', '')
    return s.strip()


class StreamingChatClient:
    """Chat backend: yields zero or more delta events, then exactly one done or error event."""

    def converse(self, message: str, history: List[Message]) -> AsyncIterator[StreamEvent]:  # pragma: no cover - interface
        raise NotImplementedError


class HttpChatClient(StreamingChatClient):
    """Consumes the chat event stream of a remote chat endpoint."""

    def __init__(self, url: str, timeout: float = 120.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = httpx.Timeout(10.0, read=timeout)
        self.transport = transport

    @staticmethod
    def _error_message(body: bytes, status_code: int) -> str:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get('error'):
            return str(payload['error'])
        return f"Chat request failed ({status_code})"

    async def converse(self, message: str, history: List[Message]) -> AsyncGenerator[StreamEvent, None]:
        payload = {
            'message': message,
            'history': [m.model_dump() for m in history],
        }
        decoder = EventStreamDecoder()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream('POST', self.url, json=payload) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        yield StreamEvent(error=self._error_message(body, response.status_code))
                        return
                    async for text in response.aiter_text():
                        for event in decoder.feed(text):
                            yield event
                            if event.terminal:
                                return
        except httpx.HTTPError as e:
            yield StreamEvent(error=f"Chat request failed: {e}")


class OllamaChatService(StreamingChatClient):
    """Runs the mail tool loop against Ollama and streams the final answer."""

    def __init__(self, toolbox, config=None, client=None):
        self.config = config or default_config
        self.toolbox = toolbox
        self.client = client or ollama.AsyncClient(host=self.config.ollama_host)

    def _build_messages(self, message: str, history: List[Message]) -> list:
        messages = [{'role': 'system', 'content': self.config.system_prompt}]
        messages.extend(m.model_dump() for m in history)
        messages.append({'role': 'user', 'content': message})
        return messages

    async def _resolve_tools(self, messages: list) -> Optional[str]:
        """Answer tool calls until the model stops asking for them or the cap is hit.

        Returns the model's final answer, or None when it still has to be requested
        (cap exhausted, or the last round came back empty).
        """
        for _ in range(self.config.max_tool_iterations):
            response = await self.client.chat(
                model=self.config.ollama_model,
                messages=messages,
                tools=self.toolbox.tools,
            )
            reply = response['message']
            tool_calls = reply.get('tool_calls') or []
            if not tool_calls:
                return reply.get('content') or None
            messages.append(reply)
            for call in tool_calls:
                name = call['function']['name']
                arguments = call['function'].get('arguments') or {}
                if isinstance(arguments, str):
                    arguments = json.loads(arguments)
                logger.info("Tool call: %s(%s)", name, arguments)
                result = await self.toolbox.execute(name, arguments)
                messages.append({'role': 'tool', 'content': result, 'tool_name': name})
        logger.warning("Tool loop reached %d rounds; forcing a spoken answer",
                       self.config.max_tool_iterations)
        return None

    async def converse(self, message: str, history: List[Message]) -> AsyncGenerator[StreamEvent, None]:
        messages = self._build_messages(message, history)
        parts = []
        try:
            answer = await self._resolve_tools(messages)
            if answer is not None:
                parts.append(answer)
                yield StreamEvent(delta=answer)
            else:
                stream = await self.client.chat(
                    model=self.config.ollama_model,
                    messages=messages,
                    stream=True,
                )
                async for part in stream:
                    content = part['message'].get('content')
                    if content:
                        parts.append(content)
                        yield StreamEvent(delta=content)
        except Exception as e:
            logger.exception("Chat request failed")
            yield StreamEvent(error=str(e) or "Chat request failed")
            return
        yield StreamEvent(done=True, reply=strip_markdown(''.join(parts)))
