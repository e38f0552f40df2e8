#!/usr/bin/env python3
"""
Core voice loop: session lifecycle, exchange orchestration and barge-in.
"""

import asyncio
import contextlib
import logging
import os
import sys
import time
from typing import Callable, List, Optional

from .audio import AudioLevelMonitor, Microphone
from .config import default_config, Config
from .detection import CaptureController, InterruptDetector, WhisperTranscriber, WAV_MIME_TYPE
from .errors import CaptureError, ChatStreamError, TranscriptionError
from .llm import Conversation, HttpChatClient, Message, OllamaChatService, sentence_stream
from .mail import MailToolbox, NylasMailClient
from .pipeline import CancellationToken, SpeechPipeline
from .state import AppState, Session
from .tts import EdgeTTSSynthesizer, PlaybackController

logger = logging.getLogger(__name__)


class ConversationOrchestrator:
    """Drives one exchange: transcribe, stream the reply, speak it, record history.

    Every recoverable failure ends up on the error channel; the caller then simply
    resumes listening.
    """

    def __init__(self, session: Session, conversation: Conversation, transcriber, chat,
                 synthesizer, player, config=None, mime_type: str = WAV_MIME_TYPE,
                 on_speaking: Optional[Callable[[CancellationToken], None]] = None,
                 on_error: Optional[Callable[[str], None]] = None,
                 on_message: Optional[Callable[[Message], None]] = None):
        self.session = session
        self.conversation = conversation
        self.transcriber = transcriber
        self.chat = chat
        self.synthesizer = synthesizer
        self.player = player
        self.on_speaking = on_speaking
        self.config = config or default_config
        self.mime_type = mime_type
        self.on_error = on_error
        self.on_message = on_message

    def _notify(self, message: Message):
        if self.on_message:
            self.on_message(message)

    async def run_exchange(self, segment: bytes):
        session = self.session
        session.error = None
        session.transition(AppState.PROCESSING)
        token: Optional[CancellationToken] = None
        try:
            text = (await self.transcriber.transcribe(segment, self.mime_type)).strip()
            if not session.active:
                return
            if not text:
                logger.info("Heard nothing intelligible")
                return

            history = self.conversation.history()
            user_message = self.conversation.add_user(text)
            self._notify(user_message)

            token = CancellationToken()
            session.token = token
            pipeline = SpeechPipeline(self.synthesizer, self.player, session, token,
                                      on_speaking=self.on_speaking)
            reply = await self._stream_reply(text, history, pipeline)
            await pipeline.drain()
        except (TranscriptionError, ChatStreamError) as e:
            self._fail(token, str(e))
            return
        except Exception as e:
            logger.exception("Exchange failed")
            self._fail(token, str(e) or "Something went wrong")
            return
        self._settle(token, user_message, reply)

    async def _stream_reply(self, text: str, history: List[Message], pipeline: SpeechPipeline) -> str:
        """Feed the chat stream through the sentence segmenter into the speech pipeline."""
        deltas: List[str] = []
        final: Optional[str] = None

        async def fragments():
            nonlocal final
            async with contextlib.aclosing(self.chat.converse(text, history)) as events:
                async for event in events:
                    if event.error is not None:
                        raise ChatStreamError(event.error)
                    if event.delta:
                        deltas.append(event.delta)
                        yield event.delta
                    if event.done:
                        final = event.reply
                        return

        async for sentence in sentence_stream(fragments(), self.config):
            pipeline.enqueue(sentence)
        return final or ''.join(deltas)

    def _fail(self, token: Optional[CancellationToken], message: str):
        if not self.session.active:
            return
        if token is not None:
            if token.cancelled:
                logger.info("Dropping error from interrupted exchange: %s", message)
                return
            token.cancel()
            self.player.stop()
            if self.session.token is token:
                self.session.token = None
        self.session.error = message
        if self.on_error:
            self.on_error(message)

    def _settle(self, token: CancellationToken, user_message: Message, reply: str):
        session = self.session
        if not session.active:
            return
        if token.cancelled:
            # Interrupted: keep the reply only if no newer exchange has started.
            if reply and self.conversation.ends_with(user_message):
                self._notify(self.conversation.add_assistant(reply))
            return
        if reply:
            self._notify(self.conversation.add_assistant(reply))
        token.cancel()
        if session.token is token:
            session.token = None


class SessionController:
    """Owns the session and every component of the voice loop.

    All components are built here up front and wired with explicit references.
    ``start`` acquires the microphone and begins listening; ``stop`` tears
    everything down and may be called any number of times from any state.
    """

    def __init__(self, transcriber, chat, synthesizer, config=None, microphone=None, player=None,
                 clock: Callable[[], float] = time.monotonic,
                 on_state: Optional[Callable[[AppState], None]] = None,
                 on_error: Optional[Callable[[str], None]] = None,
                 on_message: Optional[Callable[[Message], None]] = None,
                 on_level: Optional[Callable[[float], None]] = None):
        self.config = config or default_config
        self.session = Session()
        if on_state:
            self.session.listeners.append(on_state)
        self.on_error = on_error
        self.conversation = Conversation()
        self.microphone = microphone or Microphone(self.config)
        self.player = player or PlaybackController()
        self.monitor = AudioLevelMonitor(self.microphone, self.config, on_level=on_level)
        self.capture = CaptureController(self.microphone, self.monitor, self.session, self.config, clock)
        self.interrupts = InterruptDetector(self.monitor, self.session, self.barge_in, self.config)
        self.orchestrator = ConversationOrchestrator(
            self.session, self.conversation, transcriber, chat, synthesizer, self.player,
            self.config, mime_type=self.capture.mime_type, on_speaking=self._on_speaking,
            on_error=self._surface, on_message=on_message,
        )
        self.interruptions = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._barge_in = asyncio.Event()
        self._exchanges = set()

    def _surface(self, message: str):
        self.session.error = message
        logger.warning("%s", message)
        if self.on_error:
            self.on_error(message)

    async def start(self):
        if self.session.active:
            return
        try:
            self.microphone.open()
        except CaptureError as e:
            self._surface(str(e))
            raise
        self.session.error = None
        self.session.active = True
        self._loop_task = asyncio.create_task(self._listen_loop())

    async def _listen_loop(self):
        session = self.session
        while session.active:
            segment = await self.capture.record_utterance()
            if segment is None:
                continue
            self._barge_in.clear()
            exchange = asyncio.create_task(self.orchestrator.run_exchange(segment))
            self._exchanges.add(exchange)
            exchange.add_done_callback(self._exchanges.discard)
            interrupted = asyncio.create_task(self._barge_in.wait())
            try:
                # A barge-in hands the floor back at once; the interrupted exchange
                # keeps settling in the background.
                await asyncio.wait({exchange, interrupted}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                interrupted.cancel()

    def _on_speaking(self, token: CancellationToken):
        if not self.session.is_live(token):
            return
        self.session.transition(AppState.SPEAKING)
        self.interrupts.arm(token)

    def barge_in(self) -> bool:
        """Cut off the reply being spoken and go straight back to capturing."""
        session = self.session
        token = session.token
        if not session.is_live(token) or session.state is not AppState.SPEAKING:
            return False
        logger.info("User interrupted playback")
        token.cancel()
        session.token = None
        self.player.stop()
        self.capture.stop_recorder()
        session.transition(AppState.LISTENING)
        self.interruptions += 1
        self._barge_in.set()
        return True

    def stop(self):
        session = self.session
        session.active = False
        loop_task, self._loop_task = self._loop_task, None
        if loop_task is not None and not loop_task.done():
            loop_task.cancel()
        for exchange in list(self._exchanges):
            exchange.cancel()
        self.interrupts.cancel()
        if session.token is not None:
            session.token.cancel()
            session.token = None
        self.player.stop()
        self.capture.stop_recorder()
        self.microphone.close()
        self.monitor.reset()
        session.transition(AppState.IDLE)

    async def run(self):
        """Run until stopped (or until the task running this is cancelled)."""
        try:
            await self.start()
        except CaptureError:
            return
        try:
            await asyncio.wait([self._loop_task])
        finally:
            self.stop()


def create_chat_client(config: Config):
    if config.chat_backend == 'http':
        return HttpChatClient(config.chat_url, timeout=config.chat_timeout_sec)
    return OllamaChatService(MailToolbox(NylasMailClient(config), config), config)


STATUS_LINES = {
    AppState.IDLE: "⏹️  Stopped.",
    AppState.LISTENING: "🎤 Listening…",
    AppState.RECORDING: "🔴 Recording… (pause to send)",
    AppState.PROCESSING: "🤔 Thinking…",
    AppState.SPEAKING: "🔊 Speaking… (talk to interrupt)",
}


def _print_state(state: AppState):
    print(STATUS_LINES[state], flush=True)


def _print_message(message: Message):
    speaker = "You" if message.role == "user" else "Assistant"
    print(f"{speaker}: {message.content}", flush=True)


def _print_error(message: str):
    print(f"⚠️  {message}", file=sys.stderr, flush=True)


async def main(config: Optional[Config] = None):
    """Main entry point for running the assistant."""
    logging.basicConfig(
        level=logging.DEBUG if os.getenv("VOICE_DEBUG") else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    config = config or Config.from_env()
    print("Booting voice mail assistant…")
    controller = SessionController(
        transcriber=WhisperTranscriber(config),
        chat=create_chat_client(config),
        synthesizer=EdgeTTSSynthesizer(config),
        config=config,
        on_state=_print_state,
        on_error=_print_error,
        on_message=_print_message,
    )
    await controller.run()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting…")
