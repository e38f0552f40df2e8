#!/usr/bin/env python3
"""
Sentence-level speech pipeline.

Every completed sentence gets its synthesis request fired immediately, while
playback is chained strictly in sentence order: sentence N+1 starts playing only
after sentence N has finished, so synthesis of later sentences overlaps playback
of earlier ones.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """One per exchange. Once cancelled it stays cancelled and is never reused."""

    def __init__(self):
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]):
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)


@dataclass
class SentenceJob:
    text: str
    synthesis: "asyncio.Task[bytes]"
    aborted: bool = False

    def abort(self):
        self.aborted = True
        if not self.synthesis.done():
            self.synthesis.cancel()
        elif not self.synthesis.cancelled():
            # Mark a failure we will never await as retrieved.
            self.synthesis.exception()


async def _settled(task: Optional[asyncio.Future]):
    """Wait for ``task`` without propagating its outcome."""
    if task is not None:
        await asyncio.wait([task])


class SpeechPipeline:
    """Synthesizes one exchange's sentences concurrently and plays them back in order.

    A pipeline is bound to its exchange's token; once the token is cancelled no
    sentence of this pipeline reaches the speaker. ``on_speaking`` is called with
    the token right before each audible segment starts.
    """

    def __init__(self, synthesizer, player, session, token: CancellationToken,
                 on_speaking: Optional[Callable[[CancellationToken], None]] = None):
        self.synthesizer = synthesizer
        self.player = player
        self.session = session
        self.token = token
        self.on_speaking = on_speaking
        self._tail: Optional[asyncio.Task] = None
        self.jobs: List[SentenceJob] = []

    def enqueue(self, sentence: str) -> Optional[SentenceJob]:
        token = self.token
        text = sentence.strip()
        if not text or not self.session.is_live(token):
            return None
        job = SentenceJob(text, asyncio.create_task(self.synthesizer.synthesize(text)))
        token.add_callback(job.abort)
        self.jobs.append(job)
        self._tail = asyncio.create_task(self._play_after(self._tail, job, token))
        return job

    async def _play_after(self, previous, job: SentenceJob, token):
        await _settled(previous)
        if not self.session.is_live(token):
            job.abort()
            return
        await _settled(job.synthesis)
        if job.synthesis.cancelled() or not self.session.is_live(token):
            job.abort()
            return
        error = job.synthesis.exception()
        if error is not None:
            logger.warning("Skipping sentence, synthesis failed: %s", error)
            return
        audio = job.synthesis.result()
        if not audio:
            return
        if self.on_speaking:
            self.on_speaking(token)
        if not self.session.is_live(token):
            return
        try:
            await self.player.play(audio)
        except Exception as e:
            # Treated as the end of this segment; the chain moves on.
            logger.warning("Skipping sentence, playback failed: %s", e)

    async def drain(self):
        """Wait until every queued sentence has played, been skipped, or been cancelled."""
        await _settled(self._tail)
