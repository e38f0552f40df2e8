"""
Session state shared by the voice loop components.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .pipeline import CancellationToken

logger = logging.getLogger(__name__)


class AppState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RECORDING = "recording"
    PROCESSING = "processing"
    SPEAKING = "speaking"


@dataclass
class Session:
    """State of the single active voice session.

    ``active`` is the hard cancellation signal: every asynchronous continuation
    checks it before producing an observable effect. ``token`` belongs to the
    exchange that is currently live, if any.
    """
    active: bool = False
    state: AppState = AppState.IDLE
    token: Optional[CancellationToken] = None
    error: Optional[str] = None
    listeners: List[Callable[[AppState], None]] = field(default_factory=list)

    def transition(self, state: AppState):
        if state is self.state:
            return
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        for listener in list(self.listeners):
            listener(state)

    def is_live(self, token: Optional[CancellationToken]) -> bool:
        return self.active and token is not None and not token.cancelled
