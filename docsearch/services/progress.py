"""
Upload Progress Sessions
A per-upload state machine whose transitions are pushed to subscribers
(the /progress/{id} event stream).
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import structlog

from docsearch.config import get_settings

logger = structlog.get_logger()


class ProgressStep(str, Enum):
    STARTING = "starting"
    VALIDATING = "validating"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    INDEXING = "indexing"
    SAVING = "saving"
    COMPLETED = "completed"
    ERROR = "error"


STEP_ORDER = [
    ProgressStep.STARTING,
    ProgressStep.VALIDATING,
    ProgressStep.PROCESSING,
    ProgressStep.EXTRACTING,
    ProgressStep.INDEXING,
    ProgressStep.SAVING,
    ProgressStep.COMPLETED,
]
TERMINAL_STEPS = {ProgressStep.COMPLETED, ProgressStep.ERROR}

STEP_PERCENT = {
    ProgressStep.STARTING: 0,
    ProgressStep.VALIDATING: 5,
    ProgressStep.PROCESSING: 10,
    ProgressStep.EXTRACTING: 20,
    ProgressStep.INDEXING: 70,
    ProgressStep.SAVING: 90,
    ProgressStep.COMPLETED: 100,
    ProgressStep.ERROR: 100,
}


class InvalidTransitionError(ValueError):
    """Raised when a session is moved backwards or out of a terminal state."""


@dataclass
class ProgressEvent:
    session_id: str
    step: ProgressStep
    message: str
    progress: int
    timestamp: str
    data: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "progress",
            "id": self.session_id,
            "step": self.step.value,
            "message": self.message,
            "progress": self.progress,
            "timestamp": self.timestamp,
            "data": self.data,
        }


@dataclass
class ProgressSession:
    """
    Forward-only state machine for one upload.

    Steps only move forward along STEP_ORDER (skipping is allowed, e.g.
    validating -> completed for a duplicate); ERROR is reachable from any
    non-terminal step; COMPLETED and ERROR are absorbing.
    """
    session_id: str
    created_at: float = field(default_factory=time.monotonic)
    step: ProgressStep = ProgressStep.STARTING
    last_event: Optional[ProgressEvent] = None
    _subscribers: List[asyncio.Queue] = field(default_factory=list, init=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def advance(self, step: ProgressStep, message: str, data: Optional[Dict[str, Any]] = None) -> ProgressEvent:
        if self.is_terminal:
            raise InvalidTransitionError(f"session {self.session_id} already ended in '{self.step.value}'")
        if step is not ProgressStep.ERROR and STEP_ORDER.index(step) < STEP_ORDER.index(self.step):
            raise InvalidTransitionError(f"cannot move from '{self.step.value}' back to '{step.value}'")

        self.step = step
        event = ProgressEvent(
            session_id=self.session_id,
            step=step,
            message=message,
            progress=STEP_PERCENT[step],
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data,
        )
        self.last_event = event
        for queue in self._subscribers:
            queue.put_nowait(event)
        return event

    def fail(self, message: str) -> Optional[ProgressEvent]:
        """Move to ERROR unless the session has already ended."""
        if self.is_terminal:
            return None
        return self.advance(ProgressStep.ERROR, message)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        if self.last_event is not None:
            queue.put_nowait(self.last_event)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def events(self, idle_timeout: Optional[float] = None) -> AsyncIterator[ProgressEvent]:
        """Yield events until a terminal one, or until nothing arrives for idle_timeout seconds."""
        queue = self.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=idle_timeout)
                except asyncio.TimeoutError:
                    logger.info("Progress stream idle, closing", session_id=self.session_id)
                    return
                yield event
                if event.is_terminal:
                    return
        finally:
            self.unsubscribe(queue)


class ProgressRegistry:
    """Owns live progress sessions and bounds their lifetime."""

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, ProgressSession] = {}

    def open(self, session_id: str) -> ProgressSession:
        """Get the session for an id, creating it if needed."""
        self._purge_expired()
        session = self._sessions.get(session_id)
        if session is None:
            session = ProgressSession(session_id=session_id, created_at=self._clock())
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ProgressSession]:
        return self._sessions.get(session_id)

    def release(self, session_id: str) -> bool:
        """Tear a session down once it is terminal and nobody is listening."""
        session = self._sessions.get(session_id)
        if session is None:
            return True
        if session.is_terminal and session.subscriber_count == 0:
            del self._sessions[session_id]
            return True
        return False

    def __len__(self) -> int:
        return len(self._sessions)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.created_at > self.ttl_seconds
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.debug("Expired progress sessions removed", count=len(expired))


# Singleton instance
_progress_registry: Optional[ProgressRegistry] = None


def get_progress_registry() -> ProgressRegistry:
    """Get singleton progress registry."""
    global _progress_registry
    if _progress_registry is None:
        _progress_registry = ProgressRegistry(get_settings().progress_session_ttl_seconds)
    return _progress_registry
