"""Domain events for the merge pipeline.

Events flow through the EventBus, decoupling the orchestrator and the ffmpeg
runner from whatever delivers progress to clients (websocket hub, CLI bar).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel

from .models import MergeState, ProgressSnapshot


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class SessionEvent(Event):
    """Base class for events about one session's merge.

    `subscriber_id` is the push-channel key supplied by the caller; events with
    no subscriber are still published (for logging/CLI) but never pushed.
    """

    session_id: str
    subscriber_id: Optional[str] = None


class MergeStageChanged(SessionEvent):
    """Emitted on every state machine transition."""

    state: MergeState
    message: str = ""


class MergeProgressUpdated(SessionEvent):
    """Emitted by the ffmpeg runner as diagnostic output arrives."""

    stage: str
    message: str
    snapshot: ProgressSnapshot

    def payload(self) -> dict:
        return {
            "percent": round(self.snapshot.percent, 1),
            "stage": self.stage,
            "message": self.message,
            "eta": self.snapshot.eta,
        }


class DurationMismatch(SessionEvent):
    """Output duration differs from the sum of clip durations beyond tolerance."""

    expected: float
    actual: float


class MergeCompleted(SessionEvent):
    output_path: Path
    duration_seconds: float
    size_bytes: int


class MergeFailed(SessionEvent):
    error_message: str


class FilesCleanedUp(Event):
    """Emitted after a cleanup pass removed at least one file."""

    session_id: Optional[str] = None
    removed: int
