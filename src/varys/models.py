from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .errors import VarysError
from .timing import utc_now


class InteractionState(str, Enum):
    pending = "pending"
    capturing = "capturing"
    responding = "responding"
    finalizing = "finalizing"
    completed = "completed"
    failed = "failed"


class FailurePolicy(str, Enum):
    """What a session does after an interaction fails."""

    continue_session = "continue"
    abort_session = "abort"


@dataclass(slots=True, frozen=True)
class InteractorConfig:
    """One fixed experimental setup. Unique on (interface, voice, sensitivity, model)."""

    id: int
    interface: str
    voice: str
    sensitivity: str
    model: str


@dataclass(slots=True)
class Session:
    id: int
    version: str
    interactor_config_id: int
    started: datetime = field(default_factory=utc_now)
    ended: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.ended is None


@dataclass(slots=True)
class Interaction:
    id: int
    session_id: int
    query: str
    started: datetime = field(default_factory=utc_now)
    response: str | None = None
    ended: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.ended is not None


@dataclass(slots=True, frozen=True)
class CaptureHandle:
    """Reference to a running packet capture, tagged by the interaction it brackets."""

    tag: str
    path: str
    started: datetime


@dataclass(slots=True, frozen=True)
class CaptureResult:
    tag: str
    path: str
    started: datetime
    stopped: datetime
    packets_captured: int | None = None
    packets_dropped: int | None = None


@dataclass(slots=True)
class InteractionOutcome:
    """Result of one driver run, whether it completed or failed."""

    interaction: Interaction
    state: InteractionState = InteractionState.pending
    error: VarysError | None = None
    capture: CaptureResult | None = None
    persisted: bool = False
    response_audio: str | None = None
    response_timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == InteractionState.completed and self.persisted


@dataclass(slots=True)
class SessionReport:
    session: Session
    outcomes: list[InteractionOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def completed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.completed
