"""Clock helpers and step timeouts shared by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class InteractionTimeouts:
    """Upper bounds, in seconds, for every suspension point of one interaction."""

    capture_ready: float = 0.3
    playback: float = 30.0
    response: float = 60.0
    transcription: float = 120.0
    capture_stop: float = 10.0
    release: float = 2.0

    @property
    def recording(self) -> float:
        """Budget for the recording step: the gateway's own timeout plus a small grace period."""
        return self.response + 2.0
