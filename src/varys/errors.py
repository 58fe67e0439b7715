"""Typed failures raised by the testbed and its gateways."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import InteractionOutcome


class VarysError(Exception):
    """Base class for every error raised by the testbed."""


class ConfigPersistenceError(VarysError):
    """Raised when an interactor config cannot be read or written. Fatal to the run."""


class DuplicateConfigError(VarysError):
    """Raised by a persistence gateway when the config tuple already exists."""


class SessionPersistenceError(VarysError):
    """Raised when a session row cannot be written. Fatal to the run."""


class SessionStateError(VarysError):
    """Raised when a session operation does not fit the controller's state."""


class SessionAlreadyOpenError(SessionStateError):
    """Raised when a second session is started on a controller that is still open."""


class SessionNotOpenError(SessionStateError):
    """Raised when an interaction is attempted outside an open session."""


class CaptureStartError(VarysError):
    """Raised when packet capture could not be started or was not ready in time."""


class CaptureStopError(VarysError):
    """Raised when packet capture could not be stopped cleanly."""


class AudioPlaybackError(VarysError):
    """Raised when the query could not be synthesized or played."""


class AudioRecordingError(VarysError):
    """Raised when the microphone could not be opened or read."""


class AudioTimeoutError(VarysError):
    """Raised when no end of speech was detected within the response timeout."""


class TranscriptionError(VarysError):
    """Raised when recorded audio could not be transcribed."""


class PersistenceWriteError(VarysError):
    """Raised when an interaction row could not be written."""


class InteractionAbortedError(VarysError):
    """Raised when the session abort signal is observed during an interaction.

    ``outcome`` carries the finalized interaction when the abort hit after its
    row was created.
    """

    def __init__(self, message: str, outcome: InteractionOutcome | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome
