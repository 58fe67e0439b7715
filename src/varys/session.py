"""Session lifecycle for one experiment run under a fixed interactor config."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from varys import __version__
from varys.errors import SessionAlreadyOpenError, SessionNotOpenError, SessionStateError
from varys.models import Session
from varys.persistence import PersistenceGateway
from varys.timing import utc_now


class SessionStatus(str, Enum):
    idle = "idle"
    open = "open"
    closed = "closed"


class SessionController:
    """Opens and closes exactly one session.

    The open session is a value owned by the controller and handed to the
    interaction driver explicitly. Persistence errors raised here are fatal to the
    run: without a session row the experiment cannot be tracked.
    """

    def __init__(self, store: PersistenceGateway, *, logger: logging.Logger | None = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger("varys.session")
        self._session: Session | None = None
        self._status = SessionStatus.idle

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def session(self) -> Session:
        """The open session; raises ``SessionNotOpenError`` otherwise."""
        if self._status != SessionStatus.open or self._session is None:
            raise SessionNotOpenError(f"No open session (controller is {self._status.value})")
        return self._session

    def start_session(self, config_id: int, version: str = __version__) -> int:
        if self._status == SessionStatus.open:
            raise SessionAlreadyOpenError(f"Session {self._session.id} is still open")
        if self._status == SessionStatus.closed:
            raise SessionStateError("This controller already ran a session; create a new controller")

        self._session = self._store.create_session(config_id, version, utc_now())
        self._status = SessionStatus.open
        self._logger.info(
            "session_started",
            extra={"session_id": self._session.id, "config_id": config_id, "version": version},
        )
        return self._session.id

    def end_session(self) -> None:
        """Close the session. Calling it again, or before any start, does nothing."""
        if self._status != SessionStatus.open or self._session is None:
            self._logger.debug("session_end_ignored", extra={"status": self._status.value})
            return

        ended = max(utc_now(), self._session.started)
        self._store.close_session(self._session.id, ended)
        self._session.ended = ended
        self._status = SessionStatus.closed
        self._logger.info("session_ended", extra={"session_id": self._session.id})

    @contextmanager
    def scope(self, config_id: int, version: str = __version__) -> Iterator[Session]:
        """Open a session for the ``with`` block and close it on every way out."""
        self.start_session(config_id, version)
        try:
            yield self.session
        finally:
            self.end_session()
