"""Persistence contract for configs, sessions and interactions."""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from varys.errors import DuplicateConfigError, PersistenceWriteError, SessionPersistenceError
from varys.models import Interaction, InteractorConfig, Session


class PersistenceGateway(Protocol):
    """Durable store matching the fixed ``interactor_config``/``session``/``interaction`` schema."""

    def find_config(self, interface: str, voice: str, sensitivity: str, model: str) -> InteractorConfig | None:
        """Return the config with exactly this tuple, if any."""

    def insert_config(self, interface: str, voice: str, sensitivity: str, model: str) -> InteractorConfig:
        """Insert a new config; raise ``DuplicateConfigError`` if the tuple exists."""

    def get_config(self, config_id: int) -> InteractorConfig | None:
        """Return a config by id."""

    def create_session(self, interactor_config_id: int, version: str, started: datetime) -> Session:
        """Insert an open session row."""

    def close_session(self, session_id: int, ended: datetime) -> None:
        """Set the end time of a session."""

    def get_session(self, session_id: int) -> Session | None:
        """Return a session by id."""

    def list_sessions(self, limit: int) -> list[Session]:
        """Return up to ``limit`` newest sessions."""

    def create_interaction(self, session_id: int, query: str, started: datetime) -> Interaction:
        """Insert an interaction row with response and end time unset."""

    def finish_interaction(self, interaction_id: int, response: str | None, ended: datetime) -> None:
        """Set the response and end time of an interaction."""

    def get_interaction(self, interaction_id: int) -> Interaction | None:
        """Return an interaction by id."""

    def list_interactions(self, session_id: int) -> list[Interaction]:
        """Return all interactions of a session in creation order."""


class InMemoryPersistenceGateway:
    """Thread-safe in-memory store for dry runs and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = {"config": itertools.count(1), "session": itertools.count(1), "interaction": itertools.count(1)}
        self._configs: dict[int, InteractorConfig] = {}
        self._sessions: dict[int, Session] = {}
        self._interactions: dict[int, Interaction] = {}

    def find_config(self, interface: str, voice: str, sensitivity: str, model: str) -> InteractorConfig | None:
        key = (interface, voice, sensitivity, model)
        with self._lock:
            for config in self._configs.values():
                if (config.interface, config.voice, config.sensitivity, config.model) == key:
                    return config
        return None

    def insert_config(self, interface: str, voice: str, sensitivity: str, model: str) -> InteractorConfig:
        key = (interface, voice, sensitivity, model)
        with self._lock:
            if any((c.interface, c.voice, c.sensitivity, c.model) == key for c in self._configs.values()):
                raise DuplicateConfigError(f"Interactor config {key} already exists")
            config = InteractorConfig(next(self._ids["config"]), interface, voice, sensitivity, model)
            self._configs[config.id] = config
        return config

    def get_config(self, config_id: int) -> InteractorConfig | None:
        with self._lock:
            return self._configs.get(config_id)

    def create_session(self, interactor_config_id: int, version: str, started: datetime) -> Session:
        with self._lock:
            if interactor_config_id not in self._configs:
                raise SessionPersistenceError(f"Unknown interactor config id: {interactor_config_id}")
            session = Session(
                id=next(self._ids["session"]),
                version=version,
                interactor_config_id=interactor_config_id,
                started=started,
            )
            self._sessions[session.id] = session
        return replace(session)

    def close_session(self, session_id: int, ended: datetime) -> None:
        with self._lock:
            if session_id not in self._sessions:
                raise SessionPersistenceError(f"Unknown session id: {session_id}")
            self._sessions[session_id].ended = ended

    def get_session(self, session_id: int) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def list_sessions(self, limit: int) -> list[Session]:
        with self._lock:
            newest = sorted(self._sessions.values(), key=lambda session: session.id, reverse=True)
            return [replace(session) for session in newest[:limit]]

    def create_interaction(self, session_id: int, query: str, started: datetime) -> Interaction:
        with self._lock:
            if session_id not in self._sessions:
                raise PersistenceWriteError(f"Unknown session id: {session_id}")
            interaction = Interaction(
                id=next(self._ids["interaction"]),
                session_id=session_id,
                query=query,
                started=started,
            )
            self._interactions[interaction.id] = interaction
        return replace(interaction)

    def finish_interaction(self, interaction_id: int, response: str | None, ended: datetime) -> None:
        with self._lock:
            if interaction_id not in self._interactions:
                raise PersistenceWriteError(f"Unknown interaction id: {interaction_id}")
            stored = self._interactions[interaction_id]
            stored.response = response
            stored.ended = ended

    def get_interaction(self, interaction_id: int) -> Interaction | None:
        with self._lock:
            interaction = self._interactions.get(interaction_id)
            return replace(interaction) if interaction else None

    def list_interactions(self, session_id: int) -> list[Interaction]:
        with self._lock:
            return [replace(i) for i in self._interactions.values() if i.session_id == session_id]
