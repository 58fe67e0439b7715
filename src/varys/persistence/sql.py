"""SQLAlchemy-backed persistence for the interaction database.

The table definitions mirror the fixed schema; ``create_schema`` only exists
for local SQLite files and tests; production databases are migrated
elsewhere.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from varys.errors import (
    ConfigPersistenceError,
    DuplicateConfigError,
    PersistenceWriteError,
    SessionPersistenceError,
    VarysError,
)
from varys.models import Interaction, InteractorConfig, Session

logger = logging.getLogger("varys.persistence.sql")

T = TypeVar("T")

metadata = MetaData()

interactor_config_table = Table(
    "interactor_config",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("interface", Text, nullable=False),
    Column("voice", Text, nullable=False),
    Column("sensitivity", Text, nullable=False),
    Column("model", Text, nullable=False),
    UniqueConstraint("interface", "voice", "sensitivity", "model"),
)

session_table = Table(
    "session",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("version", Text, nullable=False),
    Column("interactor_config_id", Integer, ForeignKey("interactor_config.id"), nullable=False),
    Column("started", DateTime(timezone=True), nullable=False),
    Column("ended", DateTime(timezone=True)),
)

interaction_table = Table(
    "interaction",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", Integer, ForeignKey("session.id"), nullable=False),
    Column("query", Text, nullable=False),
    Column("response", Text),
    Column("started", DateTime(timezone=True), nullable=False),
    Column("ended", DateTime(timezone=True)),
)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _config(row: RowMapping) -> InteractorConfig:
    return InteractorConfig(
        id=row["id"],
        interface=row["interface"],
        voice=row["voice"],
        sensitivity=row["sensitivity"],
        model=row["model"],
    )


def _session(row: RowMapping) -> Session:
    return Session(
        id=row["id"],
        version=row["version"],
        interactor_config_id=row["interactor_config_id"],
        started=_aware(row["started"]),
        ended=_aware(row["ended"]),
    )


def _interaction(row: RowMapping) -> Interaction:
    return Interaction(
        id=row["id"],
        session_id=row["session_id"],
        query=row["query"],
        response=row["response"],
        started=_aware(row["started"]),
        ended=_aware(row["ended"]),
    )


class SqlPersistenceGateway:
    """Persistence gateway on top of a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def from_url(cls, url: str, *, create_schema: bool = False) -> SqlPersistenceGateway:
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, so worker threads see the same in-memory database
            kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
        gateway = cls(create_engine(url, **kwargs))
        logger.info("database_engine_initialized", extra={"dialect": gateway.engine.dialect.name})
        if create_schema:
            gateway.create_schema()
        return gateway

    def create_schema(self) -> None:
        self._run(lambda: metadata.create_all(self.engine), ConfigPersistenceError, "create schema")

    def find_config(self, interface: str, voice: str, sensitivity: str, model: str) -> InteractorConfig | None:
        table = interactor_config_table
        statement = select(table).where(
            table.c.interface == interface,
            table.c.voice == voice,
            table.c.sensitivity == sensitivity,
            table.c.model == model,
        )
        row = self._fetch_one(statement, ConfigPersistenceError, "find interactor config")
        return _config(row) if row else None

    def insert_config(self, interface: str, voice: str, sensitivity: str, model: str) -> InteractorConfig:
        values = {"interface": interface, "voice": voice, "sensitivity": sensitivity, "model": model}

        def _insert() -> InteractorConfig:
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(insert(interactor_config_table).values(**values))
            except IntegrityError as exc:
                raise DuplicateConfigError(f"Interactor config {tuple(values.values())} already exists") from exc
            return InteractorConfig(id=result.inserted_primary_key[0], **values)

        return self._run(_insert, ConfigPersistenceError, "insert interactor config")

    def get_config(self, config_id: int) -> InteractorConfig | None:
        statement = select(interactor_config_table).where(interactor_config_table.c.id == config_id)
        row = self._fetch_one(statement, ConfigPersistenceError, "get interactor config")
        return _config(row) if row else None

    def create_session(self, interactor_config_id: int, version: str, started: datetime) -> Session:
        values = {"version": version, "interactor_config_id": interactor_config_id, "started": started}
        session_id = self._insert(session_table, values, SessionPersistenceError, "create session")
        return Session(id=session_id, **values)

    def close_session(self, session_id: int, ended: datetime) -> None:
        statement = update(session_table).where(session_table.c.id == session_id).values(ended=ended)
        self._update(statement, SessionPersistenceError, f"close session {session_id}")

    def get_session(self, session_id: int) -> Session | None:
        statement = select(session_table).where(session_table.c.id == session_id)
        row = self._fetch_one(statement, SessionPersistenceError, "get session")
        return _session(row) if row else None

    def list_sessions(self, limit: int) -> list[Session]:
        statement = select(session_table).order_by(session_table.c.id.desc()).limit(limit)
        return [_session(row) for row in self._fetch_all(statement, SessionPersistenceError, "list sessions")]

    def create_interaction(self, session_id: int, query: str, started: datetime) -> Interaction:
        values = {"session_id": session_id, "query": query, "started": started}
        interaction_id = self._insert(interaction_table, values, PersistenceWriteError, "create interaction")
        return Interaction(id=interaction_id, **values)

    def finish_interaction(self, interaction_id: int, response: str | None, ended: datetime) -> None:
        statement = (
            update(interaction_table)
            .where(interaction_table.c.id == interaction_id)
            .values(response=response, ended=ended)
        )
        self._update(statement, PersistenceWriteError, f"finish interaction {interaction_id}")

    def get_interaction(self, interaction_id: int) -> Interaction | None:
        statement = select(interaction_table).where(interaction_table.c.id == interaction_id)
        row = self._fetch_one(statement, PersistenceWriteError, "get interaction")
        return _interaction(row) if row else None

    def list_interactions(self, session_id: int) -> list[Interaction]:
        statement = (
            select(interaction_table)
            .where(interaction_table.c.session_id == session_id)
            .order_by(interaction_table.c.id)
        )
        return [_interaction(row) for row in self._fetch_all(statement, PersistenceWriteError, "list interactions")]

    def _insert(self, table: Table, values: dict[str, Any], error: type[VarysError], action: str) -> int:
        def _execute() -> int:
            with self.engine.begin() as conn:
                return conn.execute(insert(table).values(**values)).inserted_primary_key[0]

        return self._run(_execute, error, action)

    def _update(self, statement, error: type[VarysError], action: str) -> None:
        def _execute() -> None:
            with self.engine.begin() as conn:
                if conn.execute(statement).rowcount == 0:
                    raise error(f"Cannot {action}: row does not exist")

        self._run(_execute, error, action)

    def _fetch_one(self, statement, error: type[VarysError], action: str) -> RowMapping | None:
        def _execute() -> RowMapping | None:
            with self.engine.connect() as conn:
                return conn.execute(statement).mappings().first()

        return self._run(_execute, error, action)

    def _fetch_all(self, statement, error: type[VarysError], action: str) -> list[RowMapping]:
        def _execute() -> list[RowMapping]:
            with self.engine.connect() as conn:
                return list(conn.execute(statement).mappings().all())

        return self._run(_execute, error, action)

    @staticmethod
    def _run(operation: Callable[[], T], error: type[VarysError], action: str) -> T:
        logger.debug("sql_operation", extra={"action": action})
        try:
            return operation()
        except SQLAlchemyError as exc:
            raise error(f"Database failed to {action}: {exc}") from exc
