from __future__ import annotations

from datetime import timedelta

import pytest

from varys.errors import DuplicateConfigError, PersistenceWriteError, SessionPersistenceError
from varys.persistence import SqlPersistenceGateway
from varys.timing import utc_now


def _gateway() -> SqlPersistenceGateway:
    return SqlPersistenceGateway.from_url("sqlite://", create_schema=True)


def test_config_tuple_is_unique() -> None:
    gateway = _gateway()
    created = gateway.insert_config("wifi0", "female-1", "0.42", "whisper-base")

    with pytest.raises(DuplicateConfigError):
        gateway.insert_config("wifi0", "female-1", "0.42", "whisper-base")

    assert gateway.find_config("wifi0", "female-1", "0.42", "whisper-base") == created
    assert gateway.find_config("wifi0", "female-1", "0.5", "whisper-base") is None
    assert gateway.get_config(created.id) == created


def test_session_and_interaction_lifecycle() -> None:
    gateway = _gateway()
    config = gateway.insert_config("wifi0", "female-1", "0.42", "whisper-base")
    started = utc_now()

    session = gateway.create_session(config.id, "0.1.0", started)
    interaction = gateway.create_interaction(session.id, "what's the weather", started)
    assert gateway.get_interaction(interaction.id).ended is None

    ended = started + timedelta(seconds=3)
    gateway.finish_interaction(interaction.id, "it's sunny", ended)
    gateway.close_session(session.id, ended)

    stored = gateway.get_interaction(interaction.id)
    assert stored.response == "it's sunny"
    assert stored.started == started
    assert stored.ended == ended
    assert gateway.get_session(session.id).ended == ended
    assert [row.id for row in gateway.list_interactions(session.id)] == [interaction.id]


def test_list_sessions_newest_first() -> None:
    gateway = _gateway()
    config = gateway.insert_config("wifi0", "female-1", "0.42", "whisper-base")
    ids = [gateway.create_session(config.id, "0.1.0", utc_now()).id for _ in range(3)]

    assert [session.id for session in gateway.list_sessions(2)] == ids[::-1][:2]


def test_null_response_is_stored() -> None:
    gateway = _gateway()
    config = gateway.insert_config("wifi0", "female-1", "0.42", "whisper-base")
    session = gateway.create_session(config.id, "0.1.0", utc_now())
    interaction = gateway.create_interaction(session.id, "hello", utc_now())

    gateway.finish_interaction(interaction.id, None, utc_now())

    assert gateway.get_interaction(interaction.id).response is None


def test_updates_of_missing_rows_are_typed_errors() -> None:
    gateway = _gateway()

    with pytest.raises(SessionPersistenceError):
        gateway.close_session(404, utc_now())
    with pytest.raises(PersistenceWriteError):
        gateway.finish_interaction(404, None, utc_now())


def test_database_failure_is_wrapped() -> None:
    gateway = SqlPersistenceGateway.from_url("sqlite://")

    with pytest.raises(PersistenceWriteError):
        gateway.create_interaction(1, "hello", utc_now())
