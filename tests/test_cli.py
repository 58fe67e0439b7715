from __future__ import annotations

import importlib
from pathlib import Path

import pytest

typer_testing = pytest.importorskip("typer.testing")

from varys.main import app  # noqa: E402
from varys.persistence import SqlPersistenceGateway  # noqa: E402
from varys.timing import utc_now  # noqa: E402

runner = typer_testing.CliRunner()


def test_console_entrypoint_exposes_app() -> None:
    module = importlib.import_module("varys.main")

    assert module.app is not None


def test_show_config() -> None:
    result = runner.invoke(app, ["show-config"])

    assert result.exit_code == 0
    assert "database_url" in result.stdout
    assert "capture_ready" in result.stdout
    assert "assistant" in result.stdout


def test_resolve_config_is_stable(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'varys.db'}"
    args = ["resolve-config", "--interface", "wifi0", "--voice", "female-1", "--sensitivity", "0.42"]

    first = runner.invoke(app, [*args, "--database-url", url])
    second = runner.invoke(app, [*args, "--database-url", url])

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert "'id': 1" in first.stdout
    assert "'id': 1" in second.stdout
    assert "'sensitivity': '0.42'" in second.stdout


def test_sessions_and_interactions(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'varys.db'}"
    store = SqlPersistenceGateway.from_url(url, create_schema=True)
    config = store.insert_config("wifi0", "female-1", "0.42", "whisper-base")
    session = store.create_session(config.id, "0.1.0", utc_now())
    interaction = store.create_interaction(session.id, "what's the weather", utc_now())
    store.finish_interaction(interaction.id, "it's sunny", utc_now())

    listed = runner.invoke(app, ["sessions", "--database-url", url])
    shown = runner.invoke(app, ["interactions", str(session.id), "--database-url", url])
    missing = runner.invoke(app, ["interactions", "99", "--database-url", url])

    assert listed.exit_code == 0
    assert "'interactions': 1" in listed.stdout
    assert "'answered': 1" in listed.stdout
    assert shown.exit_code == 0
    assert "it's sunny" in shown.stdout
    assert missing.exit_code == 1


def test_run_rejects_empty_queries_file(tmp_path: Path) -> None:
    queries = tmp_path / "queries.txt"
    queries.write_text("# nothing yet\n", encoding="utf-8")

    result = runner.invoke(app, ["run", str(queries), "--database-url", f"sqlite:///{tmp_path / 'varys.db'}"])

    assert result.exit_code == 1
    assert "No queries" in result.stdout


def test_run_rejects_unknown_assistant(tmp_path: Path) -> None:
    queries = tmp_path / "queries.txt"
    queries.write_text("what's the weather\n", encoding="utf-8")

    result = runner.invoke(app, ["run", str(queries), "--assistant", "cortana"])

    assert result.exit_code == 2
    assert "Unknown assistant" in result.output
