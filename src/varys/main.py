"""CLI startup entrypoint for the varys testbed."""

from __future__ import annotations

import asyncio
import signal
from dataclasses import asdict
from pathlib import Path

import typer
from rich import print

from varys.assistant import get_profile
from varys.capture import TcpdumpCaptureGateway
from varys.config import settings
from varys.errors import ConfigPersistenceError, SessionPersistenceError, VarysError
from varys.experiment import ExperimentRunner
from varys.models import FailurePolicy
from varys.persistence import SqlPersistenceGateway
from varys.queries import load_queries
from varys.resolver import ConfigurationResolver
from varys.telemetry import LoggingTelemetry, MonitoringTelemetry, configure_logging

app = typer.Typer(help="Smart speaker interaction testbed")

DATABASE_URL_HELP = "SQLAlchemy URL; defaults to VARYS_DATABASE_URL"


@app.callback()
def main(log_level: str = typer.Option(None, help="Log level; defaults to VARYS_LOG_LEVEL")) -> None:
    configure_logging(log_level or settings.log_level)


def _build_store(database_url: str | None) -> SqlPersistenceGateway:
    url = database_url or settings.database_url
    return SqlPersistenceGateway.from_url(url, create_schema=url.startswith("sqlite"))


def _build_audio(voice: str, model: str):
    try:
        from varys.audio import build_local_audio_gateway

        return build_local_audio_gateway(voice=voice, model=model)
    except RuntimeError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)


def _build_capture(interface: str) -> TcpdumpCaptureGateway:
    return TcpdumpCaptureGateway(
        interface,
        settings.capture_dir,
        bpf_filter=settings.capture_filter,
        compress=settings.compress_captures,
        ready_timeout_seconds=settings.capture_ready_timeout_seconds,
        stop_timeout_seconds=settings.capture_stop_timeout_seconds,
    )


def _install_abort_handlers(abort_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, abort_event.set)
        except (NotImplementedError, RuntimeError):
            # no loop signal support on this platform; Ctrl+C still cancels the run
            pass


@app.command("show-config")
def show_config() -> None:
    """Show runtime configuration."""
    print(
        {
            "app_name": settings.app_name,
            "database_url": settings.database_url,
            "capture_dir": str(settings.capture_dir),
            "interface": settings.interface,
            "voice": settings.voice,
            "sensitivity": settings.sensitivity,
            "model": settings.model,
            "failure_policy": settings.failure_policy.value,
            "assistant": settings.assistant,
            "sessions_dir": str(settings.sessions_dir),
            "timeouts": asdict(settings.timeouts()),
        }
    )


@app.command()
def calibrate(
    window_seconds: float = typer.Option(5.0, help="How long to sample ambient noise"),
    model: str = typer.Option(None, help="Speech-to-text model; defaults to VARYS_MODEL"),
) -> None:
    """Measure ambient noise and suggest a sensitivity."""
    audio = _build_audio(settings.voice, model or settings.model)
    try:
        level = audio.calibrate(window_seconds)
    except VarysError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)
    print({"sensitivity": round(level, 6), "window_seconds": window_seconds})


@app.command("resolve-config")
def resolve_config(
    interface: str = typer.Option(None, help="Capture interface; defaults to VARYS_INTERFACE"),
    voice: str = typer.Option(None, help="TTS voice; defaults to VARYS_VOICE"),
    sensitivity: float = typer.Option(None, help="Silence threshold; defaults to VARYS_SENSITIVITY"),
    model: str = typer.Option(None, help="Speech-to-text model; defaults to VARYS_MODEL"),
    database_url: str = typer.Option(None, help=DATABASE_URL_HELP),
) -> None:
    """Get or create the interactor config id for a parameter tuple."""
    resolver = ConfigurationResolver(_build_store(database_url))
    try:
        config = resolver.resolve_config(
            interface or settings.interface,
            voice if voice is not None else settings.voice,
            sensitivity if sensitivity is not None else settings.sensitivity,
            model or settings.model,
        )
    except ConfigPersistenceError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)
    print({"interactor_config": asdict(config)})


@app.command()
def run(
    queries_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="TOML or text file of queries"),
    interface: str = typer.Option(None, help="Capture interface; defaults to VARYS_INTERFACE"),
    voice: str = typer.Option(None, help="TTS voice; defaults to VARYS_VOICE"),
    sensitivity: float = typer.Option(None, help="Silence threshold; defaults to VARYS_SENSITIVITY"),
    model: str = typer.Option(None, help="Speech-to-text model; defaults to VARYS_MODEL"),
    limit: int = typer.Option(None, min=1, help="Only run the first N queries"),
    shuffle: bool = typer.Option(None, help="Shuffle queries; defaults to VARYS_SHUFFLE_QUERIES"),
    failure_policy: FailurePolicy = typer.Option(None, help="continue or abort after a failed interaction"),
    assistant: str = typer.Option(None, help="siri, alexa or none; defaults to VARYS_ASSISTANT"),
    database_url: str = typer.Option(None, help=DATABASE_URL_HELP),
) -> None:
    """Run every query in QUERIES_FILE as one session."""
    try:
        profile = get_profile(assistant or settings.assistant)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--assistant") from exc
    try:
        queries = load_queries(queries_file, shuffle=settings.shuffle_queries if shuffle is None else shuffle)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if limit is not None:
        queries = queries[:limit]
    if not queries:
        print({"error": f"No queries in {queries_file}"})
        raise typer.Exit(code=1)

    interface = interface or settings.interface
    voice = voice if voice is not None else settings.voice
    model = model or settings.model
    store = _build_store(database_url)
    audio = _build_audio(voice, model)

    telemetry = [LoggingTelemetry()]
    if settings.monitoring_url:
        telemetry.append(MonitoringTelemetry(settings.monitoring_url))

    runner = ExperimentRunner(
        store=store,
        audio=audio,
        capture=_build_capture(interface),
        failure_policy=failure_policy or settings.failure_policy,
        timeouts=settings.timeouts(),
        silence_duration=settings.silence_duration_seconds,
        write_retries=settings.write_retries,
        retry_delay_seconds=settings.retry_delay_seconds,
        assistant=profile,
        audio_dir=settings.sessions_dir if settings.save_response_audio else None,
        telemetry=telemetry,
    )

    async def _run():
        _install_abort_handlers(runner.abort_event)
        return await runner.run(
            interface=interface,
            voice=voice,
            sensitivity=sensitivity if sensitivity is not None else settings.sensitivity,
            model=model,
            queries=queries,
        )

    try:
        report = asyncio.run(_run())
    except (ConfigPersistenceError, SessionPersistenceError) as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)

    print(
        {
            "session_id": report.session.id,
            "completed": report.completed,
            "failed": report.failed,
            "aborted": report.aborted,
        }
    )
    if report.aborted:
        raise typer.Exit(code=130)


@app.command()
def sessions(
    limit: int = typer.Option(20, min=1, help="How many recent sessions to list"),
    database_url: str = typer.Option(None, help=DATABASE_URL_HELP),
) -> None:
    """List recent sessions with their interaction counts."""
    store = _build_store(database_url)
    rows = []
    for session in store.list_sessions(limit):
        interactions = store.list_interactions(session.id)
        rows.append(
            {
                **asdict(session),
                "interactions": len(interactions),
                "answered": sum(1 for interaction in interactions if interaction.response is not None),
            }
        )
    print({"sessions": rows})


@app.command()
def interactions(
    session_id: int = typer.Argument(..., help="Session id"),
    database_url: str = typer.Option(None, help=DATABASE_URL_HELP),
) -> None:
    """Show the interactions recorded in one session."""
    store = _build_store(database_url)
    if store.get_session(session_id) is None:
        print({"error": f"Session {session_id} does not exist"})
        raise typer.Exit(code=1)
    print({"interactions": [asdict(interaction) for interaction in store.list_interactions(session_id)]})


if __name__ == "__main__":
    app()
