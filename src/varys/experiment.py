"""One experiment run: resolve the config, open a session, drive every query."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from pathlib import Path

from varys import __version__
from varys.assistant import AssistantProfile
from varys.audio import AudioGateway
from varys.capture import CaptureGateway
from varys.driver import InteractionDriver
from varys.errors import InteractionAbortedError, PersistenceWriteError, VarysError
from varys.models import FailurePolicy, InteractionOutcome, SessionReport
from varys.persistence import PersistenceGateway
from varys.queries import Query
from varys.resolver import ConfigurationResolver
from varys.session import SessionController
from varys.telemetry import Telemetry
from varys.timing import InteractionTimeouts


class ExperimentRunner:
    """Runs a query corpus as one session against one interactor config.

    ``ConfigPersistenceError`` and ``SessionPersistenceError`` propagate: the run
    cannot be tracked without them. Interaction failures are handled by the
    failure policy. Setting ``abort_event`` stops the run at the next suspension
    point; the session is closed on every way out.

    With an ``assistant`` profile every query is addressed with its wake phrase,
    the profile's silence and recording timeout replace ``silence_duration`` and
    ``timeouts.response``, and the device is told to stop after each interaction
    (or reset, after a response that never went quiet).
    """

    def __init__(
        self,
        *,
        store: PersistenceGateway,
        audio: AudioGateway,
        capture: CaptureGateway,
        failure_policy: FailurePolicy = FailurePolicy.continue_session,
        timeouts: InteractionTimeouts | None = None,
        silence_duration: float = 2.0,
        write_retries: int = 3,
        retry_delay_seconds: float = 0.5,
        abort_event: asyncio.Event | None = None,
        assistant: AssistantProfile | None = None,
        audio_dir: Path | None = None,
        telemetry: Sequence[Telemetry] = (),
        version: str = __version__,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._audio = audio
        self._capture = capture
        self._resolver = ConfigurationResolver(store)
        self._failure_policy = failure_policy
        self._timeouts = timeouts or InteractionTimeouts()
        self._silence_duration = silence_duration
        self._write_retries = write_retries
        self._retry_delay_seconds = retry_delay_seconds
        self.abort_event = abort_event or asyncio.Event()
        self._assistant = assistant
        self._audio_dir = audio_dir
        self._telemetry = list(telemetry)
        self._version = version
        self._logger = logger or logging.getLogger("varys.experiment")

        if assistant is not None:
            self._silence_duration = assistant.silence_after_talking
            self._timeouts = dataclasses.replace(self._timeouts, response=assistant.recording_timeout)

    async def run(
        self,
        *,
        interface: str,
        voice: str,
        sensitivity: float,
        model: str,
        queries: Sequence[Query | str],
    ) -> SessionReport:
        texts = [query.text if isinstance(query, Query) else query for query in queries]
        if self._assistant is not None:
            texts = self._assistant.prepare_queries(texts)

        config = await asyncio.to_thread(self._resolver.resolve_config, interface, voice, sensitivity, model)
        driver = InteractionDriver(
            store=self._store,
            audio=self._audio,
            capture=self._capture,
            sensitivity=float(sensitivity),
            silence_duration=self._silence_duration,
            timeouts=self._timeouts,
            write_retries=self._write_retries,
            retry_delay_seconds=self._retry_delay_seconds,
            abort_event=self.abort_event,
            audio_dir=self._audio_dir,
        )
        controller = SessionController(self._store)

        with controller.scope(config.id, self._version) as session:
            report = SessionReport(session=session)
            try:
                await self._drive(driver, report, texts)
            finally:
                await driver.aclose()

        self._logger.info(
            "experiment_finished",
            extra={
                "session_id": report.session.id,
                "completed": report.completed,
                "failed": report.failed,
                "aborted": report.aborted,
            },
        )
        await self._emit("session_finished", {"session_id": report.session.id, "completed": report.completed})
        return report

    async def _drive(self, driver: InteractionDriver, report: SessionReport, texts: Sequence[str]) -> None:
        total = len(texts)
        for index, text in enumerate(texts, start=1):
            if self.abort_event.is_set():
                self._logger.warning("experiment_aborted", extra={"remaining": total - index + 1})
                report.aborted = True
                return

            await self._emit("interaction_started", {"query": text, "index": index, "total": total})
            try:
                outcome = await driver.run(report.session, text)
            except InteractionAbortedError as exc:
                if exc.outcome is not None:
                    report.outcomes.append(exc.outcome)
                self._logger.warning("experiment_aborted", extra={"remaining": total - index})
                report.aborted = True
                return
            except PersistenceWriteError as exc:
                self._logger.error("interaction_not_started", extra={"query": text, "error": str(exc)})
                if self._stop_after_failure():
                    report.aborted = True
                    return
                continue

            report.outcomes.append(outcome)
            self._log_outcome(outcome, index, total)
            try:
                await self._quiet_assistant(driver, outcome)
            except InteractionAbortedError:
                self._logger.warning("experiment_aborted", extra={"remaining": total - index})
                report.aborted = True
                return
            if not outcome.succeeded and self._stop_after_failure():
                report.aborted = True
                return

    async def _quiet_assistant(self, driver: InteractionDriver, outcome: InteractionOutcome) -> None:
        if self._assistant is None:
            return
        if outcome.response_timed_out:
            self._logger.info("assistant_reset", extra={"assistant": self._assistant.name})
            phrases, silence = self._assistant.reset_phrases, self._assistant.silence_after_talking
        else:
            phrases, silence = self._assistant.stop_phrases, self._assistant.silence_between_interactions
        try:
            await driver.settle(phrases, silence_duration=silence)
        except InteractionAbortedError:
            raise
        except VarysError as exc:
            self._logger.warning(
                "assistant_settle_failed",
                extra={"assistant": self._assistant.name, "error_type": type(exc).__name__, "error": str(exc)},
            )

    def _stop_after_failure(self) -> bool:
        return self._failure_policy == FailurePolicy.abort_session

    def _log_outcome(self, outcome: InteractionOutcome, index: int, total: int) -> None:
        self._logger.info(
            "interaction_progress",
            extra={
                "index": index,
                "total": total,
                "state": outcome.state.value,
                "response": outcome.interaction.response,
            },
        )

    async def _emit(self, event_name: str, payload: dict) -> None:
        for sink in self._telemetry:
            await asyncio.to_thread(sink.emit, event_name, payload)
