"""The interaction driver: one query/response cycle bracketed by packet capture.

States, in order: pending, capturing, responding, finalizing, then completed
or failed. The pending row is written before anything physical happens, the
capture is ready before the query is spoken, the capture stops only after the
response recording ended, and the terminal row is written last.

Every blocking gateway call runs in a worker thread and is awaited with an
explicit timeout. Abortable steps also return early when the session's abort
event is set; a recording cut short that way is signalled to stop and joined
before the capture is stopped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

from varys.audio import AudioBuffer, AudioGateway, PlaybackHandle
from varys.capture import CaptureGateway, capture_tag
from varys.errors import (
    AudioPlaybackError,
    AudioRecordingError,
    AudioTimeoutError,
    CaptureStartError,
    CaptureStopError,
    InteractionAbortedError,
    PersistenceWriteError,
    SessionNotOpenError,
    TranscriptionError,
    VarysError,
)
from varys.models import CaptureHandle, Interaction, InteractionOutcome, InteractionState, Session
from varys.persistence import PersistenceGateway
from varys.timing import InteractionTimeouts, utc_now

T = TypeVar("T")


class InteractionDriver:
    """Runs interactions one at a time against a single device."""

    def __init__(
        self,
        *,
        store: PersistenceGateway,
        audio: AudioGateway,
        capture: CaptureGateway,
        sensitivity: float,
        silence_duration: float = 2.0,
        timeouts: InteractionTimeouts | None = None,
        write_retries: int = 3,
        retry_delay_seconds: float = 0.5,
        abort_event: asyncio.Event | None = None,
        audio_dir: Path | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._audio = audio
        self._capture = capture
        self._sensitivity = sensitivity
        self._silence_duration = silence_duration
        self._timeouts = timeouts or InteractionTimeouts()
        self._write_retries = write_retries
        self._retry_delay_seconds = retry_delay_seconds
        self._abort_event = abort_event
        self._audio_dir = audio_dir
        self._logger = logger or logging.getLogger("varys.driver")
        self._background: set[asyncio.Future[Any]] = set()

    async def run(self, session: Session, query: str) -> InteractionOutcome:
        """Run one cycle and return its outcome.

        Gateway failures end in a failed outcome. An observed abort finalizes the
        interaction as failed and is re-raised as ``InteractionAbortedError`` with
        the outcome attached. Raises ``PersistenceWriteError`` when the pending row
        cannot be written, in which case nothing physical happened.
        """
        if not session.is_open:
            raise SessionNotOpenError(f"Session {session.id} is closed")
        self._raise_if_aborted("interaction start")

        interaction = await self._create_pending(session, query)
        outcome = InteractionOutcome(interaction=interaction)
        self._logger.info(
            "interaction_started",
            extra={"interaction_id": interaction.id, "session_id": session.id, "query": query},
        )

        try:
            audio = await self._exchange(outcome)
            outcome.state = InteractionState.finalizing
            await self._save_response_audio(outcome, audio)
            response = await self._transcribe(audio)
        except asyncio.CancelledError:
            await self._finish(outcome, error=InteractionAbortedError("Interaction cancelled", outcome))
            raise
        except InteractionAbortedError as exc:
            exc.outcome = outcome
            await self._finish(outcome, error=exc)
            raise
        except VarysError as exc:
            await self._finish(outcome, error=exc)
            return outcome

        await self._finish(outcome, response=response)
        return outcome

    async def settle(self, phrases: Sequence[str], *, silence_duration: float) -> None:
        """Speak each phrase, then wait for the device to fall quiet.

        Runs between interactions, outside any capture window, so a response that
        is still playing cannot leak into the next capture. Raises the step's typed
        error on failure and ``InteractionAbortedError`` when the abort event fires.
        """
        for phrase in phrases:
            await self._speak(phrase)
            await self._step(
                partial(
                    self._audio.wait_until_silent,
                    self._sensitivity,
                    silence_duration=silence_duration,
                    timeout=self._timeouts.response,
                ),
                action="settling",
                timeout=self._timeouts.response + self._timeouts.release,
                error=AudioRecordingError,
                timeout_error=AudioTimeoutError,
                stoppable=True,
            )
        self._logger.debug("assistant_settled", extra={"phrases": len(phrases)})

    async def aclose(self) -> None:
        """Wait for late gateway handles (e.g. a capture that became ready after its timeout) to be released."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _create_pending(self, session: Session, query: str) -> Interaction:
        started = utc_now()
        return await self._write(
            partial(self._store.create_interaction, session.id, query, started),
            action="create interaction",
        )

    async def _exchange(self, outcome: InteractionOutcome) -> AudioBuffer | None:
        outcome.state = InteractionState.capturing
        async with self._capture_bracket(outcome):
            outcome.state = InteractionState.responding
            return await self._respond(outcome)

    @asynccontextmanager
    async def _capture_bracket(self, outcome: InteractionOutcome) -> AsyncIterator[CaptureHandle]:
        tag = capture_tag(outcome.interaction.id)
        handle = await self._step(
            partial(self._capture.start_capture, tag),
            action="capture start",
            timeout=self._timeouts.capture_ready,
            error=CaptureStartError,
            on_abandoned=self._release_late_capture,
        )
        self._logger.debug("capture_ready", extra={"tag": tag})
        try:
            yield handle
        except BaseException:
            await self._stop_capture(handle, outcome, quiet=True)
            raise
        await self._stop_capture(handle, outcome)

    async def _stop_capture(self, handle: CaptureHandle, outcome: InteractionOutcome, *, quiet: bool = False) -> None:
        try:
            outcome.capture = await self._step(
                partial(self._capture.stop_capture, handle),
                action="capture stop",
                timeout=self._timeouts.capture_stop,
                error=CaptureStopError,
                abortable=False,
            )
        except CaptureStopError as exc:
            if not quiet:
                raise
            self._logger.error("capture_stop_failed", extra={"tag": handle.tag, "error": str(exc)})

    async def _respond(self, outcome: InteractionOutcome) -> AudioBuffer | None:
        await self._speak(outcome.interaction.query)
        try:
            return await self._step(
                partial(
                    self._audio.record_until_silence,
                    self._sensitivity,
                    silence_duration=self._silence_duration,
                    timeout=self._timeouts.response,
                ),
                action="response recording",
                timeout=self._timeouts.recording,
                error=AudioRecordingError,
                timeout_error=AudioTimeoutError,
                stoppable=True,
            )
        except AudioTimeoutError as exc:
            outcome.response_timed_out = True
            self._logger.warning("response_timeout", extra={"error": str(exc)})
            return None

    async def _speak(self, text: str) -> None:
        playback: PlaybackHandle = await self._step(
            partial(self._audio.synthesize_and_play, text),
            action="playback start",
            timeout=self._timeouts.playback,
            error=AudioPlaybackError,
            on_abandoned=self._stop_playback,
        )
        try:
            await self._step(
                partial(playback.wait, self._timeouts.playback),
                action="playback",
                timeout=self._timeouts.playback + 1.0,
                error=AudioPlaybackError,
            )
        finally:
            self._stop_playback(playback)

    async def _save_response_audio(self, outcome: InteractionOutcome, audio: AudioBuffer | None) -> None:
        if self._audio_dir is None or audio is None or audio.is_empty:
            return
        interaction = outcome.interaction
        path = (
            self._audio_dir
            / f"session_{interaction.session_id}"
            / f"s{interaction.session_id}i{interaction.id}-response-audio.wav"
        )

        def _write_wav() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(audio.to_wav())

        try:
            await asyncio.to_thread(_write_wav)
        except OSError as exc:
            raise AudioRecordingError(f"Could not save response audio to {path}: {exc}") from exc
        outcome.response_audio = str(path)
        self._logger.debug("response_audio_saved", extra={"path": str(path), "seconds": audio.duration_seconds})

    async def _transcribe(self, audio: AudioBuffer | None) -> str | None:
        if audio is None or audio.is_empty:
            return None
        try:
            text = await self._step(
                partial(self._audio.transcribe, audio),
                action="transcription",
                timeout=self._timeouts.transcription,
                error=TranscriptionError,
            )
        except TranscriptionError as exc:
            self._logger.warning("transcription_failed", extra={"error": str(exc)})
            return None
        return (text or "").strip() or None

    async def _finish(
        self,
        outcome: InteractionOutcome,
        *,
        response: str | None = None,
        error: VarysError | None = None,
    ) -> None:
        interaction = outcome.interaction
        interaction.ended = max(utc_now(), interaction.started)
        if error is None:
            interaction.response = response
            outcome.state = InteractionState.completed
        else:
            interaction.response = None
            outcome.state = InteractionState.failed
            outcome.error = error
            self._logger.warning(
                "interaction_failed",
                extra={"interaction_id": interaction.id, "error_type": type(error).__name__, "error": str(error)},
            )

        try:
            await self._write(
                partial(self._store.finish_interaction, interaction.id, interaction.response, interaction.ended),
                action="finish interaction",
            )
        except PersistenceWriteError as exc:
            # the row keeps ended unset, which marks it unreliable downstream
            outcome.persisted = False
            outcome.state = InteractionState.failed
            outcome.error = outcome.error or exc
            self._logger.error("interaction_abandoned", extra={"interaction_id": interaction.id, "error": str(exc)})
            return

        outcome.persisted = True
        self._logger.info(
            "interaction_finished",
            extra={
                "interaction_id": interaction.id,
                "state": outcome.state.value,
                "has_response": interaction.response is not None,
            },
        )

    async def _write(self, call: Callable[[], T], *, action: str) -> T:
        last_error: Exception | None = None
        for attempt in range(1, self._write_retries + 2):
            try:
                return await asyncio.to_thread(call)
            except Exception as exc:  # noqa: BLE001 - every store failure is retried the same way.
                last_error = exc
                self._logger.warning(
                    "interaction_write_failed",
                    extra={"action": action, "attempt": attempt, "error": f"{type(exc).__name__}: {exc}"},
                )

            if attempt <= self._write_retries:
                await asyncio.sleep(self._retry_delay_seconds)

        raise PersistenceWriteError(
            f"Could not {action} after {self._write_retries + 1} attempts: {last_error}"
        ) from last_error

    async def _step(
        self,
        call: Callable[..., T],
        *,
        action: str,
        timeout: float,
        error: type[VarysError],
        timeout_error: type[VarysError] | None = None,
        abortable: bool = True,
        stoppable: bool = False,
        on_abandoned: Callable[[Any], None] | None = None,
    ) -> T:
        """Run a blocking gateway call as one bounded suspension point.

        A ``stoppable`` call receives a ``stop_event``. When the step is given up
        the event is set and the call gets ``timeouts.release`` seconds to let go
        of its device before the step returns.
        """
        if abortable:
            self._raise_if_aborted(action)

        stop_event = None
        if stoppable:
            stop_event = threading.Event()
            call = partial(call, stop_event=stop_event)

        work = asyncio.ensure_future(asyncio.to_thread(call))
        waiters: set[asyncio.Future[Any]] = {work}
        abort_wait = None
        if abortable and self._abort_event is not None:
            abort_wait = asyncio.ensure_future(self._abort_event.wait())
            waiters.add(abort_wait)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if abort_wait is not None:
                abort_wait.cancel()
            if stop_event is not None and not work.done():
                stop_event.set()
                await asyncio.wait({work}, timeout=self._timeouts.release)
                if not work.done():
                    self._logger.error("device_not_released", extra={"action": action})
                elif not work.cancelled():
                    work.exception()  # retrieved; the step already gave up on this result
            if not work.done():
                self._abandon(work, on_abandoned)

        if work in done:
            try:
                return work.result()
            except VarysError:
                raise
            except Exception as exc:  # noqa: BLE001 - untyped gateway failures become the step's error.
                raise error(f"{action} failed: {type(exc).__name__}: {exc}") from exc
        if abort_wait is not None and abort_wait in done:
            raise InteractionAbortedError(f"Aborted during {action}")
        raise (timeout_error or error)(f"{action} did not finish within {timeout}s")

    def _abandon(self, work: asyncio.Future[Any], on_abandoned: Callable[[Any], None] | None) -> None:
        if on_abandoned is None:
            work.cancel()
            return

        def _release(future: asyncio.Future[Any]) -> None:
            if future.cancelled() or future.exception() is not None:
                return
            on_abandoned(future.result())

        work.add_done_callback(_release)
        self._background.add(work)
        work.add_done_callback(self._background.discard)

    def _release_late_capture(self, handle: CaptureHandle) -> None:
        self._logger.warning("capture_ready_too_late", extra={"tag": handle.tag})
        task = asyncio.ensure_future(self._stop_late_capture(handle))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _stop_late_capture(self, handle: CaptureHandle) -> None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._capture.stop_capture, handle),
                timeout=self._timeouts.capture_stop,
            )
        except Exception as exc:  # noqa: BLE001 - nothing left to fail; the interaction is already closed.
            self._logger.error("capture_stop_failed", extra={"tag": handle.tag, "error": str(exc)})

    def _stop_playback(self, playback: PlaybackHandle) -> None:
        try:
            playback.stop()
        except Exception as exc:  # noqa: BLE001 - stopping is best effort once playback is over.
            self._logger.warning("playback_stop_failed", extra={"error": str(exc)})

    def _raise_if_aborted(self, action: str) -> None:
        if self._abort_event is not None and self._abort_event.is_set():
            raise InteractionAbortedError(f"Aborted before {action}")
