"""Hand-written gateway stand-ins shared by the driver and experiment tests."""

from __future__ import annotations

import threading
import time

from varys.audio import AudioBuffer
from varys.errors import PersistenceWriteError
from varys.models import CaptureHandle, CaptureResult
from varys.persistence import InMemoryPersistenceGateway
from varys.timing import InteractionTimeouts, utc_now

FAST_TIMEOUTS = InteractionTimeouts(capture_ready=0.5, playback=1.0, response=1.0, transcription=1.0, capture_stop=1.0)


class FakePlayback:
    def __init__(self, events: list[str], error: Exception | None = None) -> None:
        self.events = events
        self.error = error
        self.stopped = False

    def wait(self, timeout: float) -> None:
        if self.error is not None:
            raise self.error
        self.events.append("playback_done")

    def stop(self) -> None:
        self.stopped = True


class FakeAudioGateway:
    def __init__(
        self,
        events: list[str],
        *,
        response: str = "it's sunny",
        playback_error: Exception | None = None,
        record_error: Exception | None = None,
        record_delay: float = 0.0,
        transcribe_error: Exception | None = None,
        settle_error: Exception | None = None,
    ) -> None:
        self.events = events
        self.response = response
        self.playback_error = playback_error
        self.record_error = record_error
        self.record_delay = record_delay
        self.transcribe_error = transcribe_error
        self.settle_error = settle_error
        self.played: list[str] = []
        self.sensitivities: list[float] = []
        self.playbacks: list[FakePlayback] = []
        self.settle_durations: list[float] = []

    def synthesize_and_play(self, text: str) -> FakePlayback:
        self.events.append("play")
        self.played.append(text)
        playback = FakePlayback(self.events, error=self.playback_error)
        self.playbacks.append(playback)
        return playback

    def record_until_silence(
        self,
        sensitivity: float,
        *,
        silence_duration: float,
        timeout: float,
        stop_event: threading.Event | None = None,
    ) -> AudioBuffer:
        self.events.append("record")
        self.sensitivities.append(sensitivity)
        if self.record_delay:
            if stop_event is None:
                time.sleep(self.record_delay)
            elif stop_event.wait(self.record_delay):
                self.events.append("record_stopped")
        if self.record_error is not None:
            raise self.record_error
        return AudioBuffer(frames=b"\x10\x00" * 160)

    def wait_until_silent(
        self,
        sensitivity: float,
        *,
        silence_duration: float,
        timeout: float,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.events.append("settle")
        self.settle_durations.append(silence_duration)
        if self.settle_error is not None:
            raise self.settle_error

    def transcribe(self, audio: AudioBuffer) -> str:
        self.events.append("transcribe")
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.response

    def calibrate(self, window_seconds: float) -> float:
        return 0.01


class FakeCaptureGateway:
    def __init__(
        self,
        events: list[str],
        *,
        start_error: Exception | None = None,
        start_delay: float = 0.0,
        stop_error: Exception | None = None,
    ) -> None:
        self.events = events
        self.start_error = start_error
        self.start_delay = start_delay
        self.stop_error = stop_error
        self.started: list[str] = []
        self.stopped: list[str] = []

    def start_capture(self, tag: str) -> CaptureHandle:
        if self.start_delay:
            time.sleep(self.start_delay)
        self.events.append("capture_start")
        if self.start_error is not None:
            raise self.start_error
        self.started.append(tag)
        return CaptureHandle(tag=tag, path=f"/captures/{tag}.pcap", started=utc_now())

    def stop_capture(self, handle: CaptureHandle) -> CaptureResult:
        self.events.append("capture_stop")
        self.stopped.append(handle.tag)
        if self.stop_error is not None:
            raise self.stop_error
        return CaptureResult(
            tag=handle.tag,
            path=handle.path,
            started=handle.started,
            stopped=utc_now(),
            packets_captured=12,
            packets_dropped=0,
        )


class FlakyStore(InMemoryPersistenceGateway):
    """In-memory store whose interaction writes fail a set number of times."""

    def __init__(self, *, create_failures: int = 0, finish_failures: int = 0) -> None:
        super().__init__()
        self.create_failures = create_failures
        self.finish_failures = finish_failures
        self.finish_attempts = 0

    def create_interaction(self, session_id, query, started):
        if self.create_failures:
            self.create_failures -= 1
            raise PersistenceWriteError("database is locked")
        return super().create_interaction(session_id, query, started)

    def finish_interaction(self, interaction_id, response, ended):
        self.finish_attempts += 1
        if self.finish_failures:
            self.finish_failures -= 1
            raise PersistenceWriteError("database is locked")
        return super().finish_interaction(interaction_id, response, ended)


def open_session(store: InMemoryPersistenceGateway):
    config = store.insert_config("wifi0", "female-1", "0.42", "whisper-base")
    return store.create_session(config.id, "0.1.0", utc_now())
