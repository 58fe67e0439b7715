"""Energy-threshold end-of-speech detection over a streaming microphone."""

from __future__ import annotations

import logging
import threading
import time
from array import array
from collections import deque
from typing import Callable

from varys.errors import AudioTimeoutError

from .interfaces import AudioBuffer, MicrophoneStream

logger = logging.getLogger("varys.audio.silence")

_FULL_SCALE = {1: 128, 2: 32_768, 4: 2_147_483_648}
_ARRAY_TYPECODES = {2: "h", 4: "i"}


def chunk_energy(chunk: bytes, sample_width: int = 2) -> float:
    """Return the normalized mean absolute amplitude (0..1) of a PCM chunk."""
    usable = len(chunk) - len(chunk) % sample_width
    if usable <= 0:
        return 0.0

    if sample_width == 1:
        samples = [sample - 128 for sample in chunk[:usable]]
    else:
        samples = array(_ARRAY_TYPECODES[sample_width], chunk[:usable])
    return sum(abs(sample) for sample in samples) / (len(samples) * _FULL_SCALE[sample_width])


class SilenceDetector:
    """Decides when a response has ended.

    The device gives no completion signal, so the boundary is a moving average of
    chunk energies that must stay at or below ``threshold`` for ``silence_duration``
    seconds. With ``require_sound`` the quiet period only starts counting after
    something louder than the threshold was heard. ``timeout`` bounds the whole wait.
    """

    def __init__(
        self,
        threshold: float,
        *,
        silence_duration: float,
        timeout: float,
        require_sound: bool = True,
        window: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = threshold
        self._silence_duration = silence_duration
        self._timeout = timeout
        self._clock = clock
        self._energies: deque[float] = deque(maxlen=max(1, window))
        self._started = clock()
        self._last_sound: float | None = None if require_sound else self._started

    def update(self, energy: float) -> bool:
        """Feed one chunk energy; return True once end of speech is reached."""
        now = self._clock()
        self._energies.append(energy)
        average = sum(self._energies) / len(self._energies)
        if average > self._threshold:
            self._last_sound = now

        if self._last_sound is not None and now - self._last_sound >= self._silence_duration:
            return True
        if now - self._started >= self._timeout:
            raise AudioTimeoutError(f"No end of speech detected within {self._timeout}s")
        return False


def _listen(
    stream: MicrophoneStream,
    detector: SilenceDetector,
    recorded: bytearray | None,
    stop_event: threading.Event | None,
) -> bool:
    """Read chunks into ``detector`` until it reports silence; False when ``stop_event`` cut it short."""
    stream.open()
    try:
        while stop_event is None or not stop_event.is_set():
            chunk = stream.read_chunk()
            if recorded is not None:
                recorded.extend(chunk)
            if detector.update(chunk_energy(chunk, stream.sample_width)):
                return True
        return False
    finally:
        stream.close()


def record_until_silence(
    stream: MicrophoneStream,
    sensitivity: float,
    *,
    silence_duration: float,
    timeout: float,
    stop_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> AudioBuffer:
    """Record from ``stream`` until ``SilenceDetector`` reports the end of speech.

    Setting ``stop_event`` ends the recording at the next chunk and returns what was
    heard so far. The stream is closed on every exit path.
    """
    detector = SilenceDetector(sensitivity, silence_duration=silence_duration, timeout=timeout, clock=clock)
    recorded = bytearray()

    if not _listen(stream, detector, recorded, stop_event):
        logger.info("recording_stopped", extra={"bytes": len(recorded)})
    else:
        logger.debug("recording_finished", extra={"bytes": len(recorded)})
    return AudioBuffer(frames=bytes(recorded), sample_rate=stream.sample_rate, sample_width=stream.sample_width)


def wait_until_silent(
    stream: MicrophoneStream,
    sensitivity: float,
    *,
    silence_duration: float,
    timeout: float,
    stop_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Block until the room has been quiet for ``silence_duration`` seconds.

    Unlike ``record_until_silence`` the quiet period starts counting right away, so
    a device that says nothing lets this return after ``silence_duration``.
    """
    detector = SilenceDetector(
        sensitivity,
        silence_duration=silence_duration,
        timeout=timeout,
        require_sound=False,
        clock=clock,
    )
    _listen(stream, detector, None, stop_event)


def calibrate(
    stream: MicrophoneStream,
    window_seconds: float,
    *,
    window: int = 4,
    clock: Callable[[], float] = time.monotonic,
) -> float:
    """Listen to ambient noise for ``window_seconds`` and return its mean moving-average energy."""
    energies: deque[float] = deque(maxlen=max(1, window))
    averages: list[float] = []
    started = clock()

    stream.open()
    try:
        while clock() - started < window_seconds:
            energies.append(chunk_energy(stream.read_chunk(), stream.sample_width))
            averages.append(sum(energies) / len(energies))
    finally:
        stream.close()

    if not averages:
        return 0.0
    sensitivity = sum(averages) / len(averages)
    logger.info("calibration_finished", extra={"sensitivity": sensitivity, "samples": len(averages)})
    return sensitivity
