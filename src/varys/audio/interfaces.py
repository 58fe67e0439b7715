"""Contracts between the interaction driver and the audio subsystem."""

from __future__ import annotations

import io
import threading
import wave
from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True, frozen=True)
class AudioBuffer:
    """Recorded mono PCM audio."""

    frames: bytes
    sample_rate: int = 16_000
    sample_width: int = 2

    @property
    def is_empty(self) -> bool:
        return not self.frames

    @property
    def duration_seconds(self) -> float:
        return len(self.frames) / (self.sample_rate * self.sample_width)

    def to_wav(self) -> bytes:
        payload = io.BytesIO()
        with wave.open(payload, "wb") as writer:
            writer.setnchannels(1)
            writer.setsampwidth(self.sample_width)
            writer.setframerate(self.sample_rate)
            writer.writeframes(self.frames)
        return payload.getvalue()


class PlaybackHandle(Protocol):
    """A query being spoken by the synthesizer."""

    def wait(self, timeout: float) -> None:
        """Block until playback finished; raise ``AudioPlaybackError`` on failure or timeout."""

    def stop(self) -> None:
        """Interrupt playback. Safe to call after playback finished."""


class AudioGateway(Protocol):
    """Speaks queries, records the device's answer and turns it into text."""

    def synthesize_and_play(self, text: str) -> PlaybackHandle:
        """Start speaking ``text`` and return immediately."""

    def record_until_silence(
        self,
        sensitivity: float,
        *,
        silence_duration: float,
        timeout: float,
        stop_event: threading.Event | None = None,
    ) -> AudioBuffer:
        """Record until the input stays below ``sensitivity`` for ``silence_duration`` seconds.

        Raises ``AudioTimeoutError`` when that does not happen within ``timeout`` seconds.
        Setting ``stop_event`` releases the microphone at the next chunk.
        """

    def wait_until_silent(
        self,
        sensitivity: float,
        *,
        silence_duration: float,
        timeout: float,
        stop_event: threading.Event | None = None,
    ) -> None:
        """Block until the room stays quiet for ``silence_duration`` seconds, heard sound or not."""

    def transcribe(self, audio: AudioBuffer) -> str:
        """Return the recognized text, or an empty string when nothing was understood."""

    def calibrate(self, window_seconds: float) -> float:
        """Sample ambient noise and return a matching sensitivity."""


class SpeechRecognizer(Protocol):
    """Converts buffered audio into text."""

    def transcribe(self, audio: AudioBuffer) -> str:
        """Return recognized text from recorded audio."""


class Speaker(Protocol):
    """Speaks text aloud through the output device."""

    def speak(self, text: str) -> PlaybackHandle:
        """Start speaking and return a handle to the running playback."""


class MicrophoneStream(Protocol):
    """Streaming microphone input, read chunk by chunk."""

    sample_rate: int
    sample_width: int

    def open(self) -> None:
        """Open the input device."""

    def read_chunk(self) -> bytes:
        """Read and return the next audio chunk."""

    def close(self) -> None:
        """Release the input device."""
