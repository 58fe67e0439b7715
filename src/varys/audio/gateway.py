"""Audio gateway composed from a speaker, a microphone and a recognizer."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from varys.errors import AudioPlaybackError, AudioRecordingError, TranscriptionError

from . import silence
from .interfaces import AudioBuffer, AudioGateway, MicrophoneStream, PlaybackHandle, Speaker, SpeechRecognizer


class LocalAudioGateway(AudioGateway):
    """Talks to the device through the local speaker and microphone."""

    def __init__(
        self,
        *,
        speaker: Speaker,
        microphone: MicrophoneStream,
        recognizer: SpeechRecognizer,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._speaker = speaker
        self._microphone = microphone
        self._recognizer = recognizer
        self._clock = clock
        self._logger = logger or logging.getLogger("varys.audio.gateway")

    def synthesize_and_play(self, text: str) -> PlaybackHandle:
        normalized = " ".join(text.split())
        if not normalized:
            raise AudioPlaybackError("Refusing to play an empty query")

        self._logger.info("playback_started", extra={"text": normalized})
        try:
            return self._speaker.speak(normalized)
        except AudioPlaybackError:
            raise
        except Exception as exc:  # noqa: BLE001 - backend errors become typed playback failures.
            raise AudioPlaybackError(f"{type(exc).__name__}: {exc}") from exc

    def record_until_silence(
        self,
        sensitivity: float,
        *,
        silence_duration: float,
        timeout: float,
        stop_event: threading.Event | None = None,
    ) -> AudioBuffer:
        self._logger.info(
            "recording_started",
            extra={"sensitivity": sensitivity, "silence_duration": silence_duration, "timeout": timeout},
        )
        try:
            return silence.record_until_silence(
                self._microphone,
                sensitivity,
                silence_duration=silence_duration,
                timeout=timeout,
                stop_event=stop_event,
                clock=self._clock,
            )
        except OSError as exc:
            raise AudioRecordingError(f"Microphone failure: {exc}") from exc

    def wait_until_silent(
        self,
        sensitivity: float,
        *,
        silence_duration: float,
        timeout: float,
        stop_event: threading.Event | None = None,
    ) -> None:
        try:
            silence.wait_until_silent(
                self._microphone,
                sensitivity,
                silence_duration=silence_duration,
                timeout=timeout,
                stop_event=stop_event,
                clock=self._clock,
            )
        except OSError as exc:
            raise AudioRecordingError(f"Microphone failure: {exc}") from exc

    def transcribe(self, audio: AudioBuffer) -> str:
        try:
            text = self._recognizer.transcribe(audio)
        except TranscriptionError:
            raise
        except Exception as exc:  # noqa: BLE001 - backend errors become typed transcription failures.
            raise TranscriptionError(f"{type(exc).__name__}: {exc}") from exc
        self._logger.info("transcription_finished", extra={"chars": len(text)})
        return text

    def calibrate(self, window_seconds: float) -> float:
        try:
            return silence.calibrate(self._microphone, window_seconds, clock=self._clock)
        except OSError as exc:
            raise AudioRecordingError(f"Microphone failure: {exc}") from exc


def build_local_audio_gateway(*, voice: str | None, model: str) -> LocalAudioGateway:
    """Wire the pyttsx3 speaker and the speech_recognition microphone/recognizer."""
    from .stt_speechrecognition import SpeechRecognitionMicrophoneStream, SpeechRecognitionRecognizer
    from .tts_pyttsx3 import Pyttsx3Speaker

    return LocalAudioGateway(
        speaker=Pyttsx3Speaker(voice=voice or None),
        microphone=SpeechRecognitionMicrophoneStream(),
        recognizer=SpeechRecognitionRecognizer(model=model),
    )
