"""Microphone and speech-to-text backends powered by ``speech_recognition``."""

from __future__ import annotations

from dataclasses import dataclass

from varys.errors import TranscriptionError

from .interfaces import AudioBuffer, MicrophoneStream, SpeechRecognizer

_WHISPER_PREFIX = "whisper-"


@dataclass(slots=True)
class SpeechRecognitionRecognizer(SpeechRecognizer):
    """Transcribe recorded responses with speech_recognition.

    ``model`` names the engine: ``whisper-<size>`` (e.g. ``whisper-base``) runs a
    local Whisper model, ``google`` uses the free web API.
    """

    model: str = "whisper-base"
    language: str = "english"

    def __post_init__(self) -> None:
        try:
            import speech_recognition as sr
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Voice STT backend unavailable. Install extras with: pip install 'varys[voice]'"
            ) from exc
        self._sr = sr
        self._recognizer = sr.Recognizer()

    def transcribe(self, audio: AudioBuffer) -> str:
        if audio.is_empty:
            return ""
        data = self._sr.AudioData(audio.frames, sample_rate=audio.sample_rate, sample_width=audio.sample_width)
        try:
            if self.model.startswith(_WHISPER_PREFIX):
                return self._recognizer.recognize_whisper(
                    data,
                    model=self.model.removeprefix(_WHISPER_PREFIX),
                    language=self.language,
                )
            return self._recognizer.recognize_google(data)
        except self._sr.UnknownValueError:
            return ""
        except self._sr.RequestError as exc:
            raise TranscriptionError(f"Speech recognition request failed for model {self.model}") from exc


class SpeechRecognitionMicrophoneStream(MicrophoneStream):
    """Raw chunked microphone input through speech_recognition's PyAudio wrapper."""

    def __init__(self, *, sample_rate: int = 16_000, chunk_size: int = 1024, device_index: int | None = None) -> None:
        try:
            import speech_recognition as sr
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Microphone backend unavailable. Install extras with: pip install 'varys[voice]'"
            ) from exc
        self._microphone = sr.Microphone(device_index=device_index, sample_rate=sample_rate, chunk_size=chunk_size)
        self._source = None
        self.sample_rate = sample_rate
        self.sample_width = 2

    def open(self) -> None:
        self._source = self._microphone.__enter__()
        self.sample_width = self._source.SAMPLE_WIDTH

    def read_chunk(self) -> bytes:
        if self._source is None:
            raise RuntimeError("Microphone stream is not open")
        return self._source.stream.read(self._source.CHUNK)

    def close(self) -> None:
        if self._source is None:
            return
        self._source = None
        self._microphone.__exit__(None, None, None)
