"""Text-to-speech backend powered by ``pyttsx3``."""

from __future__ import annotations

import logging
import threading

from varys.errors import AudioPlaybackError

from .interfaces import PlaybackHandle, Speaker

logger = logging.getLogger("varys.audio.tts")


class ThreadPlayback(PlaybackHandle):
    """Playback running on a dedicated thread until the engine's run loop returns."""

    def __init__(self, engine, text: str) -> None:
        self._engine = engine
        self._text = text
        self._error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, name="varys-playback", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            self._engine.say(self._text)
            self._engine.runAndWait()
        except Exception as exc:  # noqa: BLE001 - surfaced through wait()
            self._error = exc

    def wait(self, timeout: float) -> None:
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise AudioPlaybackError(f"Playback did not finish within {timeout}s")
        if self._error is not None:
            raise AudioPlaybackError(f"Playback failed: {self._error}") from self._error

    def stop(self) -> None:
        if self._thread.is_alive():
            self._engine.stop()

    def join(self, timeout: float) -> bool:
        """Wait for the run loop to return; True once the engine is free again."""
        self._thread.join(timeout)
        return not self._thread.is_alive()


class Pyttsx3Speaker(Speaker):
    """Speaker playback using a local pyttsx3 engine instance.

    The engine runs one loop at a time, so a new ``speak`` first stops the
    previous playback and waits up to ``release_timeout`` seconds for it.
    """

    def __init__(
        self,
        *,
        voice: str | None = None,
        rate: int | None = None,
        volume: float | None = None,
        engine=None,
        release_timeout: float = 2.0,
    ) -> None:
        if engine is None:
            try:
                import pyttsx3
            except ImportError as exc:  # pragma: no cover - import guard
                raise RuntimeError(
                    "Audio output backend unavailable. Install extras with: pip install 'varys[voice]'"
                ) from exc
            engine = pyttsx3.init()

        self._engine = engine
        self._release_timeout = release_timeout
        self._current: ThreadPlayback | None = None
        if voice:
            self.set_voice(voice)
        if rate is not None:
            self._engine.setProperty("rate", rate)
        if volume is not None:
            clamped = max(0.0, min(1.0, volume))
            self._engine.setProperty("volume", clamped)

    def available_voices(self) -> list[str]:
        return [voice.name for voice in self._engine.getProperty("voices")]

    def set_voice(self, id_or_name: str) -> None:
        """Select a voice by id or name; raise ``AudioPlaybackError`` when the system lacks it."""
        for voice in self._engine.getProperty("voices"):
            if id_or_name in (voice.id, voice.name):
                self._engine.setProperty("voice", voice.id)
                logger.debug("voice_selected", extra={"voice": voice.id})
                return
        raise AudioPlaybackError(f"Voice {id_or_name} is not available or does not exist")

    def speak(self, text: str) -> PlaybackHandle:
        previous = self._current
        if previous is not None:
            previous.stop()
            if not previous.join(self._release_timeout):
                raise AudioPlaybackError("Previous playback still holds the speech engine")
        self._current = ThreadPlayback(self._engine, text)
        return self._current
