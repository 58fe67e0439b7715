import threading

import pytest

from varys.audio.tts_pyttsx3 import Pyttsx3Speaker, ThreadPlayback
from varys.errors import AudioPlaybackError


class StubEngine:
    def __init__(self, *, fail: bool = False, block: bool = False, ignore_stop: bool = False) -> None:
        self.fail = fail
        self.ignore_stop = ignore_stop
        self.released = threading.Event()
        if not block:
            self.released.set()
        self.said: list[str] = []
        self.stopped = False

    def say(self, text: str) -> None:
        self.said.append(text)

    def runAndWait(self) -> None:
        self.released.wait(2)
        if self.fail:
            raise RuntimeError("no audio sink")

    def stop(self) -> None:
        self.stopped = True
        if not self.ignore_stop:
            self.released.set()


def test_playback_speaks_text() -> None:
    engine = StubEngine()

    ThreadPlayback(engine, "Hey Siri. What's the weather?").wait(1)

    assert engine.said == ["Hey Siri. What's the weather?"]


def test_playback_error_surfaces_on_wait() -> None:
    with pytest.raises(AudioPlaybackError, match="no audio sink"):
        ThreadPlayback(StubEngine(fail=True), "hello").wait(1)


def test_playback_timeout_then_stop() -> None:
    engine = StubEngine(block=True)
    playback = ThreadPlayback(engine, "hello")

    with pytest.raises(AudioPlaybackError, match="did not finish"):
        playback.wait(0.05)
    playback.stop()

    assert engine.stopped is True
    playback.wait(1)


def test_speaking_again_waits_for_a_timed_out_playback() -> None:
    engine = StubEngine(block=True)
    speaker = Pyttsx3Speaker(engine=engine)
    first = speaker.speak("Hey Siri. Play some jazz.")
    with pytest.raises(AudioPlaybackError):
        first.wait(0.05)

    speaker.speak("Hey Siri, stop.").wait(1)

    assert engine.stopped is True
    assert engine.said == ["Hey Siri. Play some jazz.", "Hey Siri, stop."]


def test_speaking_while_engine_is_stuck_is_refused() -> None:
    engine = StubEngine(block=True, ignore_stop=True)
    speaker = Pyttsx3Speaker(engine=engine, release_timeout=0.05)
    speaker.speak("hello")

    with pytest.raises(AudioPlaybackError, match="still holds the speech engine"):
        speaker.speak("hello again")

    assert engine.said == ["hello"]
    engine.released.set()
