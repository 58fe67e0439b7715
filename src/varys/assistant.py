"""Voice assistant profiles: how queries are addressed and how the device is quieted."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class AssistantProfile:
    """Everything that differs between the assistants under test.

    ``stop_phrases`` are spoken after every interaction and ``reset_phrases``
    after a response that never went quiet. A stop phrase is followed by
    ``silence_between_interactions`` seconds of quiet, a reset phrase by
    ``silence_after_talking``. ``silence_after_talking`` is also the quiet
    period that ends a response recording.
    """

    name: str
    wake_phrase: str
    stop_phrases: tuple[str, ...]
    reset_phrases: tuple[str, ...]
    silence_after_talking: float = 2.0
    silence_between_interactions: float = 5.0
    recording_timeout: float = 120.0

    def prepare_query(self, text: str) -> str:
        stripped = text.strip()
        if stripped.lower().startswith(self.wake_phrase.lower()):
            return stripped
        return f"{self.wake_phrase}. {stripped}"

    def prepare_queries(self, texts: Iterable[str]) -> list[str]:
        return [self.prepare_query(text) for text in texts]


def _profile(name: str, wake_phrase: str) -> AssistantProfile:
    return AssistantProfile(
        name=name,
        wake_phrase=wake_phrase,
        stop_phrases=(f"{wake_phrase}, stop.",),
        reset_phrases=(
            f"{wake_phrase}, stop.",
            f"{wake_phrase}, turn off the music.",
            f"{wake_phrase}, disable all alarms.",
        ),
    )


PROFILES: dict[str, AssistantProfile] = {
    "siri": _profile("siri", "Hey Siri"),
    "alexa": _profile("alexa", "Alexa"),
}


def get_profile(name: str | None) -> AssistantProfile | None:
    """Look up a profile by name; ``none`` (or an empty name) means queries are spoken verbatim."""
    if not name or name.lower() == "none":
        return None
    try:
        return PROFILES[name.lower()]
    except KeyError:
        known = ", ".join(sorted(PROFILES))
        raise ValueError(f"Unknown assistant {name!r}; expected one of: {known}, none") from None
