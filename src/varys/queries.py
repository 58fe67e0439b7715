"""Query corpus loading.

Two formats are accepted. A ``.toml`` file maps categories to lists of
queries::

    greetings = ["Hey Siri. How are you?", "Hey Siri. Good morning."]
    weather = ["Hey Siri. What's the weather?"]

Any other file is read as plain text with one query per line; blank lines and
lines starting with ``#`` are skipped.
"""

from __future__ import annotations

import random
import tomllib
from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class Query:
    text: str
    category: str | None = None


def parse_text_queries(text: str) -> list[Query]:
    queries: list[Query] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        queries.append(Query(text=stripped))
    return queries


def parse_toml_queries(text: str) -> list[Query]:
    try:
        document = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid queries file: {exc}") from exc

    queries: list[Query] = []
    for category, entries in document.items():
        if not isinstance(entries, list) or not all(isinstance(entry, str) for entry in entries):
            raise ValueError(f"Category {category!r} must be a list of strings")
        queries.extend(Query(text=entry.strip(), category=category) for entry in entries if entry.strip())
    return queries


def load_queries(path: Path, *, shuffle: bool = False, rng: random.Random | None = None) -> list[Query]:
    """Load queries from ``path``, optionally in random order."""
    text = path.read_text(encoding="utf-8")
    queries = parse_toml_queries(text) if path.suffix.lower() == ".toml" else parse_text_queries(text)
    if shuffle:
        (rng or random.Random()).shuffle(queries)
    return queries
