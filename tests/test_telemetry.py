from __future__ import annotations

import logging

import requests
from rich.logging import RichHandler

from varys.config import Settings
from varys.models import FailurePolicy
from varys.telemetry import ContextFormatter, MonitoringTelemetry, configure_logging


def test_monitoring_url_encodes_message() -> None:
    telemetry = MonitoringTelemetry("https://hc.example.org/ping?msg={message}")

    assert telemetry.url_for("what's the weather") == "https://hc.example.org/ping?msg=what%27s%20the%20weather"


def test_monitoring_ping_failure_only_warns(monkeypatch, caplog) -> None:
    calls: list[str] = []

    def _unreachable(url, timeout):
        calls.append(url)
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(requests, "get", _unreachable)
    telemetry = MonitoringTelemetry("https://hc.example.org/{message}", logger=logging.getLogger("tests.monitoring"))

    with caplog.at_level("WARNING", logger="tests.monitoring"):
        telemetry.emit("interaction_started", {"query": "hello"})

    assert calls == ["https://hc.example.org/interaction_started%3A%20hello"]
    assert "monitoring_ping_failed" in caplog.text


def test_settings_read_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("VARYS_INTERFACE", "wifi0")
    monkeypatch.setenv("VARYS_RESPONSE_TIMEOUT_SECONDS", "12")
    monkeypatch.setenv("VARYS_FAILURE_POLICY", "abort")

    settings = Settings(_env_file=None)

    assert settings.interface == "wifi0"
    assert settings.failure_policy == FailurePolicy.abort_session
    assert settings.timeouts().response == 12
    assert settings.timeouts().recording == 14
    assert settings.capture_dir == settings.data_dir / "captures"


def test_context_formatter_renders_extra_fields() -> None:
    record = logging.getLogger("varys.driver").makeRecord(
        "varys.driver",
        logging.ERROR,
        __file__,
        1,
        "capture_stop_failed",
        None,
        None,
        extra={"tag": "interaction-4", "error": "tcpdump exited early with code 1"},
    )

    line = ContextFormatter("%(message)s").format(record)

    assert line.startswith("capture_stop_failed ")
    assert "tag='interaction-4'" in line
    assert "error='tcpdump exited early with code 1'" in line


def test_configured_console_shows_error_context(monkeypatch) -> None:
    root = logging.getLogger("varys")
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "propagate", True)
    previous_level = root.level

    try:
        configure_logging("INFO")
    finally:
        root.setLevel(previous_level)
    handler = next(h for h in root.handlers if isinstance(h, RichHandler))
    record = root.makeRecord(
        "varys.driver",
        logging.WARNING,
        __file__,
        1,
        "interaction_failed",
        None,
        None,
        extra={"interaction_id": 9, "error": "Microphone failure: device busy"},
    )
    line = handler.format(record)

    assert "interaction_id=9" in line
    assert "Microphone failure: device busy" in line
