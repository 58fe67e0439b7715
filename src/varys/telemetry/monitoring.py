"""Passive monitoring pings, so an unattended run can be watched remotely."""

from __future__ import annotations

import logging
from urllib.parse import quote

import requests


class MonitoringTelemetry:
    """Sends one HTTP GET per event to a URL template.

    Every ``{message}`` in the template is replaced with the url-encoded event
    text. Failed pings are logged and never interrupt the experiment.
    """

    def __init__(self, url_template: str, *, timeout_seconds: float = 5.0, logger: logging.Logger | None = None) -> None:
        self._url_template = url_template
        self._timeout_seconds = timeout_seconds
        self._logger = logger or logging.getLogger("varys.telemetry.monitoring")

    def url_for(self, message: str) -> str:
        return self._url_template.replace("{message}", quote(message))

    def emit(self, event_name: str, payload: dict) -> None:
        details = payload.get("query") or payload.get("session_id")
        message = f"{event_name}: {details}" if details is not None else event_name
        url = self.url_for(message)
        try:
            requests.get(url, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            self._logger.warning("monitoring_ping_failed", extra={"event": event_name, "error": str(exc)})
