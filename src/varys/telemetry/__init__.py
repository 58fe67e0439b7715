"""Logging setup and telemetry sinks."""

from .logging import ContextFormatter, LoggingTelemetry, Telemetry, configure_logging
from .monitoring import MonitoringTelemetry

__all__ = ["ContextFormatter", "LoggingTelemetry", "MonitoringTelemetry", "Telemetry", "configure_logging"]
