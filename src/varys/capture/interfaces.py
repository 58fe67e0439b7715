"""Boundary for packet-capture integrations."""

from typing import Protocol

from varys.models import CaptureHandle, CaptureResult


def capture_tag(interaction_id: int) -> str:
    """Deterministic tag joining a capture artifact to its interaction row."""
    return f"interaction-{interaction_id}"


class CaptureGateway(Protocol):
    """Starts and stops packet capture, one artifact file per capture window."""

    def start_capture(self, tag: str) -> CaptureHandle:
        """Start capturing and return once the capture is ready to see traffic."""

    def stop_capture(self, handle: CaptureHandle) -> CaptureResult:
        """Stop a running capture and finalize its artifact."""
