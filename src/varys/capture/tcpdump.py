"""Packet capture through an external ``tcpdump`` process.

Each capture window is one ``tcpdump -w`` process writing
``<output_dir>/<tag>.pcap``. The capture counts as ready once tcpdump reports
``listening on <interface>`` on stderr, which happens after the interface is
opened and the filter is installed.
"""

from __future__ import annotations

import gzip
import logging
import re
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path

from varys.errors import CaptureStartError, CaptureStopError
from varys.models import CaptureHandle, CaptureResult
from varys.timing import utc_now

from .interfaces import CaptureGateway

_READY_MARKER = "listening on"
_CAPTURED_RE = re.compile(r"(\d+)\s+packets?\s+captured")
_DROPPED_RE = re.compile(r"(\d+)\s+packets?\s+dropped by kernel")


def parse_tcpdump_stats(stderr: str) -> tuple[int | None, int | None]:
    """Return (captured, dropped) packet counts from tcpdump's exit summary."""
    captured = _CAPTURED_RE.search(stderr)
    dropped = _DROPPED_RE.search(stderr)
    return (
        int(captured.group(1)) if captured else None,
        int(dropped.group(1)) if dropped else None,
    )


def compress_gzip(path: str | Path, *, keep: bool = False) -> Path:
    """Compress ``path`` into ``<path>.gz`` and return the new path."""
    source = Path(path)
    target = source.with_name(source.name + ".gz")
    with source.open("rb") as raw, gzip.open(target, "wb") as packed:
        shutil.copyfileobj(raw, packed)
    if not keep:
        source.unlink()
    return target


class _RunningCapture:
    """A tcpdump process plus the thread draining its stderr."""

    def __init__(self, process: subprocess.Popen) -> None:
        self.process = process
        self.ready = threading.Event()
        self.finished = threading.Event()
        self._lines: list[str] = []
        self._reader = threading.Thread(target=self._drain, name="varys-tcpdump-stderr", daemon=True)
        self._reader.start()

    def _drain(self) -> None:
        try:
            for line in self.process.stderr:
                self._lines.append(line.rstrip())
                if _READY_MARKER in line:
                    self.ready.set()
        finally:
            self.finished.set()

    def wait_ready(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.ready.wait(0.01):
                return True
            if self.finished.is_set():
                break
        return self.ready.is_set()

    def stderr_text(self) -> str:
        self.finished.wait(1.0)
        return "\n".join(self._lines)

    def kill(self) -> None:
        if self.process.poll() is None:
            self.process.kill()
        self.process.wait()


class TcpdumpCaptureGateway(CaptureGateway):
    """Capture gateway that runs one tcpdump process per interaction."""

    def __init__(
        self,
        interface: str,
        output_dir: str | Path,
        *,
        binary: str = "tcpdump",
        bpf_filter: str | None = None,
        compress: bool = False,
        ready_timeout_seconds: float = 5.0,
        stop_timeout_seconds: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.interface = interface
        self.output_dir = Path(output_dir)
        self._binary = binary
        self._bpf_filter = bpf_filter
        self._compress = compress
        self._ready_timeout_seconds = ready_timeout_seconds
        self._stop_timeout_seconds = stop_timeout_seconds
        self._logger = logger or logging.getLogger("varys.capture.tcpdump")
        self._running: dict[str, _RunningCapture] = {}
        self._lock = threading.Lock()

    def artifact_path(self, tag: str) -> Path:
        return self.output_dir / f"{tag}.pcap"

    def command(self, tag: str) -> list[str]:
        cmd = [self._binary, "-i", self.interface, "-n", "-U", "-w", str(self.artifact_path(tag))]
        if self._bpf_filter:
            cmd.append(self._bpf_filter)
        return cmd

    def start_capture(self, tag: str) -> CaptureHandle:
        with self._lock:
            if tag in self._running:
                raise CaptureStartError(f"Capture {tag} is already running")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        cmd = self.command(tag)
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
        except OSError as exc:
            raise CaptureStartError(f"Unable to run {self._binary}: {exc}") from exc

        running = _RunningCapture(process)
        if not running.wait_ready(self._ready_timeout_seconds) or process.poll() is not None:
            running.kill()
            raise CaptureStartError(
                f"tcpdump on {self.interface} was not ready: {running.stderr_text() or 'no output'}"
            )

        with self._lock:
            self._running[tag] = running
        handle = CaptureHandle(tag=tag, path=str(self.artifact_path(tag)), started=utc_now())
        self._logger.info("capture_started", extra={"tag": tag, "interface": self.interface, "pid": process.pid})
        return handle

    def stop_capture(self, handle: CaptureHandle) -> CaptureResult:
        with self._lock:
            running = self._running.pop(handle.tag, None)
        if running is None:
            raise CaptureStopError(f"Capture {handle.tag} is not running")

        process = running.process
        was_running = process.poll() is None
        if was_running:
            process.send_signal(signal.SIGINT)
        try:
            process.wait(timeout=self._stop_timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            running.kill()
            raise CaptureStopError(f"tcpdump for {handle.tag} did not exit in time") from exc

        stopped = utc_now()
        stderr = running.stderr_text()
        # a capture that ended on its own covered only part of the window
        if not was_running or process.returncode not in (0, -signal.SIGINT):
            raise CaptureStopError(
                f"tcpdump for {handle.tag} exited early with code {process.returncode}: {stderr or 'no output'}"
            )
        captured, dropped = parse_tcpdump_stats(stderr)
        path = Path(handle.path)
        if not path.exists():
            raise CaptureStopError(f"Capture artifact {path} was not written")
        if self._compress:
            path = compress_gzip(path)

        self._logger.info(
            "capture_stopped",
            extra={"tag": handle.tag, "packets_captured": captured, "packets_dropped": dropped},
        )
        return CaptureResult(
            tag=handle.tag,
            path=str(path),
            started=handle.started,
            stopped=stopped,
            packets_captured=captured,
            packets_dropped=dropped,
        )
