from __future__ import annotations

import gzip
import sys
import time
from pathlib import Path

import pytest

from varys.capture import TcpdumpCaptureGateway, capture_tag, compress_gzip, parse_tcpdump_stats
from varys.errors import CaptureStartError, CaptureStopError
from varys.models import CaptureHandle
from varys.timing import utc_now

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as tcpdump")

FAKE_TCPDUMP = """#!/bin/sh
out=""
while [ $# -gt 0 ]; do
  if [ "$1" = "-w" ]; then out="$2"; fi
  shift
done
: > "$out"
trap 'echo "3 packets captured" >&2; echo "1 packet dropped by kernel" >&2; exit 0' INT
echo "listening on wifi0, link-type EN10MB (Ethernet), snapshot length 262144 bytes" >&2
while true; do sleep 0.05; done
"""

BROKEN_TCPDUMP = """#!/bin/sh
echo "tcpdump: wifi0: No such device exists" >&2
exit 1
"""

DYING_TCPDUMP = """#!/bin/sh
out=""
while [ $# -gt 0 ]; do
  if [ "$1" = "-w" ]; then out="$2"; fi
  shift
done
printf x > "$out"
echo "listening on wifi0, link-type EN10MB (Ethernet), snapshot length 262144 bytes" >&2
sleep 0.2
echo "tcpdump: pcap_loop: The interface went down" >&2
exit 1
"""


def _script(tmp_path: Path, body: str) -> str:
    path = tmp_path / "tcpdump"
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755)
    return str(path)


def test_parse_tcpdump_stats() -> None:
    stderr = "tcpdump: listening on en0\n12 packets captured\n40 packets received by filter\n2 packets dropped by kernel\n"
    assert parse_tcpdump_stats(stderr) == (12, 2)
    assert parse_tcpdump_stats("tcpdump: killed") == (None, None)


def test_compress_gzip_replaces_source(tmp_path: Path) -> None:
    source = tmp_path / "interaction-1.pcap"
    source.write_bytes(b"\xd4\xc3\xb2\xa1" * 10)

    target = compress_gzip(source)

    assert target.name == "interaction-1.pcap.gz"
    assert not source.exists()
    assert gzip.decompress(target.read_bytes()) == b"\xd4\xc3\xb2\xa1" * 10


def test_command_writes_tagged_artifact(tmp_path: Path) -> None:
    gateway = TcpdumpCaptureGateway("wifi0", tmp_path, bpf_filter="host 10.0.0.7")

    assert gateway.command(capture_tag(7)) == [
        "tcpdump",
        "-i",
        "wifi0",
        "-n",
        "-U",
        "-w",
        str(tmp_path / "interaction-7.pcap"),
        "host 10.0.0.7",
    ]


def test_missing_binary_is_a_start_error(tmp_path: Path) -> None:
    gateway = TcpdumpCaptureGateway("wifi0", tmp_path, binary=str(tmp_path / "no-such-tcpdump"))

    with pytest.raises(CaptureStartError):
        gateway.start_capture("interaction-1")


def test_stopping_unknown_capture_is_a_stop_error(tmp_path: Path) -> None:
    gateway = TcpdumpCaptureGateway("wifi0", tmp_path)
    handle = CaptureHandle(tag="interaction-1", path=str(tmp_path / "interaction-1.pcap"), started=utc_now())

    with pytest.raises(CaptureStopError):
        gateway.stop_capture(handle)


@posix_only
def test_capture_window_round_trip(tmp_path: Path) -> None:
    gateway = TcpdumpCaptureGateway(
        "wifi0",
        tmp_path / "captures",
        binary=_script(tmp_path, FAKE_TCPDUMP),
        compress=True,
        stop_timeout_seconds=5,
    )

    handle = gateway.start_capture("interaction-3")
    result = gateway.stop_capture(handle)

    assert result.path == str(tmp_path / "captures" / "interaction-3.pcap.gz")
    assert Path(result.path).exists()
    assert (result.packets_captured, result.packets_dropped) == (3, 1)
    assert result.started <= result.stopped


@posix_only
def test_tcpdump_exiting_early_is_a_start_error(tmp_path: Path) -> None:
    gateway = TcpdumpCaptureGateway("wifi0", tmp_path, binary=_script(tmp_path, BROKEN_TCPDUMP))

    with pytest.raises(CaptureStartError, match="No such device"):
        gateway.start_capture("interaction-1")


@posix_only
def test_capture_that_died_mid_window_is_a_stop_error(tmp_path: Path) -> None:
    gateway = TcpdumpCaptureGateway(
        "wifi0",
        tmp_path,
        binary=_script(tmp_path, DYING_TCPDUMP),
        stop_timeout_seconds=5,
    )

    handle = gateway.start_capture("interaction-1")
    time.sleep(0.6)

    with pytest.raises(CaptureStopError, match="interface went down"):
        gateway.stop_capture(handle)
