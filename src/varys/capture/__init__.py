"""Network packet capture around each interaction."""

from .interfaces import CaptureGateway, capture_tag
from .tcpdump import TcpdumpCaptureGateway, compress_gzip, parse_tcpdump_stats

__all__ = [
    "CaptureGateway",
    "TcpdumpCaptureGateway",
    "capture_tag",
    "compress_gzip",
    "parse_tcpdump_stats",
]
