"""Ingest URL classification and MPEG-TS packet helpers."""

from __future__ import annotations

import enum
import ipaddress
import string
from urllib.parse import SplitResult, urlsplit

TS_PACKET_SIZE = 188
TS_SYNC_BYTE = 0x47

_SCHEME_TAIL = set(string.digits + "+-.")
_ASCII_LETTERS = set(string.ascii_letters)


class Kind(str, enum.Enum):
    """Transport category of an ingest URL."""

    UDP = "udp"
    HLS = "hls"
    FILE = "file"
    RTMP = "rtmp"
    RTSP = "rtsp"
    SRT = "srt"
    PUBLISH = "publish"
    UNKNOWN = "unknown"


def _scheme_of(raw_url: str) -> str:
    """Return the URL scheme, or "" when there is none; raise if malformed."""
    for i, ch in enumerate(raw_url):
        if ch in _ASCII_LETTERS:
            continue
        if ch in _SCHEME_TAIL:
            if i == 0:
                return ""
            continue
        if ch == ":":
            if i == 0:
                raise ValueError("missing protocol scheme")
            return raw_url[:i]
        return ""
    return ""


def _valid_optional_port(port: str) -> bool:
    if not port:
        return True
    if port[0] != ":":
        return False
    return all(c in string.digits for c in port[1:])


def _parse(raw_url: str) -> tuple[str, SplitResult]:
    scheme = _scheme_of(raw_url).lower()
    parts = urlsplit(raw_url)
    host_port = parts.netloc.rpartition("@")[2]
    if host_port.startswith("["):
        close = host_port.find("]")
        if close < 0:
            raise ValueError("missing ']' in host")
        port = host_port[close + 1 :]
    else:
        colon = host_port.rfind(":")
        port = host_port[colon:] if colon >= 0 else ""
    if not _valid_optional_port(port):
        raise ValueError(f"invalid port {port!r}")
    return scheme, parts


_SCHEME_KINDS = {
    "rtmp": Kind.RTMP,
    "rtmps": Kind.RTMP,
    "srt": Kind.SRT,
    "udp": Kind.UDP,
    "rtsp": Kind.RTSP,
    "rtsps": Kind.RTSP,
    "file": Kind.FILE,
    "publish": Kind.PUBLISH,
}


def detect(raw_url: str) -> Kind:
    """Classify ``raw_url`` by its scheme and structure."""
    try:
        scheme, parts = _parse(raw_url)
    except ValueError:
        return Kind.UNKNOWN

    kind = _SCHEME_KINDS.get(scheme)
    if kind is not None:
        return kind
    if scheme in ("http", "https"):
        path = parts.path.lower()
        if path.endswith(".m3u8") or path.endswith(".m3u"):
            return Kind.HLS
        return Kind.UNKNOWN
    if scheme == "" and raw_url.startswith("/"):
        return Kind.FILE
    return Kind.UNKNOWN


def is_push_listen(raw_url: str) -> bool:
    """Report whether ``raw_url`` asks the server to accept pushed streams."""
    try:
        scheme, parts = _parse(raw_url)
        host = parts.hostname
    except ValueError:
        return False
    if scheme == "publish":
        return True
    if scheme not in ("rtmp", "rtmps", "srt"):
        return False
    if not host:
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_unspecified or ip.is_loopback


def is_mpegts(data: bytes | None) -> bool:
    """Report whether ``data`` holds at least one packet starting with 0x47."""
    return bool(data) and len(data) >= TS_PACKET_SIZE and data[0] == TS_SYNC_BYTE


def split_ts_packets(data: bytes) -> list[bytes]:
    """Split ``data`` into 188-byte packets, dropping any incomplete tail."""
    whole = len(data) - len(data) % TS_PACKET_SIZE
    return [
        bytes(data[start : start + TS_PACKET_SIZE])
        for start in range(0, whole, TS_PACKET_SIZE)
    ]