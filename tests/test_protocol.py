import pytest

from openstreamer.protocol import Kind, detect, is_mpegts, is_push_listen, split_ts_packets


@pytest.mark.parametrize(
    "url, want",
    [
        ("rtmp://server.com/live/key", Kind.RTMP),
        ("rtmps://server.com/live/key", Kind.RTMP),
        ("rtmp://0.0.0.0:1935/live/key", Kind.RTMP),
        ("srt://relay.example.com:9999", Kind.SRT),
        ("srt://0.0.0.0:9999?streamid=key", Kind.SRT),
        ("udp://192.168.1.100:5000", Kind.UDP),
        ("udp://239.1.1.1:5000", Kind.UDP),
        ("rtsp://camera.local:554/stream", Kind.RTSP),
        ("rtsps://camera.local:554/stream", Kind.RTSP),
        ("http://cdn.example.com/live/playlist.m3u8", Kind.HLS),
        ("https://cdn.example.com/live/playlist.m3u8", Kind.HLS),
        ("http://cdn.example.com/live/playlist.m3u", Kind.HLS),
        ("http://cdn.example.com/LIVE.M3U8", Kind.HLS),
        ("http://cdn.example.com/live.ts", Kind.UNKNOWN),
        ("https://cdn.example.com/live", Kind.UNKNOWN),
        ("file:///recordings/source.ts", Kind.FILE),
        ("/recordings/source.ts", Kind.FILE),
        ("s3://my-bucket/streams/live.ts", Kind.UNKNOWN),
        ("s3://my-bucket/file.ts?region=ap-southeast-1", Kind.UNKNOWN),
        ("ftp://server/file", Kind.UNKNOWN),
        ("", Kind.UNKNOWN),
        ("relative/path", Kind.UNKNOWN),
    ],
)
def test_detect(url, want):
    assert detect(url) == want


def test_detect_publish():
    assert detect("publish://") == Kind.PUBLISH


@pytest.mark.parametrize(
    "url, want",
    [
        ("rtmp://0.0.0.0:1935/live/key", True),
        ("rtmp://[::]:1935/live/key", True),
        ("rtmp://127.0.0.1:1935/live/key", True),
        ("srt://0.0.0.0:9999?streamid=key", True),
        ("srt://127.0.0.1:9999", True),
        ("rtmp://server.example.com/live/key", False),
        ("rtmp://203.0.113.10:1935/live/key", False),
        ("srt://relay.example.com:9999", False),
        ("rtsp://camera/stream", False),
        ("udp://0.0.0.0:5000", False),
        ("http://0.0.0.0/stream", False),
        ("://bad", False),
    ],
)
def test_is_push_listen(url, want):
    assert is_push_listen(url) is want


def test_is_push_listen_publish_and_bare_port():
    assert is_push_listen("publish://") is True
    assert is_push_listen("rtmp://:1935/live") is True


def _pkt188():
    return bytes([0x47]) + bytes(187)


@pytest.mark.parametrize(
    "data, want",
    [
        (_pkt188(), True),
        (_pkt188() + bytes(100), True),
        (bytes(188), False),
        (bytes(187), False),
        (b"", False),
        (None, False),
    ],
)
def test_is_mpegts(data, want):
    assert is_mpegts(data) is want


def _make_pkt(pid):
    return bytes([0x47, pid]) + bytes(186)


@pytest.mark.parametrize(
    "data, want_count",
    [
        (b"", 0),
        (_make_pkt(1), 1),
        (_make_pkt(1) + _make_pkt(2), 2),
        (_make_pkt(1) + bytes(100), 1),
        (bytes(187), 0),
    ],
)
def test_split_ts_packets(data, want_count):
    pkts = split_ts_packets(data)
    assert len(pkts) == want_count
    for pkt in pkts:
        assert len(pkt) == 188


def test_split_ts_packets_preserves_content():
    first, second = _make_pkt(1), _make_pkt(2)
    assert split_ts_packets(first + second) == [first, second]