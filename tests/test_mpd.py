import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

import pytest

from openstreamer.mpd import (
    AudioTrack,
    TrackWindow,
    VideoTrack,
    build_mpd,
    build_segment_timeline,
    mpd_to_bytes,
    parse_dash_seg_num,
    total_queued_video_dur_90k,
)

NS = "{urn:mpeg:dash:schema:mpd:2011}"


def _video(segments=("seg_v_00003.m4s", "seg_v_00004.m4s")):
    return VideoTrack(
        codec="avc1.42E01E",
        bandwidth=5_000_000,
        width=1280,
        height=720,
        window=TrackWindow(list(segments), [180000, 176400], [360000, 540000]),
    )


def _audio():
    return AudioTrack(
        codec="mp4a.40.2",
        sample_rate=48000,
        window=TrackWindow(["seg_a_00007.m4s"], [96256], [4096]),
    )


def _parse(root):
    return ET.fromstring(mpd_to_bytes(root))


@pytest.mark.parametrize(
    "kind,name,expected",
    [
        ("v", "seg_v_00042.m4s", 42),
        ("a", "seg_a_00012.m4s", 12),
        ("a", "seg_v_00042.m4s", 0),
        ("v", "seg_v_00042.mp4", 0),
        ("v", "seg_v_abc.m4s", 0),
    ],
)
def test_parse_dash_seg_num(kind, name, expected):
    assert parse_dash_seg_num(kind, name) == expected


def test_timeline_empty_is_none():
    assert build_segment_timeline([], [], []) is None


def test_timeline_first_entry_has_start():
    tl = build_segment_timeline(["a", "b"], [10, 20], [500, 510])
    assert tl == [(500, 10), (None, 20)]


def test_timeline_skips_zero_durations():
    tl = build_segment_timeline(["a", "b", "c"], [0, 5, 6], [1, 2, 3])
    assert tl == [(None, 5), (None, 6)]


def test_timeline_missing_durations_skipped():
    assert build_segment_timeline(["a", "b"], [7], []) == [(None, 7)]


def test_total_queued_duration():
    assert total_queued_video_dur_90k([]) == 0
    assert total_queued_video_dur_90k([5]) == 0
    assert total_queued_video_dur_90k([0, 1]) == 90
    assert total_queued_video_dur_90k([0, 40, 80]) == total_queued_video_dur_90k([0, 80])
    assert total_queued_video_dur_90k([100, 140]) == total_queued_video_dur_90k([0, 40])


def test_track_window_tail():
    win = TrackWindow(["a", "b", "c"], [1, 2, 3], [0, 1, 3])
    tail = win.tail(2)
    assert tail.segments == ["b", "c"]
    assert tail.durations == [2, 3]
    assert tail.starts == [1, 3]
    assert win.tail(0).segments == ["a", "b", "c"]


def test_build_mpd_without_tracks_is_none():
    assert build_mpd(None, 2, 12) is None
    empty_video = VideoTrack("avc1.42E01E", 1, 1, 1, TrackWindow())
    assert build_mpd(None, 2, 12, video=empty_video) is None


def test_root_attributes():
    doc = _parse(build_mpd(None, 2, 12, video=_video()))
    assert doc.tag == NS + "MPD"
    assert doc.get("type") == "dynamic"
    assert doc.get("profiles") == "urn:mpeg:dash:profile:isoff-live:2011"
    assert doc.get("minimumUpdatePeriod") == "PT2S"
    assert doc.get("availabilityStartTime") is None
    period = doc.find(NS + "Period")
    assert period.get("start") == "PT0S"


def test_availability_and_publish_time_in_utc():
    ast = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    pub = datetime(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))
    doc = _parse(build_mpd(ast, 2, 12, video=_video(), publish_time=pub))
    assert doc.get("availabilityStartTime") == "2024-01-02T03:04:05Z"
    assert doc.get("publishTime") == doc.get("availabilityStartTime")
    timing = doc.find(NS + "UTCTiming")
    assert timing.get("schemeIdUri") == "urn:mpeg:dash:utc:direct:2014"
    assert timing.get("value") == doc.get("publishTime")


def test_video_representation():
    doc = _parse(build_mpd(None, 2, 12, video=_video()))
    sets = doc.findall(f"{NS}Period/{NS}AdaptationSet")
    assert [s.get("contentType") for s in sets] == ["video"]
    rep = sets[0].find(NS + "Representation")
    assert rep.get("codecs") == "avc1.42E01E"
    assert rep.get("bandwidth") == "5000000"
    assert rep.get("width") == "1280"
    assert rep.get("height") == "720"
    tmpl = rep.find(NS + "SegmentTemplate")
    assert tmpl.get("timescale") == "90000"
    assert tmpl.get("media") == "seg_v_$Number%05d$.m4s"
    assert tmpl.get("initialization") == "init_v.mp4"
    assert tmpl.get("startNumber") == "3"
    entries = tmpl.findall(f"{NS}SegmentTimeline/{NS}S")
    assert [(s.get("t"), s.get("d")) for s in entries] == [
        ("360000", "180000"),
        (None, "176400"),
    ]


def test_unparseable_segment_name_starts_at_one():
    doc = _parse(build_mpd(None, 2, 12, video=_video(["weird.m4s", "other.m4s"])))
    tmpl = doc.find(f".//{NS}SegmentTemplate")
    assert tmpl.get("startNumber") == "1"


def test_audio_representation():
    doc = _parse(build_mpd(None, 2, 12, audio=_audio()))
    sets = doc.findall(f"{NS}Period/{NS}AdaptationSet")
    assert [s.get("contentType") for s in sets] == ["audio"]
    rep = sets[0].find(NS + "Representation")
    assert rep.get("bandwidth") == "128000"
    assert rep.get("audioSamplingRate") == "48000"
    assert rep.get("width") is None
    tmpl = rep.find(NS + "SegmentTemplate")
    assert tmpl.get("timescale") == "48000"
    assert tmpl.get("media") == "seg_a_$Number%05d$.m4s"
    assert tmpl.get("startNumber") == "7"


def test_base_url_prefixes_patterns():
    doc = _parse(build_mpd(None, 2, 12, video=_video(), audio=_audio(), base_url="hd/"))
    templates = doc.findall(f".//{NS}SegmentTemplate")
    assert [t.get("initialization") for t in templates] == ["hd/init_v.mp4", "hd/init_a.mp4"]
    assert all(t.get("media").startswith("hd/seg_") for t in templates)


def test_mpd_to_bytes_header_and_no_mutation():
    root = build_mpd(None, 2, 12, video=_video())
    before = ET.tostring(root)
    data = mpd_to_bytes(root)
    assert data.startswith(b'<?xml version="1.0" encoding="UTF-8"?>\n<MPD')
    assert ET.tostring(root) == before
    assert ET.fromstring(data).tag == NS + "MPD"