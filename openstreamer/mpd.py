"""Dynamic MPEG-DASH manifest (MPD) construction."""

from __future__ import annotations

import copy
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .fileutil import window_tail

VIDEO_TIMESCALE = 90000
VIDEO_MEDIA_PATTERN = "seg_v_$Number%05d$.m4s"
AUDIO_MEDIA_PATTERN = "seg_a_$Number%05d$.m4s"
AUDIO_BANDWIDTH = 128_000
XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'

MPD_NAMESPACE = "urn:mpeg:dash:schema:mpd:2011"
LIVE_PROFILE = "urn:mpeg:dash:profile:isoff-live:2011"
UTC_TIMING_SCHEME = "urn:mpeg:dash:utc:direct:2014"

_UINT64 = 1 << 64
_SEG_NUM = re.compile(r"[+-]?[0-9]+")

# (t, d): t is the explicit start time, present only on the first entry.
TimelineEntry = tuple[Optional[int], int]


@dataclass
class TrackWindow:
    """Segment names with their durations and start times, oldest first."""

    segments: list[str] = field(default_factory=list)
    durations: list[int] = field(default_factory=list)
    starts: list[int] = field(default_factory=list)

    def tail(self, n: int) -> "TrackWindow":
        """Return the last ``n`` entries of each list."""
        return TrackWindow(
            list(window_tail(self.segments, n)),
            list(window_tail(self.durations, n)),
            list(window_tail(self.starts, n)),
        )


@dataclass
class VideoTrack:
    """Video representation parameters and its segment window."""

    codec: str
    bandwidth: int
    width: int
    height: int
    window: TrackWindow


@dataclass
class AudioTrack:
    """Audio representation parameters and its segment window."""

    codec: str
    sample_rate: int
    window: TrackWindow


def parse_dash_seg_num(kind: str, name: str) -> int:
    """Extract the number from ``seg_<kind>_NNNNN.m4s``; 0 when it does not match."""
    prefix = f"seg_{kind}_"
    suffix = ".m4s"
    if not name.startswith(prefix) or not name.endswith(suffix):
        return 0
    digits = name[len(prefix) : len(name) - len(suffix)]
    if not _SEG_NUM.fullmatch(digits):
        return 0
    return int(digits)


def build_segment_timeline(
    segments: list[str], durations: list[int], starts: list[int]
) -> list[TimelineEntry] | None:
    """Build SegmentTimeline entries; None when there are no segments.

    Zero-length segments are skipped. Only the first segment carries an
    explicit start time.
    """
    if not segments:
        return None
    timeline: list[TimelineEntry] = []
    for i in range(len(segments)):
        duration = durations[i] if i < len(durations) else 0
        if duration == 0:
            continue
        start = starts[0] if i == 0 and starts else None
        timeline.append((start, duration))
    return timeline


def total_queued_video_dur_90k(dts: list[int]) -> int:
    """Return the span of millisecond DTS values in 90 kHz ticks."""
    if len(dts) < 2:
        return 0
    return ((dts[-1] - dts[0]) * 90) % _UINT64


def _rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _mpd_root(
    availability_start: datetime | None,
    seg_sec: int,
    window: int,
    publish_time: datetime | None,
) -> tuple[ET.Element, ET.Element]:
    """Return the MPD root element and its single Period."""
    pub = _rfc3339(publish_time or datetime.now(timezone.utc))
    root = ET.Element("MPD")
    root.set("xmlns", MPD_NAMESPACE)
    root.set("type", "dynamic")
    root.set("profiles", LIVE_PROFILE)
    root.set("minBufferTime", f"PT{max(4, seg_sec * 2)}S")
    root.set("suggestedPresentationDelay", f"PT{max(6, seg_sec * 3)}S")
    root.set("maxSegmentDuration", f"PT{max(seg_sec * 3, seg_sec + 1)}S")
    if availability_start is not None:
        root.set("availabilityStartTime", _rfc3339(availability_start))
    root.set("minimumUpdatePeriod", f"PT{seg_sec}S")
    root.set("timeShiftBufferDepth", f"PT{seg_sec * window}S")
    root.set("publishTime", pub)
    period = ET.SubElement(root, "Period", {"id": "0", "start": "PT0S"})
    ET.SubElement(root, "UTCTiming", {"schemeIdUri": UTC_TIMING_SCHEME, "value": pub})
    return root, period


def _adaptation_set(period: ET.Element, set_id: str, content_type: str, mime: str) -> ET.Element:
    return ET.SubElement(
        period,
        "AdaptationSet",
        {
            "id": set_id,
            "contentType": content_type,
            "mimeType": mime,
            "segmentAlignment": "true",
            "startWithSAP": "1",
        },
    )


def _representation(
    parent: ET.Element,
    rep_id: str,
    mime: str,
    codecs: str,
    bandwidth: int,
    *,
    timescale: int,
    initialization: str,
    media: str,
    start_number: int,
    timeline: list[TimelineEntry] | None,
    width: int = 0,
    height: int = 0,
    audio_sampling_rate: int | None = None,
    base_url: str = "",
) -> ET.Element:
    rep = ET.SubElement(parent, "Representation")
    rep.set("id", rep_id)
    rep.set("mimeType", mime)
    rep.set("codecs", codecs)
    rep.set("bandwidth", str(bandwidth))
    if width:
        rep.set("width", str(width))
    if height:
        rep.set("height", str(height))
    if audio_sampling_rate is not None:
        rep.set("audioSamplingRate", str(audio_sampling_rate))
    if base_url:
        ET.SubElement(rep, "BaseURL").text = base_url
    template = ET.SubElement(
        rep,
        "SegmentTemplate",
        {
            "timescale": str(timescale),
            "initialization": initialization,
            "media": media,
            "startNumber": str(start_number),
        },
    )
    if timeline is not None:
        tl = ET.SubElement(template, "SegmentTimeline")
        for start, duration in timeline:
            s = ET.SubElement(tl, "S")
            if start is not None:
                s.set("t", str(start))
            s.set("d", str(duration))
    return rep


def _start_number(kind: str, first_segment: str) -> int:
    number = parse_dash_seg_num(kind, first_segment)
    return number if number > 0 else 1


def build_mpd(
    availability_start: datetime | None,
    seg_sec: int,
    window: int,
    video: VideoTrack | None = None,
    audio: AudioTrack | None = None,
    base_url: str = "",
    publish_time: datetime | None = None,
) -> ET.Element | None:
    """Build a dynamic MPD; None when no track has segments yet.

    ``base_url`` is prepended to the init and media patterns.
    """
    root, period = _mpd_root(availability_start, seg_sec, window, publish_time)

    if video is not None and video.window.segments:
        win = video.window
        timeline = build_segment_timeline(win.segments, win.durations, win.starts)
        if timeline is not None:
            aset = _adaptation_set(period, "0", "video", "video/mp4")
            _representation(
                aset, "v0", "video/mp4", video.codec, video.bandwidth,
                width=video.width,
                height=video.height,
                timescale=VIDEO_TIMESCALE,
                initialization=base_url + "init_v.mp4",
                media=base_url + VIDEO_MEDIA_PATTERN,
                start_number=_start_number("v", win.segments[0]),
                timeline=timeline,
            )

    if audio is not None and audio.window.segments:
        win = audio.window
        timeline = build_segment_timeline(win.segments, win.durations, win.starts)
        if timeline is not None:
            aset = _adaptation_set(period, "1", "audio", "audio/mp4")
            _representation(
                aset, "a0", "audio/mp4", audio.codec, AUDIO_BANDWIDTH,
                audio_sampling_rate=audio.sample_rate,
                timescale=audio.sample_rate,
                initialization=base_url + "init_a.mp4",
                media=base_url + AUDIO_MEDIA_PATTERN,
                start_number=_start_number("a", win.segments[0]),
                timeline=timeline,
            )

    if len(period) == 0:
        return None
    return root


def mpd_to_bytes(root: ET.Element) -> bytes:
    """Serialise an MPD element as indented UTF-8 XML with a declaration."""
    tree = copy.deepcopy(root)
    ET.indent(tree, space="  ")
    return (XML_HEADER + ET.tostring(tree, encoding="unicode")).encode("utf-8")