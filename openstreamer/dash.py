"""Live MPEG-DASH packager: H.264 + AAC-LC frames into fMP4 segments and an MPD."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from .fileutil import window_tail, write_file_atomic
from .fmp4 import (
    NALU_PPS,
    NALU_SPS,
    TRACK_ID,
    Sample,
    annexb_4_to_3,
    annexb_to_avcc,
    build_audio_init,
    build_media_segment,
    build_video_init,
    is_h264_idr,
    parse_adts_header,
    parse_sps,
    split_annexb_nalus,
)
from .mpd import (
    VIDEO_TIMESCALE,
    AudioTrack,
    TrackWindow,
    VideoTrack,
    build_mpd,
    mpd_to_bytes,
    total_queued_video_dur_90k,
)

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_SECONDS = 2
DEFAULT_WINDOW = 12
DEFAULT_VIDEO_BANDWIDTH = 5_000_000
DEFAULT_VIDEO_CODEC = "avc1.42E01E"
AAC_LC_CODEC = "mp4a.40.2"
AAC_FRAME_SAMPLES = 1024
_AUDIO_FRAMES_FALLBACK = 94
_MIN_PARAMETER_BYTES = 20
_SOURCE_SWITCH_MS = 1000

_U32 = 0xFFFFFFFF
_U64 = 1 << 64


def audio_frames_per_segment(seg_sec: int, sample_rate: int) -> int:
    """Return the number of 1024-sample AAC frames that fill one segment."""
    if sample_rate <= 0:
        return _AUDIO_FRAMES_FALLBACK
    return (seg_sec * sample_rate + AAC_FRAME_SAMPLES - 1) // AAC_FRAME_SAMPLES


def _to_int32(value: int) -> int:
    value &= _U32
    return value - (1 << 32) if value >= 1 << 31 else value


class DashShardListener(Protocol):
    """Receives the packager after each segment flush (ABR mode)."""

    def on_shard_updated(self, packager: "DashPackager") -> None:
        ...


@dataclass
class DashShardSnapshot:
    """Point-in-time view of one packager, used to build an MPD."""

    slug: str
    video_bandwidth: int
    video_codec: str
    width: int
    height: int
    audio_sample_rate: int
    audio_codec: str
    has_video: bool
    has_audio: bool
    video: TrackWindow = field(default_factory=TrackWindow)
    audio: TrackWindow = field(default_factory=TrackWindow)
    availability_start: datetime | None = None
    seg_sec: int = DEFAULT_SEGMENT_SECONDS


class DashPackager:
    """Queues H.264 access units and AAC frames and writes fMP4 segments.

    A segment is cut when the queued video spans ``seg_sec`` and starts with an
    IDR (or is not the first segment), when ``seg_sec`` of wall time has passed,
    or, for audio-only streams, once a segment's worth of AAC frames is queued.
    """

    def __init__(
        self,
        stream_dir: str | os.PathLike[str],
        manifest_path: str | os.PathLike[str] = "",
        seg_sec: int = DEFAULT_SEGMENT_SECONDS,
        window: int = DEFAULT_WINDOW,
        history: int = 0,
        ephemeral: bool = False,
        *,
        stream_id: str = "",
        abr_master: DashShardListener | None = None,
        abr_slug: str = "",
        video_bandwidth: int = 0,
        pack_audio: bool = True,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.stream_dir = os.fspath(stream_dir)
        self.manifest_path = os.fspath(manifest_path) if manifest_path else ""
        self.seg_sec = seg_sec if seg_sec > 0 else DEFAULT_SEGMENT_SECONDS
        self.window = window if window > 0 else DEFAULT_WINDOW
        self.history = max(history, 0)
        self.ephemeral = ephemeral
        self.stream_id = stream_id
        self.abr_master = abr_master
        self.abr_slug = abr_slug
        self.video_bandwidth = video_bandwidth if video_bandwidth > 0 else 0
        self.pack_audio = pack_audio
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))

        self._lock = threading.RLock()
        self._segment_start: float | None = None

        self._v_annex: list[bytes] = []
        self._v_dts: list[int] = []
        self._v_pts: list[int] = []
        self._video_ps = bytearray()

        self._a_raw: list[bytes] = []
        self._a_pts: list[int] = []

        self.has_video_init = False
        self.has_audio_init = False
        self.audio_sample_rate = 0
        self.video_codec = DEFAULT_VIDEO_CODEC
        self.audio_codec = AAC_LC_CODEC
        self.width = 1280
        self.height = 720

        self._v_seg_n = 0
        self._a_seg_n = 0
        self._video_next_decode = 0
        self._audio_next_decode = 0

        self._video_window = TrackWindow()
        self._audio_window = TrackWindow()
        self.availability_start: datetime | None = None

    # ─── input ────────────────────────────────────────────────────────────

    def on_video_frame(self, frame: bytes, pts: int, dts: int) -> None:
        """Queue one Annex-B H.264 access unit with millisecond timestamps."""
        if not frame:
            return
        with self._lock:
            if self._v_dts and dts + _SOURCE_SWITCH_MS < self._v_dts[-1]:
                self._flush_quietly()
            data = bytes(frame)
            self._v_annex.append(data)
            self._v_dts.append(dts)
            self._v_pts.append(pts)
            if not self.has_video_init:
                self._video_ps += data
                self._try_init_video_locked()
            if self._segment_start is None and self.has_video_init:
                self._segment_start = self._clock()

    def on_audio_frame(self, frame: bytes, pts: int) -> None:
        """Queue every ADTS-framed AAC frame found in one PES payload."""
        if not self.pack_audio:
            return
        frame = bytes(frame)
        with self._lock:
            if self._a_pts and pts + _SOURCE_SWITCH_MS < self._a_pts[-1]:
                self._flush_quietly()
            pos = 0
            while pos + 7 <= len(frame):
                try:
                    header = parse_adts_header(frame[pos:])
                except ValueError:
                    pos += 1
                    continue
                end = pos + header.frame_length
                if end > len(frame):
                    break
                raw = frame[pos + header.header_length : end]
                if not self.has_audio_init:
                    try:
                        self._build_audio_init_locked(header.frequency)
                    except (ValueError, OSError):
                        pos = end
                        continue
                self._a_raw.append(raw)
                self._a_pts.append(pts)
                if (
                    self._segment_start is None
                    and not self.has_video_init
                    and self.has_audio_init
                ):
                    self._segment_start = self._clock()
                pos = end

    # ─── control ──────────────────────────────────────────────────────────

    def tick(self) -> bool:
        """Cut a segment if one is due; True when queued data was written."""
        with self._lock:
            if not self.has_video_init and not self.has_audio_init:
                return False
            wall_due = (
                self._segment_start is not None
                and self._clock() - self._segment_start >= self.seg_sec
            )
            target = self.seg_sec * VIDEO_TIMESCALE
            video_by_dur = (
                self.has_video_init
                and bool(self._v_annex)
                and total_queued_video_dur_90k(self._v_dts) >= target
                and (self._v_seg_n > 0 or is_h264_idr(self._v_annex[0]))
            )
            audio_only = (
                not self.has_video_init
                and self.has_audio_init
                and len(self._a_raw)
                >= audio_frames_per_segment(self.seg_sec, self.audio_sample_rate)
            )
            if not (wall_due or video_by_dur or audio_only):
                return False
            try:
                return self._flush_locked()
            except OSError as exc:
                logger.warning(
                    "publisher: DASH segment flush failed stream_code=%s err=%s",
                    self.stream_id, exc,
                )
                return False

    def flush(self) -> bool:
        """Write all queued frames as segments; True when a segment was written.

        Raises ``OSError`` when the manifest cannot be written.
        """
        with self._lock:
            return self._flush_locked()

    def effective_video_bandwidth(self) -> int:
        """Return the bandwidth advertised for the video representation."""
        return self.video_bandwidth if self.video_bandwidth > 0 else DEFAULT_VIDEO_BANDWIDTH

    def snapshot(self) -> DashShardSnapshot:
        """Return the current state, with segment windows trimmed to ``window``."""
        with self._lock:
            return DashShardSnapshot(
                slug=self.abr_slug,
                video_bandwidth=self.effective_video_bandwidth(),
                video_codec=self.video_codec,
                width=self.width,
                height=self.height,
                audio_sample_rate=self.audio_sample_rate,
                audio_codec=self.audio_codec,
                has_video=self.has_video_init,
                has_audio=self.has_audio_init and self.pack_audio,
                video=self._video_window.tail(self.window),
                audio=self._audio_window.tail(self.window),
                availability_start=self.availability_start,
                seg_sec=self.seg_sec,
            )

    # ─── internals ────────────────────────────────────────────────────────

    def _flush_quietly(self) -> None:
        try:
            self._flush_locked()
        except OSError as exc:
            logger.warning(
                "publisher: DASH flush on source switch failed stream_code=%s err=%s",
                self.stream_id, exc,
            )

    def _try_init_video_locked(self) -> None:
        if self.has_video_init or len(self._video_ps) < _MIN_PARAMETER_BYTES:
            return
        nalus = split_annexb_nalus(annexb_4_to_3(bytes(self._video_ps)))
        sps_list = [n for n in nalus if n[0] & 0x1F == NALU_SPS]
        pps_list = [n for n in nalus if n[0] & 0x1F == NALU_PPS]
        if not sps_list or not pps_list:
            return
        try:
            init = build_video_init(sps_list, pps_list, VIDEO_TIMESCALE)
        except ValueError as exc:
            logger.error(
                "publisher: DASH video init failed stream_code=%s err=%s",
                self.stream_id, exc,
            )
            return
        info = parse_sps(sps_list[0])
        self.width = info.width
        self.height = info.height
        self.video_codec = info.codec_string("avc1")
        self._video_ps = bytearray()
        try:
            write_file_atomic(os.path.join(self.stream_dir, "init_v.mp4"), init)
        except OSError as exc:
            logger.error(
                "publisher: DASH write init_v.mp4 failed stream_code=%s err=%s",
                self.stream_id, exc,
            )
            return
        self.has_video_init = True

    def _build_audio_init_locked(self, sample_rate: int) -> None:
        if sample_rate <= 0:
            raise ValueError("invalid AAC sample rate")
        init = build_audio_init(sample_rate, 2)
        write_file_atomic(os.path.join(self.stream_dir, "init_a.mp4"), init)
        self.has_audio_init = True
        self.audio_sample_rate = sample_rate
        self._audio_next_decode = 0
        self.audio_codec = AAC_LC_CODEC

    def _flush_locked(self) -> bool:
        flushed = False
        if self.has_video_init and self._v_annex:
            try:
                self._write_video_segment_locked()
                flushed = True
            except (ValueError, OSError) as exc:
                logger.warning(
                    "publisher: DASH write video segment stream_code=%s err=%s",
                    self.stream_id, exc,
                )
        if self.has_audio_init and self._a_raw:
            try:
                self._write_audio_segment_locked()
                flushed = True
            except (ValueError, OSError) as exc:
                logger.warning(
                    "publisher: DASH write audio segment stream_code=%s err=%s",
                    self.stream_id, exc,
                )

        self._v_annex.clear()
        self._v_dts.clear()
        self._v_pts.clear()
        self._a_raw.clear()
        self._a_pts.clear()
        self._segment_start = self._clock()

        if not flushed:
            return False
        if self.availability_start is None:
            self.availability_start = self._now()
        self._trim_disk_locked()
        self._write_manifest_locked()
        return True

    def _write_video_segment_locked(self) -> None:
        number = self._v_seg_n + 1
        name = f"seg_v_{number:05d}.m4s"
        count = len(self._v_annex)
        dts, pts = self._v_dts, self._v_pts
        samples: list[Sample] = []
        seg_dur = 0
        for i, au in enumerate(self._v_annex):
            avcc = annexb_to_avcc(au)
            if not avcc:
                continue
            dur = 0
            if i + 1 < len(dts):
                delta = (dts[i + 1] - dts[i]) % _U64
                if delta > 0:
                    dur = (delta * 90) & _U32
            if dur == 0:
                if len(dts) >= 2:
                    total = (((dts[-1] - dts[0]) % _U64) * 90) % _U64
                    dur = (total // count) & _U32
                if dur == 0:
                    dur = ((self.seg_sec * VIDEO_TIMESCALE) & _U32) // count
            cto = 0
            if i < len(pts) and i < len(dts):
                cto = _to_int32((pts[i] - dts[i]) * 90)
            samples.append(
                Sample(
                    data=avcc,
                    duration=dur,
                    decode_time=self._video_next_decode + seg_dur,
                    is_sync=is_h264_idr(au),
                    composition_time_offset=cto,
                )
            )
            seg_dur += dur
        if seg_dur == 0:
            return

        data = build_media_segment(number, TRACK_ID, samples)
        write_file_atomic(os.path.join(self.stream_dir, name), data)
        logger.debug(
            "publisher: DASH video segment stream_code=%s segment=%s frames=%d bytes=%d",
            self.stream_id, name, count, len(data),
        )
        self._v_seg_n = number
        self._video_window.segments.append(name)
        self._video_window.durations.append(seg_dur)
        self._video_window.starts.append(self._video_next_decode)
        self._video_next_decode += seg_dur

    def _write_audio_segment_locked(self) -> None:
        number = self._a_seg_n + 1
        name = f"seg_a_{number:05d}.m4s"
        samples = [
            Sample(
                data=raw,
                duration=AAC_FRAME_SAMPLES,
                decode_time=self._audio_next_decode + i * AAC_FRAME_SAMPLES,
                is_sync=True,
            )
            for i, raw in enumerate(self._a_raw)
        ]
        seg_dur = AAC_FRAME_SAMPLES * len(samples)
        if seg_dur == 0:
            return

        data = build_media_segment(number, TRACK_ID, samples)
        write_file_atomic(os.path.join(self.stream_dir, name), data)
        self._a_seg_n = number
        self._audio_window.segments.append(name)
        self._audio_window.durations.append(seg_dur)
        self._audio_window.starts.append(self._audio_next_decode)
        self._audio_next_decode += seg_dur

    def _trim_disk_locked(self) -> None:
        if not self.ephemeral:
            return
        max_keep = max(self.window + self.history, self.window)
        for win in (self._video_window, self._audio_window):
            while len(win.segments) > max_keep:
                old = win.segments.pop(0)
                try:
                    os.remove(os.path.join(self.stream_dir, old))
                except OSError:
                    pass
                if win.durations:
                    win.durations.pop(0)
                if win.starts:
                    win.starts.pop(0)

    def _write_manifest_locked(self) -> None:
        if not self.manifest_path and self.abr_master is None:
            return
        if self.abr_master is not None:
            self.abr_master.on_shard_updated(self)
            return

        video = None
        if self.has_video_init:
            video = VideoTrack(
                codec=self.video_codec,
                bandwidth=self.effective_video_bandwidth(),
                width=self.width,
                height=self.height,
                window=self._video_window.tail(self.window),
            )
        audio = None
        if self.has_audio_init:
            audio = AudioTrack(
                codec=self.audio_codec,
                sample_rate=self.audio_sample_rate,
                window=self._audio_window.tail(self.window),
            )
        root = build_mpd(self.availability_start, self.seg_sec, self.window, video, audio, "")
        if root is None:
            return
        write_file_atomic(self.manifest_path, mpd_to_bytes(root))