"""Live HLS segmenter: MPEG-TS segments plus a sliding-window m3u8 playlist."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .fileutil import window_tail, write_file_atomic
from .tsmux import TSAligner

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_SECONDS = 2
DEFAULT_WINDOW = 12


class ShardListener(Protocol):
    """Receives a notice after each rendition playlist update."""

    def on_shard_updated(self, slug: str, bandwidth: int, width: int, height: int) -> None:
        ...


@dataclass(frozen=True)
class SegmentEntry:
    """One segment kept in the sliding window."""

    name: str
    duration: float
    discontinuity: bool = False


def hls_codec_string(width: int, height: int) -> str:
    """Return a representative H.264 CODECS value for a rendition size."""
    pixels = width * height
    if pixels >= 1920 * 1080:
        return "avc1.640028"
    if pixels >= 1280 * 720:
        return "avc1.4d401f"
    return "avc1.42e01e"


class HLSSegmenter:
    """Accumulates TS packets into segments and maintains the playlist.

    Segments are cut on keyframes once ``seg_sec`` has elapsed, on
    discontinuities, on a failover generation change, or forcibly after
    1.5 x ``seg_sec`` without a cut.
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
        failover_gen: Callable[[], int] | None = None,
        abr_master: ShardListener | None = None,
        abr_slug: str = "",
        bandwidth: int = 0,
        width: int = 0,
        height: int = 0,
        clock: Callable[[], float] = time.monotonic,
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
        self.bandwidth = bandwidth
        self.width = width
        self.height = height
        self._clock = clock
        self._failover_gen = failover_gen or (lambda: 0)
        self._known_gen = self._failover_gen()

        self._lock = threading.Lock()
        self._aligner = TSAligner()
        self._seg_buf = bytearray()
        self._seg_start: float | None = None
        self._disc_next = False
        self._seg_n = 0
        self._on_disk: list[SegmentEntry] = []

    @property
    def entries(self) -> tuple[SegmentEntry, ...]:
        """Segments currently tracked on disk, oldest first."""
        with self._lock:
            return tuple(self._on_disk)

    @property
    def segment_count(self) -> int:
        """Number of segment names allocated so far."""
        with self._lock:
            return self._seg_n

    @property
    def pending_bytes(self) -> int:
        """Bytes accumulated for the segment in progress."""
        with self._lock:
            return len(self._seg_buf)

    def write_ts(self, data: bytes) -> int:
        """Append raw TS bytes; return the number of aligned packets taken."""
        packets = self._aligner.feed(data)
        if not packets:
            return 0
        with self._lock:
            for packet in packets:
                if self._seg_start is None:
                    self._seg_start = self._clock()
                self._seg_buf += packet
        return len(packets)

    def mark_discontinuity(self) -> None:
        """Cut the current segment and tag the next one as discontinuous."""
        with self._lock:
            if self._seg_buf:
                self._flush_locked()
            self._disc_next = True

    def on_key_frame(self) -> bool:
        """Cut before a keyframe once the segment is long enough.

        Returns True when a segment was cut.
        """
        with self._lock:
            if (
                self._seg_buf
                and self._seg_start is not None
                and self._clock() - self._seg_start >= self.seg_sec
            ):
                return self._flush_locked()
        return False

    def tick(self) -> bool:
        """Periodic check for failover and the force-flush deadline.

        Returns True when a segment was cut.
        """
        with self._lock:
            if not self._seg_buf or self._seg_start is None:
                return False
            gen = self._failover_gen()
            if gen != self._known_gen:
                self._known_gen = gen
                flushed = self._flush_locked()
                self._disc_next = True
                return flushed
            if self._clock() - self._seg_start >= self.seg_sec * 1.5:
                return self._flush_locked()
        return False

    def flush(self) -> bool:
        """Write out any pending segment data; True when a segment was cut."""
        with self._lock:
            if self._seg_buf:
                return self._flush_locked()
        return False

    def render_manifest(self) -> str:
        """Return the sliding-window media playlist text."""
        with self._lock:
            return self._render_locked()

    def _flush_locked(self) -> bool:
        if not self._seg_buf:
            return False
        start = self._seg_start if self._seg_start is not None else self._clock()
        duration = self._clock() - start
        if duration <= 0:
            duration = float(self.seg_sec)

        self._seg_n += 1
        name = f"seg_{self._seg_n:06d}.ts"
        path = os.path.join(self.stream_dir, name)

        data = bytes(self._seg_buf)
        self._seg_buf.clear()
        self._seg_start = None
        disc = self._disc_next
        self._disc_next = False

        try:
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            logger.warning(
                "publisher: HLS write segment failed stream_code=%s segment=%s err=%s",
                self.stream_id, name, exc,
            )
            return False

        logger.debug(
            "publisher: HLS segment flushed stream_code=%s segment=%s dur_s=%.3f bytes=%d",
            self.stream_id, name, duration, len(data),
        )
        self._on_disk.append(SegmentEntry(name, duration, disc))
        self._trim_disk_locked()
        try:
            self._write_manifest_locked()
        except OSError as exc:
            logger.warning(
                "publisher: HLS write manifest failed stream_code=%s err=%s",
                self.stream_id, exc,
            )
        return True

    def _trim_disk_locked(self) -> None:
        if not self.ephemeral:
            return
        max_keep = max(self.window + self.history, self.window)
        while len(self._on_disk) > max_keep:
            old = self._on_disk.pop(0)
            try:
                os.remove(os.path.join(self.stream_dir, old.name))
            except OSError:
                pass

    def _render_locked(self) -> str:
        win = window_tail(self._on_disk, self.window)
        target = max([self.seg_sec + 1, *(int(e.duration) + 1 for e in win)])
        media_seq = max(self._seg_n - len(win), 0)
        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{target}",
            f"#EXT-X-MEDIA-SEQUENCE:{media_seq}",
        ]
        for entry in win:
            if entry.discontinuity:
                lines.append("#EXT-X-DISCONTINUITY")
            lines.append(f"#EXTINF:{entry.duration:.6f},")
            lines.append(entry.name)
        return "\n".join(lines) + "\n"

    def _write_manifest_locked(self) -> None:
        if not self.manifest_path and self.abr_master is None:
            return
        payload = self._render_locked().encode()
        if self.abr_master is not None:
            self.abr_master.on_shard_updated(
                self.abr_slug, self.bandwidth, self.width, self.height
            )
        if self.manifest_path:
            write_file_atomic(self.manifest_path, payload)