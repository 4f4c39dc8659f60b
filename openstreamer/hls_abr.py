"""Master playlist for adaptive-bitrate HLS output.

Each rendition segmenter reports to an :class:`HLSABRMaster` after every
segment flush; the master debounces the notices and rewrites the root
``index.m3u8`` listing every rung of the ladder.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from .fileutil import write_file_atomic
from .hls import hls_codec_string

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.1


@dataclass(frozen=True)
class RenditionInfo:
    """One ladder rung as listed in the master playlist."""

    slug: str
    bandwidth: int
    width: int = 0
    height: int = 0
    has_data: bool = False


def render_master_playlist(renditions: Iterable[RenditionInfo]) -> str:
    """Return the master playlist text for ``renditions`` in the given order."""
    parts = ["#EXTM3U\n", "#EXT-X-VERSION:3\n", "\n"]
    for rendition in renditions:
        codec = hls_codec_string(rendition.width, rendition.height)
        resolution = ""
        if rendition.width > 0 and rendition.height > 0:
            resolution = f",RESOLUTION={rendition.width}x{rendition.height}"
        parts.append(
            f'#EXT-X-STREAM-INF:BANDWIDTH={rendition.bandwidth}{resolution},CODECS="{codec}"\n'
            f"{rendition.slug}/index.m3u8\n"
        )
    return "".join(parts)


def write_master_playlist(
    path: str | os.PathLike[str], renditions: Iterable[RenditionInfo]
) -> None:
    """Write the master playlist for ``renditions`` atomically to ``path``."""
    write_file_atomic(path, render_master_playlist(renditions).encode())


class HLSABRMaster:
    """Collects rendition updates and rewrites the root master playlist."""

    def __init__(
        self,
        root_path: str | os.PathLike[str],
        stream_id: str = "",
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.root_path = os.fspath(root_path)
        self.stream_id = stream_id
        self.debounce = debounce
        self._lock = threading.Lock()
        self._reps: dict[str, RenditionInfo] = {}
        self._timer: threading.Timer | None = None
        self._stopped = False

    @property
    def renditions(self) -> tuple[RenditionInfo, ...]:
        """Renditions that have reported data, sorted by slug."""
        with self._lock:
            return self._snapshot_locked()

    def on_shard_updated(self, slug: str, bandwidth: int, width: int, height: int) -> None:
        """Record a rendition update and schedule a debounced rewrite."""
        with self._lock:
            if self._stopped:
                return
            self._reps[slug] = RenditionInfo(slug, bandwidth, width, height, True)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> bool:
        """Rewrite the master playlist now; True when it was written."""
        with self._lock:
            reps = self._snapshot_locked()
        if not reps:
            return False
        try:
            write_master_playlist(self.root_path, reps)
        except OSError as exc:
            logger.warning(
                "publisher: HLS ABR master playlist write failed stream_code=%s err=%s",
                self.stream_id, exc,
            )
            return False
        return True

    def stop(self) -> bool:
        """Cancel any pending rewrite, ignore later updates and flush once."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._stopped = True
        return self.flush()

    def _snapshot_locked(self) -> tuple[RenditionInfo, ...]:
        return tuple(self._reps[s] for s in sorted(self._reps) if self._reps[s].has_data)