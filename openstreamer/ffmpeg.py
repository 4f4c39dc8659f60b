"""FFmpeg subprocess wrapper with piped stdin/stdout and logged stderr."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import IO, Sequence

logger = logging.getLogger(__name__)

_TERM_GRACE_SECONDS = 2.0


def stderr_level(line: str) -> int:
    """Return the logging level for one FFmpeg stderr line."""
    lower = line.lower()
    if "error" in lower or "fatal" in lower:
        return logging.ERROR
    return logging.DEBUG


def _drain_stderr(stream: IO[bytes]) -> None:
    with stream:
        for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            logger.log(stderr_level(line), "ffmpeg: stderr: %s", line)


class FFmpegProcess:
    """A running FFmpeg process in its own process group.

    Use as a context manager to guarantee the process is terminated.
    """

    def __init__(self, popen: subprocess.Popen) -> None:
        self._popen = popen
        self.stdin: IO[bytes] | None = popen.stdin
        self.stdout: IO[bytes] | None = popen.stdout
        self._stderr_thread: threading.Thread | None = None
        if popen.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=_drain_stderr, args=(popen.stderr,), daemon=True
            )
            self._stderr_thread.start()

    def __enter__(self) -> "FFmpegProcess":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def pid(self) -> int:
        """Return the process id, or 0 when there is no process."""
        return self._popen.pid or 0

    def wait(self) -> int:
        """Wait for exit and return the exit code."""
        code = self._popen.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=_TERM_GRACE_SECONDS)
        return code

    def _signal_group(self, sig: int) -> None:
        pid = self._popen.pid
        try:
            if hasattr(os, "killpg"):
                os.killpg(pid, sig)
            elif sig == getattr(signal, "SIGKILL", None):
                self._popen.kill()
            else:
                self._popen.terminate()
        except ProcessLookupError:
            pass

    def close(self) -> None:
        """Close stdin and stop the process group; safe to call repeatedly."""
        if self.stdin is not None and not self.stdin.closed:
            try:
                self.stdin.close()
            except OSError:
                pass
        if self._popen.pid is None or self._popen.pid <= 0:
            return
        if self._popen.poll() is None:
            self._signal_group(signal.SIGTERM)
            try:
                self._popen.wait(timeout=_TERM_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                self._signal_group(getattr(signal, "SIGKILL", signal.SIGTERM))
                self._popen.wait()
        if self.stdout is not None and not self.stdout.closed:
            self.stdout.close()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=_TERM_GRACE_SECONDS)


def start_ffmpeg(ffmpeg_path: str, args: Sequence[str]) -> FFmpegProcess:
    """Launch ``ffmpeg_path`` with ``args`` and piped stdin, stdout and stderr.

    Raises ``OSError`` when the executable cannot be started.
    """
    popen = subprocess.Popen(
        [ffmpeg_path, *args],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )
    return FFmpegProcess(popen)