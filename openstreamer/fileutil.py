"""Small filesystem helpers shared by the segment publishers."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Sequence
from typing import TypeVar, Union

T = TypeVar("T")

PathLike = Union[str, "os.PathLike[str]"]


def window_tail(values: Sequence[T], n: int) -> Sequence[T]:
    """Return the last ``n`` items of ``values``.

    When ``n`` is not positive, or ``values`` holds no more than ``n`` items,
    ``values`` is returned unchanged.
    """
    if n <= 0 or len(values) <= n:
        return values
    return values[-n:]


def write_file_atomic(path: PathLike, data: bytes) -> None:
    """Write ``data`` to ``path`` so that readers never see a partial file.

    The bytes go to a temporary file in the same directory, which is then
    renamed over ``path``.
    """
    directory = os.path.dirname(os.fspath(path)) or "."
    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        raise


def reset_output_dir(path: PathLike) -> None:
    """Remove ``path`` entirely, then recreate it as an empty directory."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    os.makedirs(path, mode=0o755, exist_ok=True)