"""JSON-file persistence for streams, recordings and hooks.

Each entity type lives in its own file (``streams.json``, ``recordings.json``,
``hooks.json``) as a JSON object keyed by the entity's identifier. Writes go
to a ``.tmp`` file that is then renamed into place.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Mapping
from typing import Any

Record = dict[str, Any]


class NotFoundError(LookupError):
    """Raised by lookups when the entity does not exist."""

    def __init__(self, kind: str, key: object) -> None:
        super().__init__(f"{kind} {key}: store: not found")
        self.kind = kind
        self.key = key


class JSONStore:
    """Persists entities as JSON documents under one directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = os.fspath(directory)
        os.makedirs(self.directory, mode=0o755, exist_ok=True)
        self._lock = threading.RLock()

    def streams(self) -> "StreamRepository":
        """Return the stream repository backed by this store."""
        return StreamRepository(self)

    def recordings(self) -> "RecordingRepository":
        """Return the recording repository backed by this store."""
        return RecordingRepository(self)

    def hooks(self) -> "HookRepository":
        """Return the hook repository backed by this store."""
        return HookRepository(self)

    def _read(self, name: str) -> dict[str, Record]:
        path = os.path.join(self.directory, name)
        with self._lock:
            try:
                with open(path, encoding="utf-8") as fh:
                    text = fh.read()
            except FileNotFoundError:
                return {}
        data = json.loads(text)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"json store: {name}: expected a JSON object")
        return data

    def _write(self, name: str, records: Mapping[str, Record]) -> None:
        ordered = dict(sorted(records.items()))
        payload = json.dumps(ordered, indent=2, ensure_ascii=False)
        path = os.path.join(self.directory, name)
        tmp = path + ".tmp"
        with self._lock:
            with open(tmp, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, path)


class _Repository:
    _file = ""
    _kind = ""
    _key = ""

    def __init__(self, store: JSONStore) -> None:
        self._store = store

    def _load(self) -> dict[str, Record]:
        return self._store._read(self._file)

    def _put(self, record: Mapping[str, Any]) -> None:
        key = str(record[self._key])
        with self._store._lock:
            records = self._load()
            records[key] = dict(record)
            self._store._write(self._file, records)

    def _get(self, key: object) -> Record:
        records = self._load()
        try:
            return records[str(key)]
        except KeyError:
            raise NotFoundError(self._kind, key) from None

    def _remove(self, key: object) -> None:
        with self._store._lock:
            records = self._load()
            records.pop(str(key), None)
            self._store._write(self._file, records)


class StreamRepository(_Repository):
    """Stream configurations, keyed by their ``code`` field."""

    _file = "streams.json"
    _kind = "stream"
    _key = "code"

    def save(self, stream: Mapping[str, Any]) -> None:
        """Insert or replace ``stream``."""
        self._put(stream)

    def find_by_code(self, code: str) -> Record:
        """Return the stream with ``code``; raise NotFoundError if absent."""
        return self._get(code)

    def list(self, status: str | None = None) -> list[Record]:
        """Return all streams, optionally only those with ``status``."""
        return [
            record
            for record in self._load().values()
            if status is None or record.get("status") == status
        ]

    def delete(self, code: str) -> None:
        """Remove the stream with ``code``; missing codes are ignored."""
        self._remove(code)


class RecordingRepository(_Repository):
    """DVR recording metadata, keyed by ``id`` and linked by ``stream_code``."""

    _file = "recordings.json"
    _kind = "recording"
    _key = "id"

    def save(self, recording: Mapping[str, Any]) -> None:
        """Insert or replace ``recording``."""
        self._put(recording)

    def find_by_id(self, recording_id: str) -> Record:
        """Return the recording; raise NotFoundError if absent."""
        return self._get(recording_id)

    def list_by_stream(self, stream_code: str) -> list[Record]:
        """Return every recording belonging to ``stream_code``."""
        return [
            record
            for record in self._load().values()
            if record.get("stream_code") == stream_code
        ]

    def delete(self, recording_id: str) -> None:
        """Remove the recording; missing ids are ignored."""
        self._remove(recording_id)


class HookRepository(_Repository):
    """Webhook configurations, keyed by their ``id`` field."""

    _file = "hooks.json"
    _kind = "hook"
    _key = "id"

    def save(self, hook: Mapping[str, Any]) -> None:
        """Insert or replace ``hook``."""
        self._put(hook)

    def find_by_id(self, hook_id: str) -> Record:
        """Return the hook; raise NotFoundError if absent."""
        return self._get(hook_id)

    def list(self) -> list[Record]:
        """Return all hooks."""
        return list(self._load().values())

    def delete(self, hook_id: str) -> None:
        """Remove the hook; missing ids are ignored."""
        self._remove(hook_id)