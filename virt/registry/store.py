"""File-based JSON storage for VIRT name records.

A simple, file-system-backed store for a single registrar process. Records
live in ``names.json`` under the data directory and are held in an
in-memory index, in insertion order, while the store is open.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
import time
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from virt.registrar.errors import Conflict, NotFound, StorageUnavailable
from virt.registry.models import NameRecord, SearchQuery, utcnow

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")

Key = tuple[str, str]


def _tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


class NameStore:
    """Persistent collection of :class:`NameRecord` keyed by ``(label, tag)``.

    ``insert`` checks uniqueness and writes under one store-wide lock, so two
    racing registrations of the same key cannot both succeed. Read-verify-write
    sequences on an existing record go through :meth:`transaction`, which
    holds one of a fixed pool of key locks.

    Access times set by :meth:`touch` are kept in memory and written with the
    next index write, or at most ``access_flush_interval`` seconds later.
    Call :meth:`flush` before shutdown to persist the rest.
    """

    INDEX_FILE = "names.json"
    LOCK_STRIPES = 64
    ACCESS_FLUSH_INTERVAL = 30.0

    # Relevance weight per indexed field
    SEARCH_WEIGHTS = {
        "title": 10,
        "keywords": 5,
        "description": 3,
        "body_text": 1,
    }
    DEFAULT_SEARCH_LIMIT = 20

    def __init__(self, data_dir: str | Path, access_flush_interval: float = ACCESS_FLUSH_INTERVAL) -> None:
        self.data_dir = Path(data_dir)
        self.index_path = self.data_dir / self.INDEX_FILE
        self.access_flush_interval = access_flush_interval
        self._lock = threading.RLock()
        self._record_locks = [threading.Lock() for _ in range(self.LOCK_STRIPES)]
        self._dirty = False
        self._last_flush = time.monotonic()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._records: dict[Key, dict] = self._load_index()
            if not self.index_path.exists():
                self._save_index()
        except OSError as exc:
            raise StorageUnavailable(f"Cannot open registry at {self.data_dir}: {exc}") from exc
        logger.debug("Opened registry %s with %d records", self.index_path, len(self._records))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find(self, label: str, tag: str) -> Optional[NameRecord]:
        with self._lock:
            data = self._records.get((label, tag))
            return _dict_to_record(data) if data else None

    def exists(self, label: str, tag: str) -> bool:
        with self._lock:
            return (label, tag) in self._records

    def list_all(self) -> list[NameRecord]:
        with self._lock:
            return [_dict_to_record(d) for d in self._records.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, record: NameRecord) -> NameRecord:
        """Add a new record. Raises :class:`Conflict` if its key is taken."""
        with self._lock:
            if record.key in self._records:
                raise Conflict(f"{record.name} is already registered")
            self._records[record.key] = _record_to_dict(record)
            try:
                self._save_index()
            except OSError:
                del self._records[record.key]
                raise
        return record

    def save(self, record: NameRecord) -> NameRecord:
        """Persist changes to an existing record."""
        with self._lock:
            current = self._records.get(record.key)
            if current is None or current["id"] != record.id:
                raise NotFound(f"{record.name} is not registered")
            self._records[record.key] = _record_to_dict(record)
            try:
                self._save_index()
            except OSError:
                self._records[record.key] = current
                raise
        return record

    def remove(self, record_id: str) -> bool:
        """Permanently delete the record with *record_id*."""
        with self._lock:
            key = next((k for k, d in self._records.items() if d["id"] == record_id), None)
            if key is None:
                return False
            previous = dict(self._records)
            del self._records[key]
            try:
                self._save_index()
            except OSError:
                self._records = previous
                raise
        return True

    def touch(self, label: str, tag: str) -> Optional[NameRecord]:
        """Refresh ``last_accessed`` for ``(label, tag)`` and return the record.

        The new time is visible at once; writing it to disk is deferred.
        """
        with self._lock:
            data = self._records.get((label, tag))
            if data is None:
                return None
            data["last_accessed"] = utcnow()
            self._dirty = True
            record = _dict_to_record(data)
            due = time.monotonic() - self._last_flush >= self.access_flush_interval
        if due:
            try:
                self.flush()
            except OSError:
                logger.exception("Could not write access times to %s", self.index_path)
        return record

    def flush(self) -> None:
        """Write pending access times to disk."""
        with self._lock:
            if self._dirty:
                self._save_index()

    @contextmanager
    def transaction(self, label: str, tag: str) -> Iterator[Optional[NameRecord]]:
        """Hold the lock for ``(label, tag)`` and yield its current record.

        Keys are spread over a fixed pool of locks, so most other keys stay
        available to concurrent callers for the duration.
        """
        lock = self._record_locks[hash((label, str(getattr(tag, "value", tag)))) % self.LOCK_STRIPES]
        with lock:
            yield self.find(label, tag)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str | SearchQuery, limit: int = DEFAULT_SEARCH_LIMIT) -> list[NameRecord]:
        """Rank records by weighted term frequency over the indexed fields.

        Records that match no term are left out. Equal scores keep insertion
        order, since the sort is stable over the insertion-ordered index.
        """
        if isinstance(query, SearchQuery):
            text, limit = query.text, query.limit
        else:
            text = query
        terms = set(_tokens(text))
        if not terms or limit <= 0:
            return []

        with self._lock:
            snapshot = list(self._records.values())

        scored: list[tuple[int, dict]] = []
        for data in snapshot:
            score = _score(data, terms, self.SEARCH_WEIGHTS)
            if score > 0:
                scored.append((score, data))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [_dict_to_record(data) for _, data in scored[:limit]]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_index(self) -> dict[Key, dict]:
        if not self.index_path.exists():
            return {}
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StorageUnavailable(f"Registry index {self.index_path} is corrupt: {exc}") from exc
        if not isinstance(data, list):
            raise StorageUnavailable(f"Registry index {self.index_path} must hold a list")
        try:
            return {(d["label"], d["tag"]): d for d in data}
        except (KeyError, TypeError) as exc:
            raise StorageUnavailable(f"Registry index {self.index_path} has a malformed record") from exc

    def _save_index(self) -> None:
        payload = json.dumps(list(self._records.values()), indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=".names-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.index_path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._dirty = False
        self._last_flush = time.monotonic()


def _score(data: dict, terms: set[str], weights: dict[str, int]) -> int:
    score = 0
    for field_name, weight in weights.items():
        value = data.get(field_name) or ""
        if isinstance(value, list):
            value = " ".join(value)
        counts = Counter(_tokens(value))
        score += weight * sum(counts[t] for t in terms)
    return score


def _record_to_dict(record: NameRecord) -> dict:
    return {
        "id": record.id,
        "label": record.label,
        "tag": record.tag.value,
        "target": record.target,
        "secret_digest": record.secret_digest,
        "title": record.title,
        "description": record.description,
        "verified": record.verified,
        "keywords": list(record.keywords),
        "body_text": record.body_text,
        "created_at": record.created_at,
        "last_accessed": record.last_accessed,
        "indexed_at": record.indexed_at,
    }


def _dict_to_record(data: dict) -> NameRecord:
    return NameRecord(
        id=data["id"],
        label=data["label"],
        tag=data["tag"],
        target=data["target"],
        secret_digest=data["secret_digest"],
        title=data.get("title", ""),
        description=data.get("description", ""),
        verified=data.get("verified", False),
        keywords=list(data.get("keywords", [])),
        body_text=data.get("body_text", ""),
        created_at=data.get("created_at", ""),
        last_accessed=data.get("last_accessed", ""),
        indexed_at=data.get("indexed_at", ""),
    )
