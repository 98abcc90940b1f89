"""Audit trail for registrar mutations.

Every register, update and delete attempt, accepted or rejected, is appended
as one JSON line to a daily file under ``<data_dir>/audit/``. Entries name
the record and the outcome; secrets and digests are never written.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


@dataclass
class AuditEntry:
    """A single audit log entry."""

    id: str
    timestamp: str
    action: str
    name: str
    success: bool = True
    reason: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class AuditLog:
    """Append-only JSONL audit log, one file per UTC day."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _current_log_file(self) -> Path:
        return self._base_dir / f"{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.jsonl"

    def _read_all_entries(self) -> list[AuditEntry]:
        entries: list[AuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for line in path.read_text(encoding="utf-8").splitlines():
                if line.strip():
                    entries.append(AuditEntry(**json.loads(line)))
        return entries

    def record(
        self,
        action: str,
        name: str,
        *,
        success: bool = True,
        reason: str = "",
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append an event and return the created entry."""
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            name=name,
            success=success,
            reason=reason,
            details=details or {},
        )
        with self._lock, self._current_log_file().open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(entry)) + "\n")
        return entry

    def get_events(
        self,
        *,
        action: Optional[str] = None,
        name: Optional[str] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered audit events, newest first."""
        entries = self._read_all_entries()
        if action:
            entries = [e for e in entries if e.action == action]
        if name:
            entries = [e for e in entries if e.name == name]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]
