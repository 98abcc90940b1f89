"""Registry data models — name records and search queries."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Tag(str, Enum):
    """The closed set of reserved top-level tags."""

    vc = "vc"
    vmc = "vmc"
    at = "at"
    lit = "lit"


TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


@dataclass
class NameRecord:
    """A single registered VIRT name."""

    # Identity
    label: str
    tag: Tag
    target: str
    secret_digest: str
    id: str = ""

    # Display metadata
    title: str = ""
    description: str = ""
    verified: bool = False

    # Search content
    keywords: list[str] = field(default_factory=list)
    body_text: str = ""

    # Timestamps (ISO 8601, UTC)
    created_at: str = ""
    last_accessed: str = ""
    indexed_at: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.tag, str):
            self.tag = Tag(self.tag)
        if not self.id:
            self.id = uuid.uuid4().hex
        now = utcnow()
        if not self.created_at:
            self.created_at = now
        if not self.last_accessed:
            self.last_accessed = now
        if not self.indexed_at:
            self.indexed_at = now

    @property
    def key(self) -> tuple[str, str]:
        return self.label, self.tag.value

    @property
    def name(self) -> str:
        return f"{self.label}.{self.tag.value}"

    def touch(self) -> None:
        """Refresh ``last_accessed``."""
        self.last_accessed = utcnow()


@dataclass
class SearchQuery:
    """Query for the registry's weighted text index."""

    text: str = ""
    limit: int = 20
