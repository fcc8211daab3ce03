"""In-memory bucket state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from bucketd.errors import FileNotFoundInBucket

DEFAULT_MIME = "application/octet-stream"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredFile:
    """A file held in a bucket. ``name`` is compared as an exact string."""

    name: str
    size: int
    mime: str
    sha1: str
    uploaded_at: datetime = field(default_factory=utcnow)
    downloads: int = 0


@dataclass(frozen=True)
class ArchiveInfo:
    """A built bucket.zip artifact."""

    path: Path
    size: int
    sha1: str


@dataclass(eq=False)
class Bucket:
    """A time-limited container of files and metadata.

    ``files``, ``metadata`` and ``archive`` are only mutated by the
    registry, ingestor, archive cache and metadata helpers while holding
    ``lock``.  ``closed`` is set once the bucket has been torn down; a closed
    bucket is never registered again.
    """

    id: str
    ttl_minutes: int
    created_at: datetime
    files: list[StoredFile] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    archive: ArchiveInfo | None = None
    downloads: int = 0
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(minutes=self.ttl_minutes)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def find_file(self, name: str) -> int:
        """Return the index of the file called ``name``, or -1."""
        for i, f in enumerate(self.files):
            if f.name == name:
                return i
        return -1

    def resolve_file(self, idx_or_name: str) -> tuple[int, StoredFile]:
        """Look a file up by position (all digits) or by name."""
        if idx_or_name.isdecimal():
            idx = int(idx_or_name)
        else:
            idx = self.find_file(idx_or_name)
        if idx < 0 or idx >= len(self.files):
            raise FileNotFoundInBucket()
        return idx, self.files[idx]
