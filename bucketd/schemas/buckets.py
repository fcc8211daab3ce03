"""Bucket info as returned by the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from bucketd.models import Bucket, StoredFile


def format_time(dt: datetime) -> str:
    """Render a timestamp like ``2015-05-05T01:50:35+00:00``."""
    return dt.isoformat(timespec="seconds")


class FileInfo(BaseModel):
    name: str
    uploaded: str
    size: int
    mime: str
    sha1: str
    downloads: int = 0

    @classmethod
    def from_file(cls, f: StoredFile) -> FileInfo:
        return cls(
            name=f.name,
            uploaded=format_time(f.uploaded_at),
            size=f.size,
            mime=f.mime,
            sha1=f.sha1,
            downloads=f.downloads,
        )


class BucketInfo(BaseModel):
    """Public view of a bucket. ``size``/``sha1`` describe the cached archive."""

    code: str = "OK"
    id: str
    time: str
    expires: str
    ttl: int
    files: list[FileInfo] = []
    metadata: dict[str, Any] = {}
    size: int | None = None
    sha1: str | None = None
    downloads: int = 0

    @classmethod
    def from_bucket(cls, bucket: Bucket) -> BucketInfo:
        archive = bucket.archive
        return cls(
            id=bucket.id,
            time=format_time(bucket.created_at),
            expires=format_time(bucket.expires_at),
            ttl=bucket.ttl_minutes,
            files=[FileInfo.from_file(f) for f in bucket.files],
            metadata=dict(bucket.metadata),
            size=archive.size if archive else None,
            sha1=archive.sha1 if archive else None,
            downloads=bucket.downloads,
        )
