"""Bucket metadata updates."""

from __future__ import annotations

from typing import Any

from bucketd.errors import BucketNotFound, InvalidRequest
from bucketd.models import Bucket


def _require_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidRequest("Metadata must be a JSON object")
    return value


async def set_metadata(bucket: Bucket, new: dict[str, Any] | None) -> Bucket:
    """Replace the bucket's metadata wholesale."""
    new = _require_mapping(new)
    async with bucket.lock:
        if bucket.closed:
            raise BucketNotFound()
        if new or bucket.metadata:
            bucket.metadata = dict(new)
    return bucket


async def patch_metadata(bucket: Bucket, partial: dict[str, Any] | None) -> Bucket:
    """Merge top-level keys of ``partial`` into the existing metadata."""
    partial = _require_mapping(partial)
    async with bucket.lock:
        if bucket.closed:
            raise BucketNotFound()
        if partial:
            bucket.metadata = {**bucket.metadata, **partial}
    return bucket
