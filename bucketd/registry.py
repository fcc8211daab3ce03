"""The in-memory map of live buckets."""

from __future__ import annotations

import secrets
import string
from collections.abc import Iterable
from datetime import timedelta

import structlog

from bucketd.errors import InvalidRequest, StorageError
from bucketd.models import Bucket, utcnow
from bucketd.storage.file_store import FileStore

logger = structlog.get_logger()

ID_LENGTH = 32
_ID_ALPHABET = string.ascii_letters + string.digits


def generate_id(length: int = ID_LENGTH) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class BucketRegistry:
    """Owns every live :class:`Bucket` and its storage area.

    A bucket is published only after its storage area exists, and is
    unpublished before teardown starts, so lookups never see a bucket that
    is half built or half destroyed.
    """

    def __init__(self, store: FileStore, default_ttl_minutes: int = 30):
        self.store = store
        self.default_ttl_minutes = default_ttl_minutes
        self._buckets: dict[str, Bucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    async def create(self, ttl_minutes: int | None = None) -> Bucket:
        ttl = ttl_minutes or self.default_ttl_minutes
        if ttl <= 0:
            ttl = self.default_ttl_minutes
        created_at = utcnow()
        try:
            created_at + timedelta(minutes=ttl)
        except OverflowError as e:
            raise InvalidRequest(f"TTL out of range: {ttl}") from e

        bucket_id = generate_id()
        # Skip ids still registered or whose directory is being torn down.
        while bucket_id in self._buckets or self.store.area_exists(bucket_id):
            bucket_id = generate_id()

        await self.store.create_area(bucket_id)
        bucket = Bucket(id=bucket_id, ttl_minutes=ttl, created_at=created_at)
        self._buckets[bucket_id] = bucket
        logger.info("bucket_created", bucket_id=bucket_id, ttl=ttl)
        return bucket

    def get(self, bucket_id: str) -> Bucket | None:
        return self._buckets.get(bucket_id)

    def list_all(self) -> list[Bucket]:
        return list(self._buckets.values())

    def list_by_ids(self, ids: Iterable[str]) -> list[Bucket]:
        """Resolve ``ids`` in order, silently dropping unknown ones."""
        found = []
        for bucket_id in ids:
            bucket = self._buckets.get(bucket_id)
            if bucket is not None:
                found.append(bucket)
        return found

    async def delete(self, bucket_id: str, reason: str = "deleted") -> Bucket | None:
        """Remove a bucket and its storage.

        Returns the removed bucket, or ``None`` when no such bucket is live.
        Waits for any in-flight commit or archive build on the bucket to
        finish before removing its files.
        """
        bucket = self._buckets.pop(bucket_id, None)
        if bucket is None:
            return None

        async with bucket.lock:
            bucket.closed = True
            bucket.archive = None
            try:
                await self.store.remove_area(bucket_id)
            except StorageError as e:
                logger.error(
                    "storage_teardown_error",
                    bucket_id=bucket_id,
                    error=str(e.__cause__ or e),
                )

        logger.info("bucket_removed", bucket_id=bucket_id, reason=reason)
        return bucket

    async def purge(self) -> int:
        """Delete every live bucket. Returns how many were removed."""
        ids = list(self._buckets)
        for bucket_id in ids:
            await self.delete(bucket_id, reason="purged")
        return len(ids)
