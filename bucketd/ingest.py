"""Streaming multi-file upload into a bucket."""

from __future__ import annotations

import re
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass

import structlog

from bucketd.errors import BucketError, BucketNotFound, PayloadTooLarge, StorageError
from bucketd.models import DEFAULT_MIME, Bucket, StoredFile
from bucketd.storage.archive import ArchiveCache
from bucketd.storage.file_store import FileStore, PartialWrite, safe_name
from bucketd.storage.hasher import DEFAULT_ALGORITHM, ContentHasher

logger = structlog.get_logger()

_MIME_RE = re.compile(r"^[\w!#$&^.+-]+/[\w!#$&^.+-]+(\s*;.*)?$")


def normalize_mime(mime: str | None) -> str:
    """Return ``mime`` if it looks like a real media type, else the binary default."""
    value = (mime or "").strip()
    if not value or not _MIME_RE.match(value):
        return DEFAULT_MIME
    return value


async def _each(files):
    if isinstance(files, AsyncIterable):
        async for item in files:
            yield item
    else:
        for item in files:
            yield item


@dataclass
class IncomingFile:
    """One file of an upload request, as a stream of byte chunks."""

    name: str | None
    chunks: AsyncIterator[bytes]
    mime: str | None = None


class UploadIngestor:
    """Streams uploads to disk, hashing on the way, and upserts file entries.

    Each file goes chunk by chunk through the size check, the hasher and a
    partial file in the bucket's storage area.  Only a fully received file
    is committed: under the bucket lock it is renamed onto its final name,
    its entry replaces the existing one in place (or is appended), and the
    cached archive is invalidated.  Any failure before that point discards
    the partial file and leaves the bucket exactly as it was.
    """

    def __init__(
        self,
        store: FileStore,
        archives: ArchiveCache,
        max_file_size: int,
        max_files: int,
        hash_algorithm: str = DEFAULT_ALGORITHM,
    ):
        self.store = store
        self.archives = archives
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.hash_algorithm = hash_algorithm

    async def ingest(
        self, bucket: Bucket, files: Iterable[IncomingFile] | AsyncIterable[IncomingFile]
    ) -> Bucket:
        """Ingest ``files`` in order, pulling each one only when it is due.

        ``files`` may be produced lazily, e.g. while a request body is still
        arriving.  At most ``max_files`` are accepted; the accepted ones stay
        committed and ``PayloadTooLarge`` is raised as soon as another file
        shows up, before any of its bytes are read.
        """
        accepted = 0
        async for incoming in _each(files):
            if accepted == self.max_files:
                logger.warning(
                    "upload_file_count_exceeded",
                    bucket_id=bucket.id,
                    accepted=accepted,
                    rejected_name=incoming.name,
                )
                raise PayloadTooLarge(f"Too many files: at most {self.max_files} per upload")
            await self.ingest_one(bucket, incoming)
            accepted += 1
        return bucket

    async def ingest_one(self, bucket: Bucket, incoming: IncomingFile) -> StoredFile:
        name = safe_name(incoming.name)
        if bucket.closed:
            raise BucketNotFound()

        logger.info("file_received", bucket_id=bucket.id, name=name)
        try:
            partial = await self.store.open_partial(bucket.id)
        except OSError as e:
            raise self._storage_failure(bucket, name, e) from e

        try:
            hasher = await self._stream(partial, incoming, name)
            async with bucket.lock:
                if bucket.closed:
                    raise BucketNotFound()
                await self.store.commit(partial, bucket.id, name)
                stored = StoredFile(
                    name=name,
                    size=hasher.size,
                    mime=normalize_mime(incoming.mime),
                    sha1=hasher.hexdigest(),
                )
                idx = bucket.find_file(name)
                if idx == -1:
                    bucket.files.append(stored)
                else:
                    bucket.files[idx] = stored
                await self.archives.invalidate(bucket)
        except OSError as e:
            await self.store.discard(partial)
            raise self._storage_failure(bucket, name, e) from e
        except BaseException:
            # Includes CancelledError from a dropped client connection.
            await self.store.discard(partial)
            raise

        logger.info(
            "file_committed",
            bucket_id=bucket.id,
            name=name,
            size=stored.size,
            replaced=idx != -1,
        )
        return stored

    async def delete_file(self, bucket: Bucket, idx_or_name: str) -> StoredFile:
        """Remove one file by index or name and invalidate the archive."""
        async with bucket.lock:
            if bucket.closed:
                raise BucketNotFound()
            idx, stored = bucket.resolve_file(idx_or_name)
            try:
                await self.store.delete(bucket.id, stored.name)
            except StorageError as e:
                logger.error(
                    "file_delete_error",
                    bucket_id=bucket.id,
                    name=stored.name,
                    error=str(e.__cause__ or e),
                )
                raise
            del bucket.files[idx]
            await self.archives.invalidate(bucket)

        logger.info("file_deleted", bucket_id=bucket.id, name=stored.name)
        return stored

    async def _stream(self, partial: PartialWrite, incoming: IncomingFile, name: str) -> ContentHasher:
        hasher = ContentHasher(self.hash_algorithm)
        async for chunk in incoming.chunks:
            if not chunk:
                continue
            if hasher.size + len(chunk) > self.max_file_size:
                limit_mb = self.max_file_size / (1024 * 1024)
                raise PayloadTooLarge(f"File {name} is too large (max {limit_mb:g} MB)")
            hasher.update(chunk)
            await partial.write(chunk)
        return hasher

    def _storage_failure(self, bucket: Bucket, name: str, error: OSError) -> BucketError:
        if bucket.closed or not self.store.area_exists(bucket.id):
            return BucketNotFound()
        logger.error("file_write_error", bucket_id=bucket.id, name=name, error=str(error))
        return StorageError()
