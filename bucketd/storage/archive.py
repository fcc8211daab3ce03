"""Lazily built, cached bucket.zip archives."""

from __future__ import annotations

import asyncio
import shutil
import zipfile
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

import structlog

from bucketd.errors import ArchiveBuildError, BucketNotFound, StorageError
from bucketd.models import ArchiveInfo, Bucket, StoredFile
from bucketd.storage.file_store import FileStore
from bucketd.storage.hasher import ContentHasher, HashingWriter

logger = structlog.get_logger()


def _zip_time(dt: datetime) -> tuple[int, int, int, int, int, int]:
    return dt.timetuple()[:6]


class ArchiveCache:
    """Builds one zip per bucket and keeps it until the file set changes.

    The build-or-fetch sequence runs under the bucket lock: a request that
    arrives while a build is in flight waits for it and then finds the
    cached result, so each file-set revision is packaged at most once.
    """

    def __init__(self, store: FileStore):
        self.store = store

    async def get_or_build(self, bucket: Bucket) -> ArchiveInfo | None:
        """Return the bucket's archive, building it if needed.

        Returns ``None`` for a bucket without files.
        """
        async with bucket.lock:
            return await self._get_or_build_locked(bucket)

    async def open(self, bucket: Bucket) -> tuple[ArchiveInfo, BinaryIO] | None:
        """Like :meth:`get_or_build`, plus a read handle opened under the lock.

        Holding the handle keeps the bytes readable even if a later upload
        invalidates and unlinks the artifact mid-download.
        """
        async with bucket.lock:
            archive = await self._get_or_build_locked(bucket)
            if archive is None:
                return None
            try:
                fp = await self.store.open_read(archive.path)
            except OSError as e:
                logger.error("archive_open_error", bucket_id=bucket.id, error=str(e))
                bucket.archive = None
                raise StorageError() from e
            return archive, fp

    async def invalidate(self, bucket: Bucket) -> None:
        """Forget the cached archive and remove its file. Caller holds the lock."""
        archive = bucket.archive
        bucket.archive = None
        if archive is None:
            return
        if await self.store.unlink(archive.path):
            logger.info("archive_invalidated", bucket_id=bucket.id)
        else:
            logger.warning("archive_invalidate_error", bucket_id=bucket.id)

    async def _get_or_build_locked(self, bucket: Bucket) -> ArchiveInfo | None:
        if bucket.closed:
            raise BucketNotFound()
        if bucket.archive is not None:
            return bucket.archive
        if not bucket.files:
            return None

        path = self.store.archive_path(bucket.id)
        entries = [(self.store.file_path(bucket.id, f.name), f) for f in bucket.files]
        try:
            size, sha1 = await asyncio.to_thread(self._write_zip, path, entries)
        except (OSError, RuntimeError, ValueError, zipfile.BadZipFile) as e:
            await self.store.unlink(path)
            if bucket.closed or not self.store.area_exists(bucket.id):
                raise BucketNotFound() from e
            logger.error("archive_build_error", bucket_id=bucket.id, error=str(e))
            raise ArchiveBuildError() from e

        bucket.archive = ArchiveInfo(path=path, size=size, sha1=sha1)
        logger.info("archive_built", bucket_id=bucket.id, files=len(entries), size=size)
        return bucket.archive

    def _write_zip(self, path: Path, entries: list[tuple[Path, StoredFile]]) -> tuple[int, str]:
        """Write the zip to ``path`` while hashing it; returns (size, sha1)."""
        hasher = ContentHasher()
        with open(path, "wb") as raw:
            sink = HashingWriter(raw, hasher)
            with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for src, stored in entries:
                    info = zipfile.ZipInfo(stored.name, date_time=_zip_time(stored.uploaded_at))
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = 0o644 << 16
                    info.file_size = stored.size
                    with open(src, "rb") as fin, zf.open(info, "w") as fout:
                        shutil.copyfileobj(fin, fout, self.store.chunk_size)
        return hasher.size, hasher.hexdigest()
