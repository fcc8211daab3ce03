"""On-disk storage areas, one directory per bucket.

Layout::

    <root>/<bucket id>/<file name>       committed files
    <root>/<bucket id>/.bucket.zip       cached archive
    <root>/<bucket id>/.partial-<hex>    uploads still streaming

Blocking filesystem calls run in worker threads via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from pathlib import Path
from typing import AsyncIterator, BinaryIO

import structlog

from bucketd.errors import BucketNotFound, InvalidRequest, StorageError
from bucketd.models import Bucket, StoredFile

logger = structlog.get_logger()

ARCHIVE_NAME = ".bucket.zip"
PARTIAL_PREFIX = ".partial-"
# Longest file name most filesystems accept, in encoded bytes
MAX_NAME_BYTES = 255
DEFAULT_CHUNK_SIZE = 64 * 1024


def safe_name(name: str | None) -> str:
    """Reduce a client-supplied file name to a bare, storable base name."""
    raw = (name or "").replace("\x00", "")
    base = raw.replace("\\", "/").rsplit("/", 1)[-1]
    if base in ("", ".", ".."):
        raise InvalidRequest(f"Invalid file name: {name!r}")
    if base == ARCHIVE_NAME or base.startswith(PARTIAL_PREFIX):
        raise InvalidRequest(f"Reserved file name: {base}")
    if len(base.encode("utf-8", "surrogatepass")) > MAX_NAME_BYTES:
        raise InvalidRequest(f"File name too long (max {MAX_NAME_BYTES} bytes)")
    return base


class PartialWrite:
    """An upload being streamed to a temporary file in the bucket area."""

    def __init__(self, path: Path, fp: BinaryIO):
        self.path = path
        self._fp = fp

    async def write(self, chunk: bytes) -> None:
        await asyncio.to_thread(self._fp.write, chunk)

    async def close(self) -> None:
        if not self._fp.closed:
            await asyncio.to_thread(self._fp.close)


class FileStore:
    """Byte storage for bucket files under a single root directory."""

    def __init__(self, root: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.root = Path(root)
        self.chunk_size = chunk_size

    def prepare_root(self, purge: bool = False) -> None:
        """Create the storage root, optionally removing leftovers first."""
        if purge and self.root.exists():
            shutil.rmtree(self.root)
            logger.info("storage_root_purged", root=str(self.root))
        self.root.mkdir(parents=True, exist_ok=True)

    def area(self, bucket_id: str) -> Path:
        return self.root / bucket_id

    def file_path(self, bucket_id: str, name: str) -> Path:
        return self.area(bucket_id) / name

    def archive_path(self, bucket_id: str) -> Path:
        return self.area(bucket_id) / ARCHIVE_NAME

    def area_exists(self, bucket_id: str) -> bool:
        return self.area(bucket_id).is_dir()

    async def create_area(self, bucket_id: str) -> None:
        try:
            await asyncio.to_thread(self.area(bucket_id).mkdir, parents=True)
        except OSError as e:
            logger.error("storage_create_error", bucket_id=bucket_id, error=str(e))
            raise StorageError("Error creating directory") from e

    async def remove_area(self, bucket_id: str) -> None:
        """Remove a bucket's directory and everything in it."""
        try:
            await asyncio.to_thread(shutil.rmtree, self.area(bucket_id))
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError() from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def open_partial(self, bucket_id: str) -> PartialWrite:
        path = self.area(bucket_id) / f"{PARTIAL_PREFIX}{uuid.uuid4().hex}"
        fp = await asyncio.to_thread(open, path, "xb")
        return PartialWrite(path, fp)

    async def commit(self, partial: PartialWrite, bucket_id: str, name: str) -> Path:
        """Atomically move a finished upload onto its final name."""
        await partial.close()
        target = self.file_path(bucket_id, name)
        await asyncio.to_thread(os.replace, partial.path, target)
        return target

    async def discard(self, partial: PartialWrite) -> None:
        """Drop a partial upload. Never raises."""
        try:
            await partial.close()
        except OSError:
            pass
        await self.unlink(partial.path)

    async def delete(self, bucket_id: str, name: str) -> None:
        try:
            await asyncio.to_thread(self.file_path(bucket_id, name).unlink)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError() from e

    async def unlink(self, path: Path) -> bool:
        """Best-effort removal; returns False when the file could not be removed."""
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("storage_unlink_error", path=str(path), error=str(e))
            return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def open_read(self, path: Path) -> BinaryIO:
        return await asyncio.to_thread(open, path, "rb")

    async def open_bucket_file(self, bucket: Bucket, idx_or_name: str) -> tuple[StoredFile, BinaryIO]:
        """Resolve a file by index or name and open it for reading.

        Resolution and open happen under the bucket lock so the handle
        always matches the returned entry, even if the file is replaced
        while the caller is still streaming it.
        """
        async with bucket.lock:
            if bucket.closed:
                raise BucketNotFound()
            _, stored = bucket.resolve_file(idx_or_name)
            try:
                fp = await self.open_read(self.file_path(bucket.id, stored.name))
            except OSError as e:
                logger.error("file_open_error", bucket_id=bucket.id, name=stored.name, error=str(e))
                raise StorageError() from e
        return stored, fp

    async def iter_chunks(self, fp: BinaryIO) -> AsyncIterator[bytes]:
        """Yield the contents of an open file, closing it when done."""
        try:
            while True:
                chunk = await asyncio.to_thread(fp.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            fp.close()
