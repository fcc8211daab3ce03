"""Tests for ArchiveCache."""

from __future__ import annotations

import asyncio
import hashlib
import io
import zipfile
from unittest.mock import patch

import pytest

from bucketd.errors import ArchiveBuildError, BucketNotFound
from bucketd.storage.file_store import ARCHIVE_NAME
from tests.conftest import incoming


def _zip_contents(path) -> dict[str, bytes]:
    with zipfile.ZipFile(path) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


async def _bucket_with(registry, ingestor, **files):
    bucket = await registry.create()
    await ingestor.ingest(bucket, [incoming(name, data) for name, data in files.items()])
    return bucket


@pytest.mark.asyncio
async def test_empty_bucket_returns_empty_signal(registry, store, archives):
    bucket = await registry.create()

    assert await archives.get_or_build(bucket) is None
    assert await archives.open(bucket) is None
    assert bucket.archive is None
    assert not store.archive_path(bucket.id).exists()


@pytest.mark.asyncio
async def test_build_packages_all_files(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"alpha", "b.bin": b"\x00\x01" * 500})

    archive = await archives.get_or_build(bucket)

    raw = archive.path.read_bytes()
    assert archive.path.name == ARCHIVE_NAME
    assert archive.size == len(raw)
    assert archive.sha1 == hashlib.sha1(raw).hexdigest()
    assert _zip_contents(archive.path) == {"a.txt": b"alpha", "b.bin": b"\x00\x01" * 500}
    with zipfile.ZipFile(archive.path) as zf:
        assert zf.namelist() == ["a.txt", "b.bin"]
        assert zf.testzip() is None


@pytest.mark.asyncio
async def test_archive_never_contains_itself(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A"})
    await archives.get_or_build(bucket)
    await ingestor.ingest(bucket, [incoming("b.txt", b"B")])

    archive = await archives.get_or_build(bucket)

    assert set(_zip_contents(archive.path)) == {"a.txt", "b.txt"}


@pytest.mark.asyncio
async def test_cached_archive_is_reused(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A"})

    with patch.object(archives, "_write_zip", wraps=archives._write_zip) as write_zip:
        first = await archives.get_or_build(bucket)
        second = await archives.get_or_build(bucket)

    assert first is second
    assert write_zip.call_count == 1


@pytest.mark.asyncio
async def test_upload_after_download_rebuilds(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"A": b"a", "B": b"b"})
    before = await archives.get_or_build(bucket)
    before_sha1 = before.sha1

    await ingestor.ingest(bucket, [incoming("C", b"c")])
    after = await archives.get_or_build(bucket)

    assert after.sha1 != before_sha1
    assert _zip_contents(after.path) == {"A": b"a", "B": b"b", "C": b"c"}


@pytest.mark.asyncio
async def test_build_is_deterministic(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"alpha", "b.txt": b"beta"})

    first = await archives.get_or_build(bucket)
    first_bytes = first.path.read_bytes()
    await archives.invalidate(bucket)
    second = await archives.get_or_build(bucket)

    assert second.sha1 == first.sha1
    assert second.path.read_bytes() == first_bytes


@pytest.mark.asyncio
async def test_concurrent_requests_build_once(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A" * 5000, "b.txt": b"B"})

    with patch.object(archives, "_write_zip", wraps=archives._write_zip) as write_zip:
        results = await asyncio.gather(
            archives.get_or_build(bucket),
            archives.get_or_build(bucket),
            archives.get_or_build(bucket),
        )

    assert write_zip.call_count == 1
    assert results[0] is results[1] is results[2]
    assert len({r.sha1 for r in results}) == 1


@pytest.mark.asyncio
async def test_open_returns_readable_handle(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A"})

    archive, fp = await archives.open(bucket)
    with fp:
        data = fp.read()

    assert hashlib.sha1(data).hexdigest() == archive.sha1
    assert zipfile.ZipFile(io.BytesIO(data)).read("a.txt") == b"A"


@pytest.mark.asyncio
async def test_open_handle_survives_invalidation(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A"})
    archive, fp = await archives.open(bucket)

    await ingestor.ingest(bucket, [incoming("b.txt", b"B")])

    with fp:
        data = fp.read()
    assert hashlib.sha1(data).hexdigest() == archive.sha1


@pytest.mark.asyncio
async def test_build_failure_leaves_no_archive(registry, store, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A"})

    with patch.object(archives, "_write_zip", side_effect=OSError("disk full")):
        with pytest.raises(ArchiveBuildError) as exc_info:
            await archives.get_or_build(bucket)

    assert bucket.archive is None
    assert not store.archive_path(bucket.id).exists()
    assert str(store.root) not in exc_info.value.message

    # A retry builds cleanly
    archive = await archives.get_or_build(bucket)
    assert archive is not None


@pytest.mark.asyncio
async def test_build_on_deleted_bucket(registry, ingestor, archives):
    bucket = await _bucket_with(registry, ingestor, **{"a.txt": b"A"})
    await registry.delete(bucket.id)

    with pytest.raises(BucketNotFound):
        await archives.get_or_build(bucket)
    assert registry.get(bucket.id) is None


@pytest.mark.asyncio
async def test_invalidate_without_archive_is_noop(registry, archives):
    bucket = await registry.create()
    await archives.invalidate(bucket)
    assert bucket.archive is None
