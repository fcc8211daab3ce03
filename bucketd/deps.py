"""Engine wiring and FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from bucketd.config import Settings
from bucketd.errors import BucketNotFound
from bucketd.ingest import UploadIngestor
from bucketd.models import Bucket
from bucketd.registry import BucketRegistry
from bucketd.storage.archive import ArchiveCache
from bucketd.storage.file_store import FileStore
from bucketd.sweeper import ExpirySweeper


@dataclass
class Engine:
    """The storage engine components for one running service."""

    settings: Settings
    store: FileStore
    registry: BucketRegistry
    archives: ArchiveCache
    ingestor: UploadIngestor
    sweeper: ExpirySweeper


def build_engine(settings: Settings) -> Engine:
    store = FileStore(settings.storage_root, chunk_size=settings.chunk_size)
    registry = BucketRegistry(store, default_ttl_minutes=settings.default_ttl_minutes)
    archives = ArchiveCache(store)
    ingestor = UploadIngestor(
        store,
        archives,
        max_file_size=settings.max_file_size_bytes,
        max_files=settings.max_files_per_upload,
    )
    sweeper = ExpirySweeper(registry, interval_seconds=settings.sweep_interval_seconds)
    return Engine(
        settings=settings,
        store=store,
        registry=registry,
        archives=archives,
        ingestor=ingestor,
        sweeper=sweeper,
    )


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_bucket(bucket_id: str, engine: Engine = Depends(get_engine)) -> Bucket:
    bucket = engine.registry.get(bucket_id)
    if bucket is None:
        raise BucketNotFound()
    return bucket
