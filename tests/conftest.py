"""Shared test fixtures.

Every test gets its own storage root under ``tmp_path`` and a freshly
wired engine, so nothing touches the real ``./upload`` directory.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from bucketd.config import Settings
from bucketd.deps import Engine, build_engine
from bucketd.ingest import IncomingFile


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage_root=str(tmp_path / "upload"),
        max_file_size_mb=1,
        max_files_per_upload=3,
        default_ttl_minutes=30,
        sweep_interval_seconds=0.01,
        purge_storage_on_startup=False,
        access_token="",
        chunk_size=1024,
    )


@pytest.fixture
def engine(settings) -> Engine:
    engine = build_engine(settings)
    engine.store.prepare_root()
    return engine


@pytest.fixture
def store(engine):
    return engine.store


@pytest.fixture
def registry(engine):
    return engine.registry


@pytest.fixture
def archives(engine):
    return engine.archives


@pytest.fixture
def ingestor(engine):
    return engine.ingestor


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def chunked(data: bytes, size: int = 7) -> AsyncIterator[bytes]:
    for i in range(0, len(data), size):
        yield data[i : i + size]


def incoming(name: str, data: bytes, mime: str | None = "text/plain") -> IncomingFile:
    """Build an IncomingFile that streams ``data`` in small chunks."""
    return IncomingFile(name=name, chunks=chunked(data), mime=mime)
