"""Tests for metadata set/patch."""

from __future__ import annotations

import pytest

from bucketd.errors import BucketNotFound, InvalidRequest
from bucketd.metadata import patch_metadata, set_metadata


@pytest.mark.asyncio
async def test_patch_merges_top_level_keys(registry):
    bucket = await registry.create()
    bucket.metadata = {"x": 0, "y": 2}

    await patch_metadata(bucket, {"x": 1})

    assert bucket.metadata == {"x": 1, "y": 2}


@pytest.mark.asyncio
async def test_patch_adds_new_keys(registry):
    bucket = await registry.create()
    await patch_metadata(bucket, {"nested": {"a": [1, 2]}})
    await patch_metadata(bucket, {"extra": "v"})

    assert bucket.metadata == {"nested": {"a": [1, 2]}, "extra": "v"}


@pytest.mark.asyncio
async def test_set_replaces_wholesale(registry):
    bucket = await registry.create()
    bucket.metadata = {"x": 0, "y": 2}

    await set_metadata(bucket, {"z": 3})

    assert bucket.metadata == {"z": 3}


@pytest.mark.asyncio
async def test_set_copies_input(registry):
    bucket = await registry.create()
    new = {"k": "v"}
    await set_metadata(bucket, new)
    new["k"] = "changed"

    assert bucket.metadata == {"k": "v"}


@pytest.mark.asyncio
async def test_empty_input_on_empty_metadata_is_noop(registry):
    bucket = await registry.create()
    before = bucket.metadata

    await set_metadata(bucket, {})
    await patch_metadata(bucket, None)

    assert bucket.metadata is before
    assert bucket.metadata == {}


@pytest.mark.asyncio
async def test_set_empty_clears_existing(registry):
    bucket = await registry.create()
    bucket.metadata = {"a": 1}
    await set_metadata(bucket, {})
    assert bucket.metadata == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", [[1, 2], "text", 5])
async def test_non_object_rejected(registry, bad):
    bucket = await registry.create()
    with pytest.raises(InvalidRequest):
        await set_metadata(bucket, bad)
    with pytest.raises(InvalidRequest):
        await patch_metadata(bucket, bad)


@pytest.mark.asyncio
async def test_closed_bucket(registry):
    bucket = await registry.create()
    await registry.delete(bucket.id)
    with pytest.raises(BucketNotFound):
        await patch_metadata(bucket, {"a": 1})
