"""Bucket endpoints.

private (shared token required when one is configured):
    GET     /                               list all buckets
    POST    /?ttl=10                        create a bucket, optionally with files

public:
    GET     /info?ids=id1,id2               info of up to 10 buckets
    GET     /{id}                           bucket.zip as attachment
    GET     /{id}/info                      bucket info
    GET     /{id}/files/{idx_or_name}       file as attachment
    GET     /{id}/files/{idx_or_name}/stream  file inline
    POST    /{id}                           upload files, replacing same-named ones
    POST    /{id}/metadata                  set metadata
    PATCH   /{id}/metadata                  merge into metadata
    DELETE  /{id}                           delete bucket
    DELETE  /{id}/files/{idx_or_name}       delete file
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from bucketd.auth import require_access_token
from bucketd.deps import Engine, get_bucket, get_engine
from bucketd.errors import BucketNotFound, InvalidRequest, PayloadTooLarge
from bucketd.formdata import MAX_FIELDS, FormDataReader, FormPart
from bucketd.ingest import IncomingFile
from bucketd.metadata import patch_metadata, set_metadata
from bucketd.models import Bucket
from bucketd.schemas.buckets import BucketInfo
from bucketd.schemas.common import ErrorResponse

logger = structlog.get_logger()

router = APIRouter(
    tags=["buckets"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
)

EMPTY_BUCKET_CODE = "EMPTY_BUCKET"
MAX_JSON_BODY = 1024 * 1024


def _content_disposition(disposition: str, filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"{disposition}; filename*=utf-8''{quoted}"
    return f'{disposition}; filename="{filename}"'


async def _read_json_body(request: Request, limit: int) -> bytes:
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLarge("Request body is too large")
    return bytes(body)


async def _form_files(parts: AsyncIterator[FormPart], fields: dict[str, Any]) -> AsyncIterator[IncomingFile]:
    async for part in parts:
        if part.is_file:
            yield IncomingFile(name=part.filename, chunks=part.chunks(), mime=part.content_type)
            continue
        if len(fields) >= MAX_FIELDS:
            raise PayloadTooLarge(f"Too many form fields (max {MAX_FIELDS})")
        fields[part.name] = await part.read_text()


async def _ingest_request(request: Request, engine: Engine, bucket: Bucket) -> None:
    """Feed a multipart or JSON request body into ``bucket``.

    Multipart file parts are streamed into the bucket while the body is
    still arriving; the remaining form fields, or a JSON object body,
    replace the bucket's metadata.
    """
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        reader = FormDataReader.from_request(request)
        fields: dict[str, Any] = {}
        await engine.ingestor.ingest(bucket, _form_files(reader.parts(), fields))
        if fields:
            await set_metadata(bucket, fields)

    elif content_type.startswith("application/json"):
        raw = await _read_json_body(request, MAX_JSON_BODY)
        if raw.strip():
            try:
                payload = json.loads(raw)
            except ValueError as e:
                raise InvalidRequest("Invalid JSON body") from e
            await set_metadata(bucket, payload)

    if engine.settings.prebuild_archive:
        await engine.archives.get_or_build(bucket)


def _stream_file(
    engine: Engine, fp, media_type: str, filename: str | None
) -> StreamingResponse:
    headers = {}
    if filename:
        headers["Content-Disposition"] = _content_disposition("attachment", filename)
    return StreamingResponse(engine.store.iter_chunks(fp), media_type=media_type, headers=headers)


# ---------------------------------------------------------------------------
# Private
# ---------------------------------------------------------------------------


@router.post("/", response_model=BucketInfo, dependencies=[Depends(require_access_token)])
async def create_bucket(
    request: Request,
    ttl: int | None = Query(None),
    engine: Engine = Depends(get_engine),
) -> BucketInfo:
    """Create a bucket, optionally uploading files and metadata in one go."""
    bucket = await engine.registry.create(ttl)
    try:
        await _ingest_request(request, engine, bucket)
        return BucketInfo.from_bucket(bucket)
    except BaseException:
        # The client never learns the id of a failed create.
        await engine.registry.delete(bucket.id)
        raise


@router.get("/", response_model=list[BucketInfo], dependencies=[Depends(require_access_token)])
async def list_all_buckets(engine: Engine = Depends(get_engine)) -> list[BucketInfo]:
    return [BucketInfo.from_bucket(b) for b in engine.registry.list_all()]


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------


@router.get("/info", response_model=list[BucketInfo])
async def list_selected_buckets(
    ids: str = Query(""),
    engine: Engine = Depends(get_engine),
) -> list[BucketInfo]:
    """Info for a comma-separated list of ids. Unknown ids are left out."""
    wanted = [i.strip() for i in ids.split(",") if i.strip()]
    limit = engine.settings.max_info_ids
    if len(wanted) > limit:
        raise InvalidRequest(f"Too many ids (max {limit})")
    return [BucketInfo.from_bucket(b) for b in engine.registry.list_by_ids(wanted)]


@router.get("/{bucket_id}")
async def download_bucket(
    bucket: Bucket = Depends(get_bucket),
    engine: Engine = Depends(get_engine),
):
    """Download all files of the bucket as bucket.zip."""
    opened = await engine.archives.open(bucket)
    if opened is None:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(code=EMPTY_BUCKET_CODE, message="Empty bucket").model_dump(),
        )

    _, fp = opened
    bucket.downloads += 1
    logger.info("returning_archive", bucket_id=bucket.id)
    return _stream_file(engine, fp, "application/zip", "bucket.zip")


@router.get("/{bucket_id}/info", response_model=BucketInfo)
async def get_bucket_info(bucket: Bucket = Depends(get_bucket)) -> BucketInfo:
    return BucketInfo.from_bucket(bucket)


@router.get("/{bucket_id}/files/{idx_or_name}")
async def download_file(
    idx_or_name: str,
    bucket: Bucket = Depends(get_bucket),
    engine: Engine = Depends(get_engine),
) -> StreamingResponse:
    """Download one file as an attachment."""
    stored, fp = await engine.store.open_bucket_file(bucket, idx_or_name)
    stored.downloads += 1
    logger.info("returning_file", bucket_id=bucket.id, name=stored.name)
    return _stream_file(engine, fp, stored.mime, stored.name)


@router.get("/{bucket_id}/files/{idx_or_name}/stream")
async def stream_file(
    idx_or_name: str,
    bucket: Bucket = Depends(get_bucket),
    engine: Engine = Depends(get_engine),
) -> StreamingResponse:
    """Stream one file inline, without a download file name."""
    stored, fp = await engine.store.open_bucket_file(bucket, idx_or_name)
    stored.downloads += 1
    logger.info("returning_file", bucket_id=bucket.id, name=stored.name, inline=True)
    return _stream_file(engine, fp, stored.mime, None)


@router.post("/{bucket_id}", response_model=BucketInfo)
async def upload_files(
    request: Request,
    bucket: Bucket = Depends(get_bucket),
    engine: Engine = Depends(get_engine),
) -> BucketInfo:
    """Upload files into the bucket; a file with an existing name replaces it."""
    await _ingest_request(request, engine, bucket)
    return BucketInfo.from_bucket(bucket)


@router.post("/{bucket_id}/metadata", response_model=BucketInfo)
async def post_metadata(
    payload: Any = Body(None),
    bucket: Bucket = Depends(get_bucket),
) -> BucketInfo:
    await set_metadata(bucket, payload)
    return BucketInfo.from_bucket(bucket)


@router.patch("/{bucket_id}/metadata", response_model=BucketInfo)
async def update_metadata(
    payload: Any = Body(None),
    bucket: Bucket = Depends(get_bucket),
) -> BucketInfo:
    await patch_metadata(bucket, payload)
    return BucketInfo.from_bucket(bucket)


@router.delete("/{bucket_id}", response_model=BucketInfo)
async def delete_bucket(
    bucket_id: str,
    engine: Engine = Depends(get_engine),
) -> BucketInfo:
    removed = await engine.registry.delete(bucket_id)
    if removed is None:
        raise BucketNotFound()
    return BucketInfo.from_bucket(removed)


@router.delete("/{bucket_id}/files/{idx_or_name}", response_model=BucketInfo)
async def delete_file(
    idx_or_name: str,
    bucket: Bucket = Depends(get_bucket),
    engine: Engine = Depends(get_engine),
) -> BucketInfo:
    await engine.ingestor.delete_file(bucket, idx_or_name)
    if engine.settings.prebuild_archive:
        await engine.archives.get_or_build(bucket)
    return BucketInfo.from_bucket(bucket)
