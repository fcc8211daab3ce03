"""Streaming multipart/form-data reader.

Parts are handed out one at a time while the request body is still arriving.
A part's bytes are pulled from the socket only as its consumer reads them, so
rejecting a part (too large, too many files) stops the upload on the spot
instead of after the whole body has been spooled somewhere.
"""

from __future__ import annotations

from collections import deque
from collections.abc import AsyncIterator

import python_multipart
import structlog
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from bucketd.errors import InvalidRequest, PayloadTooLarge

logger = structlog.get_logger()

# Plain (non-file) form fields end up as bucket metadata
MAX_FIELDS = 100
MAX_FIELD_SIZE = 64 * 1024


def get_boundary(content_type: str) -> bytes:
    kind, options = parse_options_header(content_type)
    boundary = options.get(b"boundary")
    if kind != b"multipart/form-data" or not boundary:
        raise InvalidRequest("Missing multipart boundary")
    return boundary


class FormPart:
    """One part of the form: a file when ``filename`` is set, else a field."""

    def __init__(self, reader: FormDataReader, name: str, filename: str | None, content_type: str | None):
        self._reader = reader
        self.name = name
        self.filename = filename
        self.content_type = content_type
        self.complete = False

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    def chunks(self) -> AsyncIterator[bytes]:
        """The part's body, read from the request as it is consumed."""
        return self._reader._part_chunks(self)

    async def read_text(self, limit: int = MAX_FIELD_SIZE) -> str:
        data = bytearray()
        async for chunk in self.chunks():
            data.extend(chunk)
            if len(data) > limit:
                raise PayloadTooLarge(f"Form field {self.name} is too large")
        return data.decode("utf-8", "replace")


class FormDataReader:
    """Drives :class:`python_multipart.MultipartParser` from a body stream.

    The parser is push-based; its callbacks queue events which :meth:`parts`
    and :meth:`FormPart.chunks` pull from, feeding the parser another body
    chunk only when the queue runs dry.
    """

    def __init__(self, body: AsyncIterator[bytes], boundary: bytes):
        self._body = body
        self._events: deque[tuple] = deque()
        self._finished = False
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._headers: dict[bytes, bytes] = {}
        self._parser = python_multipart.MultipartParser(
            boundary,
            {
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_end": self._on_end,
            },
        )

    @classmethod
    def from_request(cls, request) -> FormDataReader:
        boundary = get_boundary(request.headers.get("content-type", ""))
        return cls(request.stream(), boundary)

    async def parts(self) -> AsyncIterator[FormPart]:
        """Yield each part in body order.

        Whatever the consumer leaves unread of a part is skipped before the
        next one is produced.
        """
        while True:
            event = await self._next_event()
            kind = event[0]
            if kind == "end":
                return
            if kind != "headers":
                continue
            part = self._make_part(event[1])
            yield part
            if not part.complete:
                async for _ in part.chunks():
                    pass

    async def _part_chunks(self, part: FormPart) -> AsyncIterator[bytes]:
        while not part.complete:
            event = await self._next_event()
            kind = event[0]
            if kind == "data":
                yield event[1]
            elif kind == "part_end":
                part.complete = True
            else:
                raise InvalidRequest("Malformed form data")

    def _make_part(self, headers: dict[bytes, bytes]) -> FormPart:
        disposition, options = parse_options_header(headers.get(b"content-disposition", b""))
        if disposition != b"form-data":
            raise InvalidRequest("Malformed form data")
        name = options.get(b"name", b"").decode("utf-8", "replace")
        filename = options.get(b"filename")
        content_type = headers.get(b"content-type")
        return FormPart(
            self,
            name=name,
            filename=filename.decode("utf-8", "replace") if filename is not None else None,
            content_type=content_type.decode("latin-1") if content_type else None,
        )

    async def _next_event(self) -> tuple:
        while not self._events:
            if self._finished:
                raise InvalidRequest("Truncated form data")
            try:
                chunk = await self._body.__anext__()
            except StopAsyncIteration:
                self._finished = True
                self._parser.finalize()
                continue
            if chunk:
                self._feed(chunk)
        return self._events.popleft()

    def _feed(self, chunk: bytes) -> None:
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            logger.info("form_data_parse_error", error=str(e))
            raise InvalidRequest("Malformed form data") from e

    # --- parser callbacks ---

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[bytes(self._header_field).lower()] = bytes(self._header_value)
        self._header_field.clear()
        self._header_value.clear()

    def _on_headers_finished(self) -> None:
        self._events.append(("headers", self._headers))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if end > start:
            self._events.append(("data", bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append(("part_end",))

    def _on_end(self) -> None:
        self._events.append(("end",))
