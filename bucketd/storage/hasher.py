"""Incremental content hashing for uploads and archives."""

from __future__ import annotations

import hashlib
from typing import BinaryIO

DEFAULT_ALGORITHM = "sha1"


class ContentHasher:
    """Feed chunks in as they stream past; read the digest at the end."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM):
        self._hash = hashlib.new(algorithm)
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


class HashingWriter:
    """Write-only file wrapper that hashes every byte it writes.

    There is no ``tell``/``seek``, so :class:`zipfile.ZipFile` writes in
    streaming mode and never rewinds over bytes that were already hashed.
    """

    def __init__(self, fp: BinaryIO, hasher: ContentHasher):
        self._fp = fp
        self.hasher = hasher

    def write(self, data) -> int:
        self._fp.write(data)
        self.hasher.update(bytes(data))
        return len(data)

    def flush(self) -> None:
        self._fp.flush()
