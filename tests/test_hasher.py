"""Tests for ContentHasher and HashingWriter."""

from __future__ import annotations

import hashlib
import io

from bucketd.storage.hasher import ContentHasher, HashingWriter


def test_incremental_digest_matches_one_shot():
    data = b"the quick brown fox jumps over the lazy dog" * 100
    hasher = ContentHasher()
    for i in range(0, len(data), 13):
        hasher.update(data[i : i + 13])

    assert hasher.hexdigest() == hashlib.sha1(data).hexdigest()
    assert hasher.size == len(data)


def test_empty_stream():
    hasher = ContentHasher()
    assert hasher.size == 0
    assert hasher.hexdigest() == hashlib.sha1(b"").hexdigest()


def test_other_algorithm():
    hasher = ContentHasher("sha256")
    hasher.update(b"abc")
    assert hasher.hexdigest() == hashlib.sha256(b"abc").hexdigest()


def test_hashing_writer_hashes_what_it_writes():
    buf = io.BytesIO()
    writer = HashingWriter(buf, ContentHasher())

    assert writer.write(b"hello ") == 6
    writer.write(memoryview(b"world"))
    writer.flush()

    assert buf.getvalue() == b"hello world"
    assert writer.hasher.hexdigest() == hashlib.sha1(b"hello world").hexdigest()
    assert writer.hasher.size == 11


def test_hashing_writer_is_not_seekable():
    writer = HashingWriter(io.BytesIO(), ContentHasher())
    assert not hasattr(writer, "tell")
    assert not hasattr(writer, "seek")
