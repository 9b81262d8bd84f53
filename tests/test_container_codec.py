from __future__ import annotations

"""xbc1 container tests."""

import random
import struct
import zlib

import pytest

from assetbin.container import (
    CONTAINER_HEADER,
    HEADER_SIZE,
    Algorithm,
    crc32,
    is_packed,
    iter_unpack,
    pack,
    parse_algorithm,
    read_header,
    unpack,
    unpack_if_packed,
)
from assetbin.errors import (
    E_DECOMPRESSION,
    E_INTEGRITY,
    BadMagic,
    DecompressionError,
    IntegrityMismatch,
    LayoutError,
    OutOfBounds,
    UnsupportedVariant,
)
from assetbin.layout import encode


def _payload(size: int = 200_000) -> bytes:
    rng = random.Random(7)
    half = size // 2
    return rng.randbytes(half) + bytes(size - half)


def _retag(container: bytes, **fields: int) -> bytes:
    """Rewrite header integers in place (field name -> new value)."""
    offsets = {"algorithm": 4, "decompressed_size": 8, "compressed_size": 12, "hash": 16}
    buf = bytearray(container)
    for name, value in fields.items():
        struct.pack_into("<I", buf, offsets[name], value)
    return bytes(buf)


def test_header_layout_and_zeros():
    payload = bytes(100)
    packed = pack(payload)
    assert HEADER_SIZE == 48
    assert packed[:4] == b"xbc1"
    algo, size, csize, digest = struct.unpack_from("<IIII", packed, 4)
    assert (algo, size, digest) == (1, 100, zlib.crc32(payload))
    assert packed[48 : 48 + csize] == zlib.compress(payload)
    assert len(packed) % 16 == 0
    assert unpack(packed) == payload


def test_empty_payload():
    packed = pack(b"")
    header = read_header(packed)
    assert header.decompressed_size == 0
    assert header.hash == 0
    assert unpack(packed) == b""


@pytest.mark.parametrize("algorithm", [Algorithm.ZLIB, Algorithm.ZSTD])
def test_large_payload_streams_in_chunks(algorithm):
    payload = _payload()
    packed = pack(payload, algorithm)
    assert read_header(packed).algorithm is algorithm
    chunks = list(iter_unpack(packed, chunk_size=4096))
    assert len(chunks) > 1
    assert max(len(c) for c in chunks) <= 4096
    assert b"".join(chunks) == payload
    assert unpack(packed) == payload


def test_algorithm_names():
    assert parse_algorithm("zstd") is Algorithm.ZSTD
    assert parse_algorithm(1) is Algorithm.ZLIB
    with pytest.raises(UnsupportedVariant):
        parse_algorithm("lzma")
    with pytest.raises(UnsupportedVariant):
        parse_algorithm(2)


def test_every_flipped_payload_byte_is_detected():
    payload = b"vertex data " * 40
    packed = pack(payload)
    csize = read_header(packed).compressed_size
    for i in range(HEADER_SIZE, HEADER_SIZE + csize):
        bad = bytearray(packed)
        bad[i] ^= 0xFF
        with pytest.raises(IntegrityMismatch):
            unpack(bytes(bad))


def test_flipped_zstd_byte_is_detected():
    payload = _payload(50_000)
    packed = pack(payload, Algorithm.ZSTD)
    csize = read_header(packed).compressed_size
    bad = bytearray(packed)
    bad[HEADER_SIZE + csize // 2] ^= 0xFF
    with pytest.raises(IntegrityMismatch):
        unpack(bytes(bad))


def test_truncated_container():
    packed = pack(_payload(10_000))
    with pytest.raises(OutOfBounds):
        iter_unpack(packed[: HEADER_SIZE + 10])
    with pytest.raises(OutOfBounds):
        read_header(packed[:20])


def test_bad_magic():
    packed = pack(b"abc")
    with pytest.raises(BadMagic):
        unpack(b"xbc2" + packed[4:])
    assert not is_packed(b"xbc2" + packed[4:])


def test_unknown_algorithm_tag():
    packed = _retag(pack(b"abc"), algorithm=2)
    with pytest.raises(UnsupportedVariant) as exc:
        read_header(packed)
    assert exc.value.context["actual"] == 2


def test_declared_size_mismatch():
    payload = b"0123456789" * 10
    packed = pack(payload)
    for size in (len(payload) + 1, len(payload) - 1):
        with pytest.raises(DecompressionError) as exc:
            unpack(_retag(packed, decompressed_size=size))
        assert exc.value.code == E_DECOMPRESSION


def test_hash_mismatch_is_integrity_not_decompression():
    payload = b"shader blob"
    packed = _retag(pack(payload), hash=crc32(payload) ^ 1)
    with pytest.raises(IntegrityMismatch) as exc:
        unpack(packed)
    assert not isinstance(exc.value, DecompressionError)
    assert exc.value.code == E_INTEGRITY


def test_trailing_bytes_inside_declared_range():
    payload = b"texture" * 30
    compressed = zlib.compress(payload)
    header = encode(
        CONTAINER_HEADER,
        {
            "algorithm": Algorithm.ZLIB,
            "decompressed_size": len(payload),
            "compressed_size": len(compressed) + 4,
            "hash": crc32(payload),
            "name": "",
        },
    )
    with pytest.raises(DecompressionError):
        unpack(header + compressed + b"\x00" * 4)


def test_zstd_frame_cut_short_or_followed_by_bytes():
    payload = b"texture" * 30
    packed = pack(payload, Algorithm.ZSTD) + bytes(16)
    csize = read_header(packed).compressed_size
    with pytest.raises(DecompressionError) as exc:
        unpack(_retag(packed, compressed_size=csize - 2))
    assert "ends early" in exc.value.message
    with pytest.raises(DecompressionError) as exc:
        unpack(_retag(packed, compressed_size=csize + 4))
    assert exc.value.context["trailing"] == 4
    assert unpack(packed) == payload


def test_streaming_yields_before_hash_check():
    payload = _payload(100_000)
    packed = _retag(pack(payload), hash=crc32(payload) ^ 0xFFFFFFFF)
    received = []
    with pytest.raises(IntegrityMismatch):
        for chunk in iter_unpack(packed, chunk_size=1024):
            received.append(chunk)
    assert b"".join(received) == payload


def test_container_name():
    packed = pack(b"abc", name="vertex")
    assert read_header(packed).name == "vertex"
    full = "n" * 28
    assert read_header(pack(b"abc", name=full)).name == full
    with pytest.raises(LayoutError):
        pack(b"abc", name="n" * 29)


def test_container_at_offset_and_passthrough():
    packed = pack(b"payload")
    data = b"\x00" * 32 + packed
    assert is_packed(data, 32)
    assert unpack(data, 32) == b"payload"
    assert unpack_if_packed(data, 32) == b"payload"
    assert unpack_if_packed(b"raw bytes") == b"raw bytes"
