"""xbc1 compressed container codec.

Layout (little endian)::

    0   magic              b"xbc1"
    4   algorithm          u32 (1 = zlib, 3 = zstd)
    8   decompressed size  u32
    12  compressed size    u32
    16  hash               u32, CRC-32 of the decompressed payload
    20  name               28 bytes, NUL padded
    48  compressed stream, zero padded to a multiple of 16

Decompression is streaming: ``iter_unpack`` feeds the compressed range to the
decoder in chunks and verifies length and hash once the stream ends, so the
whole payload never needs to exist twice in memory.
"""

from __future__ import annotations
import zlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, Optional, Union

import zstandard

from ..errors import (
    E_DECOMPRESSION,
    E_INTEGRITY,
    DecompressionError,
    IntegrityMismatch,
    out_of_bounds,
    unsupported_variant,
)
from ..layout import FixedString, Layout, Magic, Scalar, encode, read_layout, round_up
from ..logging import get_logger

__all__ = [
    "MAGIC",
    "HEADER_SIZE",
    "NAME_SIZE",
    "PAYLOAD_ALIGNMENT",
    "DEFAULT_CHUNK_SIZE",
    "Algorithm",
    "ContainerHeader",
    "CONTAINER_HEADER",
    "parse_algorithm",
    "crc32",
    "pack",
    "unpack",
    "iter_unpack",
    "read_header",
    "is_packed",
    "unpack_if_packed",
]

MAGIC = b"xbc1"
NAME_SIZE = 28
PAYLOAD_ALIGNMENT = 16
DEFAULT_CHUNK_SIZE = 64 * 1024


class Algorithm(IntEnum):
    ZLIB = 1
    ZSTD = 3


CONTAINER_HEADER = Layout(
    "xbc1",
    [
        Magic(MAGIC),
        Scalar("algorithm", "I", enum=Algorithm),
        Scalar("decompressed_size", "I"),
        Scalar("compressed_size", "I"),
        Scalar("hash", "I"),
        FixedString("name", NAME_SIZE),
    ],
)
HEADER_SIZE = CONTAINER_HEADER.size


@dataclass(slots=True)
class ContainerHeader:
    algorithm: Algorithm
    decompressed_size: int
    compressed_size: int
    hash: int
    name: str
    offset: int = 0

    @property
    def payload_offset(self) -> int:
        return self.offset + HEADER_SIZE

    @property
    def end(self) -> int:
        """Offset just past the padded compressed stream."""
        return self.offset + round_up(
            HEADER_SIZE + self.compressed_size, PAYLOAD_ALIGNMENT
        )


def crc32(data: Any, value: int = 0) -> int:
    return zlib.crc32(data, value) & 0xFFFFFFFF


def parse_algorithm(value: Union[Algorithm, int, str]) -> Algorithm:
    """Accept an Algorithm, its tag, or its (case-insensitive) name."""
    if isinstance(value, Algorithm):
        return value
    if isinstance(value, str):
        try:
            return Algorithm[value.upper()]
        except KeyError:
            raise unsupported_variant(
                "xbc1.algorithm", value, expected=[a.name.lower() for a in Algorithm]
            ) from None
    try:
        return Algorithm(value)
    except ValueError:
        raise unsupported_variant(
            "xbc1.algorithm", value, expected=[a.value for a in Algorithm]
        ) from None


# Algorithms -----------------------------------------------------------------


class _ZlibDecoder:
    """Feeds the compressed range to zlib ``chunk_size`` bytes at a time."""

    def __init__(self) -> None:
        self._obj = zlib.decompressobj()
        self._size = 0
        self.consumed = 0

    def chunks(self, data: memoryview, chunk_size: int) -> Iterator[bytes]:
        self._size = len(data)
        while self.consumed < len(data) and not self._obj.eof:
            piece = data[self.consumed : self.consumed + chunk_size]
            self.consumed += len(piece)
            yield self._obj.decompress(piece)
        yield self._obj.flush()

    @property
    def eof(self) -> bool:
        return self._obj.eof

    @property
    def trailing(self) -> int:
        return self._size - self.consumed + len(self._obj.unused_data)


def _zstd_frame_size(data: memoryview) -> Optional[int]:
    """Compressed length of the zstd frame at the start of ``data``.

    Walks the block headers; ``None`` means the frame is cut short.
    """
    if len(data) < 5:
        return None
    pos = zstandard.frame_header_size(data)
    if pos > len(data):
        return None
    checksum = zstandard.get_frame_parameters(data).has_checksum
    while True:
        if pos + 3 > len(data):
            return None
        block = int.from_bytes(data[pos : pos + 3], "little")
        # RLE blocks store a single byte whatever their decoded size
        pos += 3 + (1 if (block >> 1) & 3 == 1 else block >> 3)
        if block & 1:
            break
    if checksum:
        pos += 4
    return pos if pos <= len(data) else None


class _ZstdDecoder:
    """Decodes a single zstd frame with ``read_to_iter``."""

    def __init__(self) -> None:
        self.eof = False
        self.consumed = 0
        self.trailing = 0

    def chunks(self, data: memoryview, chunk_size: int) -> Iterator[bytes]:
        frame = _zstd_frame_size(data)
        if frame is None:
            return
        reader = zstandard.ZstdDecompressor().read_to_iter(
            data[:frame], read_size=chunk_size, write_size=chunk_size
        )
        yield from reader
        self.eof = True
        self.consumed = frame
        self.trailing = len(data) - frame


def _zlib_compress(data: bytes, level: Optional[int]) -> bytes:
    return zlib.compress(
        data, zlib.Z_DEFAULT_COMPRESSION if level is None else level
    )


def _zstd_compress(data: bytes, level: Optional[int]) -> bytes:
    compressor = zstandard.ZstdCompressor(
        level=3 if level is None else level, write_checksum=True
    )
    return compressor.compress(data)


@dataclass(frozen=True)
class _Codec:
    compress: Callable[[bytes, Optional[int]], bytes]
    decoder: Callable[[], Any]
    errors: tuple


_CODECS: Dict[Algorithm, _Codec] = {
    Algorithm.ZLIB: _Codec(_zlib_compress, _ZlibDecoder, (zlib.error,)),
    Algorithm.ZSTD: _Codec(_zstd_compress, _ZstdDecoder, (zstandard.ZstdError,)),
}


# Header ---------------------------------------------------------------------


def read_header(container: Any, offset: int = 0) -> ContainerHeader:
    record = read_layout(
        CONTAINER_HEADER, container, offset, encoding_errors="absent"
    )
    return ContainerHeader(
        algorithm=record["algorithm"],
        decompressed_size=record["decompressed_size"],
        compressed_size=record["compressed_size"],
        hash=record["hash"],
        name=record["name"] or "",
        offset=offset,
    )


def is_packed(data: Any, offset: int = 0) -> bool:
    return bytes(data[offset : offset + len(MAGIC)]) == MAGIC


# Pack / unpack --------------------------------------------------------------


def pack(
    payload: Any,
    algorithm: Union[Algorithm, int, str] = Algorithm.ZLIB,
    *,
    name: str = "",
    level: Optional[int] = None,
) -> bytes:
    """Compress ``payload`` and wrap it in an xbc1 header."""
    algo = parse_algorithm(algorithm)
    raw = bytes(payload)
    compressed = _CODECS[algo].compress(raw, level)
    header = encode(
        CONTAINER_HEADER,
        {
            "algorithm": algo,
            "decompressed_size": len(raw),
            "compressed_size": len(compressed),
            "hash": crc32(raw),
            "name": name,
        },
    )
    out = header + compressed
    get_logger().debug(
        "packed %d -> %d bytes (%s)", len(raw), len(compressed), algo.name.lower()
    )
    return out.ljust(round_up(len(out), PAYLOAD_ALIGNMENT), b"\x00")


def _decompression_error(
    message: str, header: ContainerHeader, **extra: Any
) -> DecompressionError:
    ctx: Dict[str, Any] = {
        "offset": header.offset,
        "algorithm": header.algorithm.name.lower(),
        "compressed_size": header.compressed_size,
        "decompressed_size": header.decompressed_size,
    }
    ctx.update(extra)
    return DecompressionError(code=E_DECOMPRESSION, message=message, context=ctx)


def iter_unpack(
    container: Any, offset: int = 0, *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[bytes]:
    """Yield decompressed chunks of the container at ``offset``.

    Header problems raise immediately; stream, length and hash problems raise
    from the iterator, the hash check once the last chunk has been produced.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    header = read_header(container, offset)
    start = header.payload_offset
    if start + header.compressed_size > len(container):
        raise out_of_bounds(
            start, header.compressed_size, len(container), "xbc1.payload"
        )
    return _stream(memoryview(container), header, chunk_size)


def _stream(view: memoryview, header: ContainerHeader, chunk_size: int) -> Iterator[bytes]:
    codec = _CODECS[header.algorithm]
    decoder = codec.decoder()
    start = header.payload_offset
    data = view[start : start + header.compressed_size]
    total = 0
    digest = 0
    try:
        for out in decoder.chunks(data, chunk_size):
            for at in range(0, len(out), chunk_size):
                piece = out[at : at + chunk_size]
                total += len(piece)
                if total > header.decompressed_size:
                    raise _decompression_error(
                        "stream inflates past the declared size",
                        header,
                        actual=total,
                    )
                digest = crc32(piece, digest)
                yield piece
    except codec.errors as exc:
        raise _decompression_error(
            f"malformed compressed stream: {exc}",
            header,
            position=start + decoder.consumed,
        ) from exc
    if not decoder.eof:
        raise _decompression_error("compressed stream ends early", header)
    if decoder.trailing:
        raise _decompression_error(
            "trailing bytes after the compressed stream",
            header,
            trailing=decoder.trailing,
        )
    if total != header.decompressed_size:
        raise _decompression_error(
            "decompressed length differs from header", header, actual=total
        )
    if digest != header.hash:
        raise IntegrityMismatch(
            code=E_INTEGRITY,
            message="payload hash differs from header",
            context={
                "offset": header.offset,
                "expected": f"{header.hash:08x}",
                "actual": f"{digest:08x}",
            },
        )


def unpack(container: Any, offset: int = 0) -> bytes:
    """Decompress and verify the container at ``offset``."""
    return b"".join(iter_unpack(container, offset))


def unpack_if_packed(data: Any, offset: int = 0) -> bytes:
    """Return the payload whether or not ``data`` is wrapped in a container."""
    if is_packed(data, offset):
        return unpack(data, offset)
    return bytes(data[offset:])
