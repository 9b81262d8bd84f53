"""Compressed container codec (xbc1)."""

from .codec import (
    CONTAINER_HEADER,
    DEFAULT_CHUNK_SIZE,
    HEADER_SIZE,
    MAGIC,
    NAME_SIZE,
    PAYLOAD_ALIGNMENT,
    Algorithm,
    ContainerHeader,
    crc32,
    is_packed,
    iter_unpack,
    pack,
    parse_algorithm,
    read_header,
    unpack,
    unpack_if_packed,
)

__all__ = [
    "CONTAINER_HEADER",
    "DEFAULT_CHUNK_SIZE",
    "HEADER_SIZE",
    "MAGIC",
    "NAME_SIZE",
    "PAYLOAD_ALIGNMENT",
    "Algorithm",
    "ContainerHeader",
    "crc32",
    "is_packed",
    "iter_unpack",
    "pack",
    "parse_algorithm",
    "read_header",
    "unpack",
    "unpack_if_packed",
]
