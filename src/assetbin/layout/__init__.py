"""Declarative binary layouts with pointer-resolving read and write."""

from .fields import (
    SELF,
    Addressing,
    Array,
    ArrayOf,
    Blob,
    CountOffset,
    CString,
    Field,
    FixedBytes,
    FixedString,
    Inline,
    LengthPrefixed,
    Magic,
    Padding,
    Pointer,
    Scalar,
    f32,
    f64,
    i8,
    i16,
    i32,
    i64,
    u8,
    u16,
    u32,
    u64,
)
from .schema import Dedup, FormatPolicy, Layout, Traversal, round_up
from .reader import BufferView, PointerRef, Record, decode, read_layout
from .writer import LayoutWriter, Patch, encode
from .verify import RoundTripReport, check_round_trip, values_equal

__all__ = [
    "SELF",
    "Addressing",
    "Array",
    "ArrayOf",
    "Blob",
    "CountOffset",
    "CString",
    "Field",
    "FixedBytes",
    "FixedString",
    "Inline",
    "LengthPrefixed",
    "Magic",
    "Padding",
    "Pointer",
    "Scalar",
    "f32",
    "f64",
    "i8",
    "i16",
    "i32",
    "i64",
    "u8",
    "u16",
    "u32",
    "u64",
    "Dedup",
    "FormatPolicy",
    "Layout",
    "Traversal",
    "round_up",
    "BufferView",
    "PointerRef",
    "Record",
    "decode",
    "read_layout",
    "LayoutWriter",
    "Patch",
    "encode",
    "RoundTripReport",
    "check_round_trip",
    "values_equal",
]
