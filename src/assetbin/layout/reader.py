"""Pointer-resolving reader for structured binary layouts.

``read_layout`` validates and decodes the fixed body of the root structure
immediately. Pointer fields keep only their stored value until they are
accessed; a malformed pointer nobody reads never raises. ``Record.to_value``
materialises the whole tree, sharing objects for pointees reached twice so
cyclic graphs terminate.
"""

from __future__ import annotations
import struct
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Union

from ..errors import (
    E_INVALID_ENCODING,
    E_SCHEMA,
    InvalidEncoding,
    bad_magic,
    layout_error,
    out_of_bounds,
    unsupported_variant,
)
from ..logging import get_logger
from .fields import (
    Addressing,
    Array,
    ArrayOf,
    Blob,
    CountOffset,
    CString,
    FixedBytes,
    FixedString,
    Inline,
    LengthPrefixed,
    Magic,
    Padding,
    Pointer,
    Scalar,
    resolve_target,
)
from .schema import Layout

__all__ = [
    "BufferView",
    "PointerRef",
    "Record",
    "read_layout",
    "decode",
]

ENCODING_ERROR_MODES = ("raise", "absent", "raw")


class BufferView:
    """Immutable buffer plus the decode options shared by its records."""

    __slots__ = ("data", "strict", "encoding_errors")

    def __init__(
        self, data: Any, *, strict: bool = True, encoding_errors: str = "raise"
    ) -> None:
        if encoding_errors not in ENCODING_ERROR_MODES:
            raise ValueError(
                f"encoding_errors must be one of {ENCODING_ERROR_MODES}"
            )
        self.data: bytes = data if isinstance(data, bytes) else bytes(data)
        self.strict = strict
        self.encoding_errors = encoding_errors

    def __len__(self) -> int:
        return len(self.data)

    def require(self, offset: int, size: int, what: str = "") -> None:
        if offset < 0 or size < 0 or offset + size > len(self.data):
            raise out_of_bounds(offset, size, len(self.data), what)

    def read(self, offset: int, size: int, what: str = "") -> bytes:
        self.require(offset, size, what)
        return self.data[offset : offset + size]

    def unpack(self, fmt: str, offset: int, what: str = "") -> tuple:
        self.require(offset, struct.calcsize(fmt), what)
        return struct.unpack_from(fmt, self.data, offset)

    def read_cstring(self, offset: int, what: str = "") -> bytes:
        self.require(offset, 0, what)
        end = self.data.find(b"\x00", offset)
        if end < 0:
            # unterminated: the terminator would sit past the buffer end
            raise out_of_bounds(
                offset, len(self.data) - offset + 1, len(self.data), what
            )
        return self.data[offset:end]

    def decode_text(
        self, raw: bytes, encoding: str, offset: int, what: str
    ) -> Union[str, bytes, None]:
        """Decode ``raw``; lenient views return ``None`` or ``raw`` for bad text."""
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError as exc:
            if self.encoding_errors == "absent":
                return None
            if self.encoding_errors == "raw":
                return raw
            raise InvalidEncoding(
                code=E_INVALID_ENCODING,
                message=f"{what}: invalid {encoding} text",
                context={
                    "field": what,
                    "offset": offset + exc.start,
                    "encoding": encoding,
                    "reason": exc.reason,
                },
            ) from exc


@dataclass(frozen=True, slots=True)
class PointerRef:
    """Deferred reference: where a pointer field leads, without decoding."""

    field: str
    stored: int
    anchor: int
    target_offset: Optional[int]
    count: Optional[int] = None

    @property
    def is_null(self) -> bool:
        return self.target_offset is None


class Record(Mapping[str, Any]):
    """Read-only view of one structure inside a buffer."""

    __slots__ = ("_view", "layout", "start", "parent", "_raw", "_cache")

    def __init__(
        self,
        view: BufferView,
        layout: Layout,
        start: int,
        parent: Optional["Record"] = None,
    ) -> None:
        self._view = view
        self.layout = layout
        self.start = start
        self.parent = parent
        self._raw: Dict[str, Any] = {}
        self._cache: Dict[str, Any] = {}
        view.require(start, layout.size, layout.name)
        endian = layout.endian
        for rel, f in layout.placed():
            pos = start + rel
            if isinstance(f, Scalar):
                self._raw[f.name] = view.unpack(endian + f.fmt, pos)[0]
            elif isinstance(f, Pointer):
                self._raw[f.name] = view.unpack(endian + f.width, pos)[0]
            elif isinstance(f, CountOffset):
                count_at, offset_at = f.slot_offsets()
                count = view.unpack(endian + f.count_width, pos + count_at)[0]
                stored = view.unpack(endian + f.offset_width, pos + offset_at)[0]
                self._raw[f.name] = (count, stored)
            elif isinstance(f, Array):
                self._raw[f.name] = list(
                    view.unpack(f"{endian}{f.count}{f.fmt}", pos)
                )
            elif isinstance(f, (FixedBytes, FixedString)):
                self._raw[f.name] = view.read(pos, f.size)
            elif isinstance(f, Magic):
                actual = view.read(pos, f.size)
                if actual != f.value:
                    raise bad_magic(
                        f.value, actual, pos, f"{layout.name}.{f.name}"
                    )
            elif isinstance(f, Inline):
                self._raw[f.name] = Record(view, f.layout, pos, parent=self)
            elif isinstance(f, Padding):
                continue
            else:
                raise layout_error(
                    E_SCHEMA,
                    f"layout {layout.name}: unsupported field {f!r}",
                    {"layout": layout.name},
                )

    # Mapping protocol ---------------------------------------------------------
    def __getitem__(self, name: str) -> Any:
        if name in self._cache:
            return self._cache[name]
        f = self.layout.find(name)
        if f is None or not f.has_value:
            raise KeyError(name)
        value = self._materialize(f)
        self._cache[name] = value
        return value

    def __iter__(self) -> Iterator[str]:
        return iter(self.layout.value_names)

    def __len__(self) -> int:
        return len(self.layout.value_names)

    def __repr__(self) -> str:
        return f"<Record {self.layout.name} @ {self.start}>"

    @property
    def end(self) -> int:
        return self.start + self.layout.size

    # Raw access ---------------------------------------------------------------
    def stored(self, name: str) -> Any:
        """Raw slot value(s): ints for scalars and pointers, (count, offset) pairs."""
        self.layout.field(name)
        return self._raw.get(name)

    def lookup(self, name: str) -> int:
        """Find integer field ``name`` here or in an enclosing record."""
        rec: Optional[Record] = self
        while rec is not None:
            f = rec.layout.find(name)
            if isinstance(f, Scalar):
                return int(rec._raw[name])
            rec = rec.parent
        raise layout_error(
            E_SCHEMA,
            f"no base-offset field {name} visible from {self.layout.name}",
            {"layout": self.layout.name, "field": name},
        )

    def _anchor(self, f: Any) -> int:
        if f.mode is Addressing.RELATIVE:
            return self.start
        if f.mode is Addressing.BASE:
            return self.lookup(f.base)
        return 0

    def pointer(self, name: str) -> PointerRef:
        f = self.layout.field(name)
        if isinstance(f, Pointer):
            stored = self._raw[name]
            if stored == f.null:
                return PointerRef(name, stored, 0, None)
            anchor = self._anchor(f)
            return PointerRef(name, stored, anchor, anchor + stored)
        if isinstance(f, CountOffset):
            count, stored = self._raw[name]
            if count == 0:
                return PointerRef(name, stored, 0, None, 0)
            anchor = self._anchor(f)
            return PointerRef(name, stored, anchor, anchor + stored, count)
        raise layout_error(
            E_SCHEMA,
            f"{self.layout.name}.{name} is not a pointer field",
            {"layout": self.layout.name, "field": name},
        )

    # Decoding -----------------------------------------------------------------
    def _what(self, name: str) -> str:
        return f"{self.layout.name}.{name}"

    def _materialize(self, f: Any) -> Any:
        raw = self._raw.get(f.name)
        if isinstance(f, Scalar):
            if f.enum is None:
                return raw
            try:
                return f.enum(raw)
            except ValueError:
                if self._view.strict:
                    raise unsupported_variant(
                        self._what(f.name),
                        raw,
                        self.start + self.layout.offset_of(f.name),
                        expected=[m.value for m in f.enum],
                    ) from None
                return raw
        if isinstance(f, FixedString):
            return self._view.decode_text(
                raw.split(b"\x00", 1)[0],
                f.encoding,
                self.start + self.layout.offset_of(f.name),
                self._what(f.name),
            )
        if isinstance(f, Pointer):
            ref = self.pointer(f.name)
            if ref.is_null:
                return None
            return self._decode_target(
                resolve_target(f.target, self.layout), ref
            )
        if isinstance(f, CountOffset):
            ref = self.pointer(f.name)
            if ref.is_null:
                return []
            target = resolve_target(f.target(ref.count), self.layout)
            return self._decode_target(target, ref)
        if isinstance(f, Array):
            return list(raw)
        return raw

    def _sibling(self, name: str) -> int:
        f = self.layout.find(name)
        if not isinstance(f, Scalar):
            raise layout_error(
                E_SCHEMA,
                f"{self.layout.name}: count field {name} is not a scalar",
                {"layout": self.layout.name, "field": name},
            )
        return int(self._raw[name])

    def _decode_target(self, target: Any, ref: PointerRef) -> Any:
        view = self._view
        at = ref.target_offset
        assert at is not None
        what = self._what(ref.field)
        get_logger().debug("resolve %s -> %s at %d", what, target, at)
        if isinstance(target, Layout):
            return Record(view, target, at, parent=self)
        if isinstance(target, ArrayOf):
            count = (
                target.count
                if isinstance(target.count, int)
                else self._sibling(target.count)
            )
            element = target.element
            if isinstance(element, Layout):
                view.require(at, count * element.size, what)
                return [
                    Record(view, element, at + i * element.size, parent=self)
                    for i in range(count)
                ]
            return list(view.unpack(f"{self.layout.endian}{count}{element}", at, what))
        if isinstance(target, Blob):
            size = (
                target.size
                if isinstance(target.size, int)
                else self._sibling(target.size)
            )
            return view.read(at, size, what)
        if isinstance(target, CString):
            raw = view.read_cstring(at, what)
            return view.decode_text(raw, target.encoding, at, what)
        if isinstance(target, LengthPrefixed):
            prefix = self.layout.endian + target.width
            (length,) = view.unpack(prefix, at, what)
            raw = view.read(at + struct.calcsize(prefix), length, what)
            if target.encoding is None:
                return raw
            return view.decode_text(
                raw, target.encoding, at + struct.calcsize(prefix), what
            )
        raise layout_error(
            E_SCHEMA, f"{what}: unsupported pointee {target!r}", {"field": what}
        )

    # Materialisation ----------------------------------------------------------
    def to_value(self, _memo: Optional[Dict[Any, Any]] = None) -> Dict[str, Any]:
        """Return the record tree as plain dicts and lists."""
        memo: Dict[Any, Any] = {} if _memo is None else _memo
        key = (id(self.layout), self.start)
        if key in memo:
            return memo[key]
        out: Dict[str, Any] = {}
        memo[key] = out
        for name in self.layout.value_names:
            out[name] = _plain(self[name], memo)
        return out


def _plain(value: Any, memo: Dict[Any, Any]) -> Any:
    if isinstance(value, Record):
        return value.to_value(memo)
    if isinstance(value, list):
        return [_plain(v, memo) for v in value]
    return value


def read_layout(
    layout: Layout,
    data: Any,
    offset: int = 0,
    *,
    strict: bool = True,
    encoding_errors: str = "raise",
) -> Record:
    """Decode the structure at ``offset``; pointees resolve on access."""
    view = BufferView(data, strict=strict, encoding_errors=encoding_errors)
    return Record(view, layout, offset)


def decode(
    layout: Layout,
    data: Any,
    offset: int = 0,
    *,
    strict: bool = True,
    encoding_errors: str = "raise",
) -> Dict[str, Any]:
    return read_layout(
        layout, data, offset, strict=strict, encoding_errors=encoding_errors
    ).to_value()

