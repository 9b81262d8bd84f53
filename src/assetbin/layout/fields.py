"""Field and pointee declarations for structured binary layouts.

A :class:`~assetbin.layout.schema.Layout` is an ordered list of the fields
below. Fixed fields (scalars, arrays, raw bytes, text, magic tags, padding and
inline layouts) live inside the structure body. Pointer fields store an offset
to a *pointee* placed elsewhere in the buffer; the pointee kinds are
``Layout``, :class:`ArrayOf`, :class:`Blob`, :class:`CString` and
:class:`LengthPrefixed`.

Schemas that refer to themselves use :data:`SELF` (the layout that owns the
pointer) or a zero-argument callable returning the target layout, which is
resolved on first use.
"""

from __future__ import annotations
import struct
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple, Type, Union

from ..errors import E_SCHEMA, layout_error

if TYPE_CHECKING:  # pragma: no cover
    from .schema import Layout

SCALAR_FORMATS = frozenset("bBhHiIqQefd")
INTEGER_FORMATS = frozenset("bBhHiIqQ")

__all__ = [
    "Addressing",
    "SELF",
    "Field",
    "Scalar",
    "Array",
    "FixedBytes",
    "FixedString",
    "Magic",
    "Padding",
    "Inline",
    "Pointer",
    "CountOffset",
    "ArrayOf",
    "Blob",
    "CString",
    "LengthPrefixed",
    "scalar_size",
    "resolve_target",
    "target_alignment",
    "u8",
    "u16",
    "u32",
    "u64",
    "i8",
    "i16",
    "i32",
    "i64",
    "f32",
    "f64",
]


class Addressing(Enum):
    """How a stored pointer value maps to an absolute buffer offset."""

    ABSOLUTE = "absolute"  # offset from the buffer start
    RELATIVE = "relative"  # offset from the containing structure start
    BASE = "base"  # offset from the value of a named base-offset field


class _SelfTarget:
    __slots__ = ()

    def __repr__(self) -> str:
        return "SELF"


SELF = _SelfTarget()


def scalar_size(fmt: str) -> int:
    if len(fmt) != 1 or fmt not in SCALAR_FORMATS:
        raise layout_error(
            E_SCHEMA, f"unsupported scalar format {fmt!r}", {"format": fmt}
        )
    return struct.calcsize("<" + fmt)


def _integer_width(fmt: str, what: str) -> int:
    if fmt not in INTEGER_FORMATS:
        raise layout_error(
            E_SCHEMA,
            f"{what} must use an integer format, got {fmt!r}",
            {"field": what, "format": fmt},
        )
    return scalar_size(fmt)


class Field:
    """Base class for fields placed inside a structure body."""

    name: str
    size: int

    @property
    def has_value(self) -> bool:
        return True


@dataclass(frozen=True)
class Scalar(Field):
    name: str
    fmt: str
    enum: Optional[Type[Enum]] = None
    default: Any = None

    def __post_init__(self) -> None:
        scalar_size(self.fmt)

    @property
    def size(self) -> int:
        return scalar_size(self.fmt)


@dataclass(frozen=True)
class Array(Field):
    name: str
    fmt: str
    count: int

    def __post_init__(self) -> None:
        scalar_size(self.fmt)

    @property
    def size(self) -> int:
        return scalar_size(self.fmt) * self.count


@dataclass(frozen=True)
class FixedBytes(Field):
    name: str
    size: int


@dataclass(frozen=True)
class FixedString(Field):
    """NUL padded text stored inline."""

    name: str
    size: int
    encoding: str = "utf-8"


@dataclass(frozen=True)
class Magic(Field):
    value: bytes
    name: str = "magic"

    @property
    def size(self) -> int:
        return len(self.value)

    @property
    def has_value(self) -> bool:
        return False


@dataclass(frozen=True)
class Padding(Field):
    size: int
    fill: int = 0
    name: str = ""

    @property
    def has_value(self) -> bool:
        return False


@dataclass(frozen=True)
class Inline(Field):
    name: str
    layout: "Layout"

    @property
    def size(self) -> int:
        return self.layout.size


@dataclass(frozen=True)
class Pointer(Field):
    """Offset slot referring to a pointee placed elsewhere in the buffer.

    ``align`` and ``fill`` apply to the pointee position on write (``fill``
    falls back to the format policy). A stored value equal to ``null`` reads
    back as ``None``.
    """

    name: str
    target: Any
    mode: Addressing = Addressing.ABSOLUTE
    width: str = "I"
    base: Optional[str] = None
    align: int = 1
    fill: Optional[int] = None
    null: int = 0

    def __post_init__(self) -> None:
        _integer_width(self.width, self.name)
        if self.mode is Addressing.BASE and not self.base:
            raise layout_error(
                E_SCHEMA,
                f"pointer {self.name} uses base addressing without a base field",
                {"field": self.name},
            )

    @property
    def size(self) -> int:
        return scalar_size(self.width)


@dataclass(frozen=True)
class CountOffset(Field):
    """Element count and offset stored back to back; the value is a list."""

    name: str
    element: Any
    count_width: str = "I"
    offset_width: str = "I"
    order: str = "count_offset"
    mode: Addressing = Addressing.ABSOLUTE
    base: Optional[str] = None
    align: int = 1
    fill: Optional[int] = None
    null: int = 0

    def __post_init__(self) -> None:
        _integer_width(self.count_width, self.name)
        _integer_width(self.offset_width, self.name)
        if self.order not in ("count_offset", "offset_count"):
            raise layout_error(
                E_SCHEMA,
                f"unknown count/offset order {self.order!r}",
                {"field": self.name},
            )
        if self.mode is Addressing.BASE and not self.base:
            raise layout_error(
                E_SCHEMA,
                f"field {self.name} uses base addressing without a base field",
                {"field": self.name},
            )

    @property
    def size(self) -> int:
        return scalar_size(self.count_width) + scalar_size(self.offset_width)

    def slot_offsets(self) -> Tuple[int, int]:
        """Return (count, offset) positions relative to the field start."""
        if self.order == "count_offset":
            return 0, scalar_size(self.count_width)
        return scalar_size(self.offset_width), 0

    def target(self, count: int) -> "ArrayOf":
        return ArrayOf(self.element, count)


@dataclass(frozen=True)
class ArrayOf:
    """Pointee holding ``count`` consecutive elements.

    ``element`` is a layout or a scalar format code; ``count`` is a constant or
    the name of a sibling scalar field in the structure holding the pointer.
    ``pad_size_to`` (on every pointee kind) pads the written data with the
    pointer's fill byte up to that many bytes.
    """

    element: Any
    count: Union[int, str]
    alignment: int = 1
    pad_size_to: Optional[int] = None


@dataclass(frozen=True)
class Blob:
    size: Union[int, str]
    alignment: int = 1
    pad_size_to: Optional[int] = None


@dataclass(frozen=True)
class CString:
    encoding: str = "utf-8"
    alignment: int = 1
    pad_size_to: Optional[int] = None


@dataclass(frozen=True)
class LengthPrefixed:
    width: str = "I"
    encoding: Optional[str] = None
    alignment: int = 1
    pad_size_to: Optional[int] = None

    def __post_init__(self) -> None:
        _integer_width(self.width, "length prefix")


def resolve_target(target: Any, owner: "Layout") -> Any:
    """Expand :data:`SELF` and deferred callables into concrete pointees."""
    from .schema import Layout

    if target is SELF:
        return owner
    if isinstance(target, ArrayOf):
        element = target.element
        if element is SELF or (
            callable(element) and not isinstance(element, Layout)
        ):
            return replace(target, element=resolve_target(element, owner))
        return target
    if isinstance(target, (Layout, Blob, CString, LengthPrefixed)):
        return target
    if callable(target):
        return resolve_target(target(), owner)
    raise layout_error(
        E_SCHEMA, f"unsupported pointee {target!r}", {"target": repr(target)}
    )


def target_alignment(target: Any) -> int:
    from .schema import Layout

    if isinstance(target, Layout):
        return target.alignment
    if isinstance(target, ArrayOf) and isinstance(target.element, Layout):
        return max(target.alignment, target.element.alignment)
    return target.alignment


def _scalar_factory(fmt: str) -> Callable[..., Scalar]:
    def make(name: str, **kw: Any) -> Scalar:
        return Scalar(name, fmt, **kw)

    make.__name__ = f"scalar_{fmt}"
    return make


u8 = _scalar_factory("B")
u16 = _scalar_factory("H")
u32 = _scalar_factory("I")
u64 = _scalar_factory("Q")
i8 = _scalar_factory("b")
i16 = _scalar_factory("h")
i32 = _scalar_factory("i")
i64 = _scalar_factory("q")
f32 = _scalar_factory("f")
f64 = _scalar_factory("d")
