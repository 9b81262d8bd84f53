"""Structured layouts and per-format write policies."""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from ..errors import E_SCHEMA, layout_error
from .fields import Field

__all__ = [
    "Layout",
    "Traversal",
    "Dedup",
    "FormatPolicy",
    "round_up",
]


def round_up(value: int, alignment: int) -> int:
    if alignment <= 1:
        return value
    return (value + alignment - 1) // alignment * alignment


class Layout:
    """Named, ordered, fixed-size list of fields.

    ``alignment`` is the alignment this layout requires when it is the target
    of a pointer; ``align_after`` pads the write cursor to that multiple after
    the structure and its pointees. ``endian`` is a :mod:`struct` byte-order
    prefix.
    """

    def __init__(
        self,
        name: str,
        fields: Sequence[Field],
        *,
        alignment: int = 1,
        align_after: int = 1,
        endian: str = "<",
    ) -> None:
        if endian not in ("<", ">"):
            raise layout_error(
                E_SCHEMA,
                f"layout {name}: byte order must be '<' or '>'",
                {"layout": name, "endian": endian},
            )
        if alignment < 1 or align_after < 1:
            raise layout_error(
                E_SCHEMA,
                f"layout {name}: alignments must be positive",
                {"layout": name, "alignment": alignment, "align_after": align_after},
            )
        self.name = name
        self.fields: Tuple[Field, ...] = tuple(fields)
        self.alignment = alignment
        self.align_after = align_after
        self.endian = endian
        offsets: List[int] = []
        by_name: Dict[str, Field] = {}
        cursor = 0
        for f in self.fields:
            if f.name:
                if f.name in by_name:
                    raise layout_error(
                        E_SCHEMA,
                        f"layout {name}: duplicate field {f.name}",
                        {"layout": name, "field": f.name},
                    )
                by_name[f.name] = f
            offsets.append(cursor)
            cursor += f.size
        self.offsets: Tuple[int, ...] = tuple(offsets)
        self.size = cursor
        self._by_name = by_name
        self._offset_by_name = {
            f.name: off for f, off in zip(self.fields, offsets) if f.name
        }
        self.value_names: Tuple[str, ...] = tuple(
            f.name for f in self.fields if f.name and f.has_value
        )

    def __repr__(self) -> str:
        return f"Layout({self.name!r}, size={self.size})"

    def placed(self) -> Iterator[Tuple[int, Field]]:
        """Yield ``(relative_offset, field)`` in declared order."""
        return zip(self.offsets, self.fields)

    def find(self, name: str) -> Optional[Field]:
        return self._by_name.get(name)

    def field(self, name: str) -> Field:
        f = self._by_name.get(name)
        if f is None:
            raise layout_error(
                E_SCHEMA,
                f"layout {self.name} has no field {name}",
                {"layout": self.name, "field": name},
            )
        return f

    def offset_of(self, name: str) -> int:
        self.field(name)
        return self._offset_by_name[name]


class Traversal(Enum):
    DEPTH_FIRST = "depth_first"
    BREADTH_FIRST = "breadth_first"


class Dedup(Enum):
    NONE = "none"
    IDENTITY = "identity"
    EQUAL = "equal"


@dataclass(frozen=True)
class FormatPolicy:
    """Declared write behaviour of one binary format.

    ``byte_exact`` states whether re-encoding a decoded buffer must reproduce
    it byte for byte; it does not change what the writer emits.
    """

    traversal: Traversal = Traversal.DEPTH_FIRST
    dedup: Dedup = Dedup.NONE
    fill: int = 0
    trailing_alignment: int = 1
    byte_exact: bool = False
