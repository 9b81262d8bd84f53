"""Read/write round-trip checks for layouts."""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Set, Tuple

from ..logging import get_logger
from .reader import decode
from .schema import FormatPolicy, Layout
from .writer import encode

__all__ = ["RoundTripReport", "check_round_trip", "values_equal"]


@dataclass(slots=True)
class RoundTripReport:
    layout: str
    value_equal: bool
    byte_equal: bool
    byte_exact_required: bool
    original_size: int
    encoded_size: int
    first_difference: Optional[int] = None

    @property
    def ok(self) -> bool:
        if not self.value_equal:
            return False
        return self.byte_equal or not self.byte_exact_required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layout": self.layout,
            "ok": self.ok,
            "value_equal": self.value_equal,
            "byte_equal": self.byte_equal,
            "byte_exact_required": self.byte_exact_required,
            "original_size": self.original_size,
            "encoded_size": self.encoded_size,
            "first_difference": self.first_difference,
        }


def values_equal(a: Any, b: Any, _seen: Optional[Set[Tuple[int, int]]] = None) -> bool:
    """Structural equality that tolerates shared and cyclic sub-values."""
    seen = set() if _seen is None else _seen
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        key = (id(a), id(b))
        if key in seen:
            return True
        seen.add(key)
        if set(a.keys()) != set(b.keys()):
            return False
        return all(values_equal(a[k], b[k], seen) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            return False
        return all(values_equal(x, y, seen) for x, y in zip(a, b))
    return a == b


def _first_difference(left: bytes, right: bytes) -> Optional[int]:
    for i, (x, y) in enumerate(zip(left, right)):
        if x != y:
            return i
    if len(left) != len(right):
        return min(len(left), len(right))
    return None


def check_round_trip(
    layout: Layout,
    data: Any,
    policy: Optional[FormatPolicy] = None,
    offset: int = 0,
    *,
    strict: bool = True,
) -> RoundTripReport:
    """Decode ``data``, re-encode it and compare both the values and the bytes.

    The root is re-encoded at ``offset`` so the comparison covers
    ``data[offset:]`` against the writer output from the same position.
    """
    policy = policy or FormatPolicy()
    original = bytes(data)
    value = decode(layout, original, offset, strict=strict)
    encoded = encode(layout, value, policy=policy, offset=offset)
    again = decode(layout, encoded, offset, strict=strict)
    first = _first_difference(original[offset:], encoded[offset:])
    report = RoundTripReport(
        layout=layout.name,
        value_equal=values_equal(value, again),
        byte_equal=first is None,
        byte_exact_required=policy.byte_exact,
        original_size=len(original),
        encoded_size=len(encoded),
        first_difference=None if first is None else first + offset,
    )
    if not report.ok:
        get_logger().warning(
            "round trip of %s diverged at byte %s", layout.name, report.first_difference
        )
    return report
