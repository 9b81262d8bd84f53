"""Two-pass pointer-resolving writer.

Pass 1 emits a structure body with null placeholders in its pointer slots and
records one :class:`Patch` per non-null pointer. Pass 2 places the pending
pointees after the bodies, in the order the :class:`FormatPolicy` declares,
aligning each one with the field's fill byte. A layout's ``align_after`` pads
the cursor once that structure and its pointees are placed. Every patch is
applied only once the whole tree has been laid out, which is what makes
forward and backward references (including cycles back to an ancestor)
encodable.
"""

from __future__ import annotations
import struct
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import (
    E_COUNT_MISMATCH,
    E_CYCLE,
    E_MISSING_FIELD,
    E_POINTER_RANGE,
    E_SCHEMA,
    E_VALUE_RANGE,
    internal_error,
    layout_error,
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
    target_alignment,
)
from .schema import Dedup, FormatPolicy, Layout, Traversal, round_up

__all__ = ["Patch", "LayoutWriter", "encode"]


@dataclass(slots=True)
class Patch:
    """Pointer slot awaiting its pointee offset."""

    field: str
    position: int
    fmt: str
    mode: Addressing
    anchor: int
    null: int
    target: Optional[int] = None

    def stored_value(self) -> int:
        if self.target is None:
            raise internal_error(
                f"pointer {self.field} was never placed",
                {"field": self.field, "position": self.position},
            )
        return self.target - self.anchor


@dataclass(slots=True)
class _Frame:
    layout: Layout
    value: Dict[str, Any]
    source: Any
    start: int


@dataclass(slots=True)
class _Pending:
    patch: int
    target: Any
    value: Any
    align: int
    fill: int
    endian: str
    chain: Tuple[_Frame, ...]
    what: str


@dataclass(slots=True)
class _AlignAfter:
    """Pads the data cursor once a structure and its pointees are placed."""

    alignment: int
    fill: int


def _scalar_value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


def _freeze(value: Any, active: set) -> Any:
    """Hashable stand-in for ``value`` used by equality deduplication."""
    if isinstance(value, (bytes, str, int, float, type(None))):
        return value
    if isinstance(value, Enum):
        return value.value
    if id(value) in active:
        raise layout_error(
            E_CYCLE,
            "equality deduplication cannot key a cyclic value",
            {"type": type(value).__name__},
        )
    active.add(id(value))
    try:
        if isinstance(value, Mapping):
            return tuple(
                sorted((k, _freeze(v, active)) for k, v in value.items())
            )
        if isinstance(value, (list, tuple)):
            return ("[]",) + tuple(_freeze(v, active) for v in value)
        return repr(value)
    finally:
        active.discard(id(value))


class LayoutWriter:
    """Serialises a value tree for one root layout.

    A writer instance is single use: create one per ``write`` call.
    """

    def __init__(self, policy: Optional[FormatPolicy] = None) -> None:
        self.policy = policy or FormatPolicy()
        self.buffer = bytearray()
        self.patches: List[Patch] = []
        self._by_identity: Dict[Tuple[Any, int], int] = {}
        self._by_equal: Dict[Tuple[Any, Any], int] = {}

    # Public -------------------------------------------------------------------
    def write(self, layout: Layout, value: Any, offset: int = 0) -> bytes:
        logger = get_logger()
        self._reserve(offset + layout.size)
        self._by_identity[(layout, id(value))] = offset
        pending: List[Any] = list(self._emit_struct(layout, value, offset, ()))
        if layout.align_after > 1:
            pending.append(_AlignAfter(layout.align_after, self.policy.fill))
        self._place_all(pending)
        self._apply_patches()
        if self.policy.trailing_alignment > 1:
            self._reserve(
                round_up(len(self.buffer), self.policy.trailing_alignment),
                self.policy.fill,
            )
        logger.debug(
            "encoded %s: %d bytes, %d pointer(s)",
            layout.name,
            len(self.buffer),
            len(self.patches),
        )
        return bytes(self.buffer)

    # Buffer helpers -----------------------------------------------------------
    def _reserve(self, end: int, fill: int = 0) -> None:
        if len(self.buffer) < end:
            self.buffer.extend(bytes([fill]) * (end - len(self.buffer)))

    def _pack(self, fmt: str, pos: int, v: Any, what: str) -> None:
        args = v if isinstance(v, list) else [_scalar_value(v)]
        try:
            struct.pack_into(fmt, self.buffer, pos, *args)
        except struct.error as exc:
            raise layout_error(
                E_VALUE_RANGE,
                f"{what}: value does not fit {fmt!r} ({exc})",
                {"field": what, "format": fmt, "position": pos},
            ) from exc

    # Pass 1: structure bodies -------------------------------------------------
    def _emit_struct(
        self,
        layout: Layout,
        source: Any,
        start: int,
        chain: Tuple[_Frame, ...],
    ) -> List[_Pending]:
        if not isinstance(source, Mapping):
            raise layout_error(
                E_SCHEMA,
                f"{layout.name}: expected a mapping, got {type(source).__name__}",
                {"layout": layout.name},
            )
        value = _with_derived_counts(layout, source)
        frame = _Frame(layout, value, source, start)
        chain = chain + (frame,)
        endian = layout.endian
        pending: List[_Pending] = []
        for rel, f in layout.placed():
            pos = start + rel
            what = f"{layout.name}.{f.name}" if f.name else layout.name
            if isinstance(f, Magic):
                self.buffer[pos : pos + f.size] = f.value
            elif isinstance(f, Padding):
                self.buffer[pos : pos + f.size] = bytes([f.fill]) * f.size
            elif isinstance(f, Scalar):
                self._pack(endian + f.fmt, pos, _required(layout, value, f), what)
            elif isinstance(f, Array):
                items = list(_required(layout, value, f))
                if len(items) != f.count:
                    raise layout_error(
                        E_COUNT_MISMATCH,
                        f"{what}: expected {f.count} items, got {len(items)}",
                        {"field": what, "expected": f.count, "actual": len(items)},
                    )
                self._pack(f"{endian}{f.count}{f.fmt}", pos, items, what)
            elif isinstance(f, FixedBytes):
                raw = bytes(_required(layout, value, f))
                if len(raw) != f.size:
                    raise layout_error(
                        E_VALUE_RANGE,
                        f"{what}: expected {f.size} bytes, got {len(raw)}",
                        {"field": what, "expected": f.size, "actual": len(raw)},
                    )
                self.buffer[pos : pos + f.size] = raw
            elif isinstance(f, FixedString):
                text = _required(layout, value, f)
                if text is None:
                    raise layout_error(
                        E_MISSING_FIELD,
                        f"{what}: text is None",
                        {"layout": layout.name, "field": f.name},
                    )
                raw = _text_bytes(text, f.encoding, what)
                if len(raw) > f.size:
                    raise layout_error(
                        E_VALUE_RANGE,
                        f"{what}: text needs {len(raw)} bytes, slot holds {f.size}",
                        {"field": what, "expected": f.size, "actual": len(raw)},
                    )
                self.buffer[pos : pos + f.size] = raw.ljust(f.size, b"\x00")
            elif isinstance(f, Inline):
                pending.extend(
                    self._emit_struct(
                        f.layout, _required(layout, value, f), pos, chain
                    )
                )
            elif isinstance(f, Pointer):
                v = _required(layout, value, f)
                if v is None:
                    self._pack(endian + f.width, pos, f.null, what)
                    continue
                pending.append(
                    self._defer(
                        f,
                        endian + f.width,
                        pos,
                        resolve_target(f.target, layout),
                        v,
                        frame,
                        chain,
                        what,
                    )
                )
            elif isinstance(f, CountOffset):
                items = _required(layout, value, f) or []
                count_at, offset_at = f.slot_offsets()
                self._pack(endian + f.count_width, pos + count_at, len(items), what)
                if not items:
                    self._pack(endian + f.offset_width, pos + offset_at, f.null, what)
                    continue
                pending.append(
                    self._defer(
                        f,
                        endian + f.offset_width,
                        pos + offset_at,
                        resolve_target(f.target(len(items)), layout),
                        items,
                        frame,
                        chain,
                        what,
                    )
                )
            else:
                raise layout_error(
                    E_SCHEMA,
                    f"layout {layout.name}: unsupported field {f!r}",
                    {"layout": layout.name},
                )
        return pending

    def _defer(
        self,
        f: Any,
        fmt: str,
        pos: int,
        target: Any,
        value: Any,
        frame: _Frame,
        chain: Tuple[_Frame, ...],
        what: str,
    ) -> _Pending:
        anchor = 0
        if f.mode is Addressing.RELATIVE:
            anchor = frame.start
        elif f.mode is Addressing.BASE:
            anchor = _lookup_base(chain, f.base, what)
        self._pack(fmt, pos, f.null, what)
        self.patches.append(
            Patch(f.name, pos, fmt, f.mode, anchor, f.null)
        )
        fill = self.policy.fill if f.fill is None else f.fill
        return _Pending(
            len(self.patches) - 1,
            target,
            value,
            f.align,
            fill,
            frame.layout.endian,
            chain,
            what,
        )

    # Pass 2: pointee placement ------------------------------------------------
    def _place_all(self, pending: List[Any]) -> None:
        if self.policy.traversal is Traversal.BREADTH_FIRST:
            queue = deque(pending)
            while queue:
                queue.extend(self._step(queue.popleft()))
        else:
            stack = list(reversed(pending))
            while stack:
                stack.extend(reversed(self._step(stack.pop())))

    def _step(self, item: Any) -> List[Any]:
        if isinstance(item, _AlignAfter):
            self._reserve(round_up(len(self.buffer), item.alignment), item.fill)
            return []
        return self._place(item)

    def _existing(self, p: _Pending) -> Optional[int]:
        target = p.target
        if isinstance(target, Layout):
            # a pointer back to an enclosing structure always reuses it
            for fr in reversed(p.chain):
                if fr.source is p.value and fr.layout is target:
                    return fr.start
        if self.policy.dedup is Dedup.IDENTITY:
            return self._by_identity.get((target, id(p.value)))
        if self.policy.dedup is Dedup.EQUAL:
            return self._by_equal.get((target, _freeze(p.value, set())))
        return None

    def _remember(self, target: Any, value: Any, offset: int) -> None:
        self._by_identity.setdefault((target, id(value)), offset)
        if self.policy.dedup is Dedup.EQUAL:
            self._by_equal.setdefault((target, _freeze(value, set())), offset)

    def _place(self, p: _Pending) -> List[Any]:
        patch = self.patches[p.patch]
        hit = self._existing(p)
        if hit is not None:
            patch.target = hit
            return []
        target = p.target
        align = max(target_alignment(target), p.align)
        start = round_up(len(self.buffer), align)
        if patch.mode is Addressing.BASE:
            # a base-relative pointee never lands before its base
            start = max(start, round_up(patch.anchor, align))
            if start - patch.anchor == patch.null:
                start = round_up(start + 1, align)
        self._reserve(start, p.fill)
        patch.target = start
        self._remember(target, p.value, start)
        children: List[Any] = []
        after = 1
        if isinstance(target, Layout):
            self._reserve(start + target.size)
            children = self._emit_struct(target, p.value, start, p.chain)
            after = target.align_after
        elif isinstance(target, ArrayOf):
            items = list(p.value)
            if isinstance(target.count, int) and len(items) != target.count:
                raise layout_error(
                    E_COUNT_MISMATCH,
                    f"{p.what}: expected {target.count} items, got {len(items)}",
                    {"field": p.what, "expected": target.count, "actual": len(items)},
                )
            element = target.element
            if isinstance(element, Layout):
                self._reserve(start + element.size * len(items))
                after = element.align_after
                for i, item in enumerate(items):
                    at = start + i * element.size
                    self._by_identity.setdefault((element, id(item)), at)
                    children.extend(self._emit_struct(element, item, at, p.chain))
            else:
                fmt = f"{p.endian}{len(items)}{element}"
                self._reserve(start + struct.calcsize(fmt))
                self._pack(fmt, start, items, p.what)
        elif isinstance(target, Blob):
            raw = bytes(p.value)
            if isinstance(target.size, int) and len(raw) != target.size:
                raise layout_error(
                    E_VALUE_RANGE,
                    f"{p.what}: expected {target.size} bytes, got {len(raw)}",
                    {"field": p.what, "expected": target.size, "actual": len(raw)},
                )
            self.buffer.extend(raw)
        elif isinstance(target, CString):
            raw = _text_bytes(p.value, target.encoding, p.what)
            if b"\x00" in raw:
                raise layout_error(
                    E_VALUE_RANGE,
                    f"{p.what}: text contains a NUL byte",
                    {"field": p.what},
                )
            self.buffer.extend(raw + b"\x00")
        elif isinstance(target, LengthPrefixed):
            raw = (
                bytes(p.value)
                if target.encoding is None
                else _text_bytes(p.value, target.encoding, p.what)
            )
            fmt = p.endian + target.width
            self._reserve(start + struct.calcsize(fmt))
            self._pack(fmt, start, len(raw), p.what)
            self.buffer.extend(raw)
        else:
            raise layout_error(
                E_SCHEMA,
                f"{p.what}: unsupported pointee {target!r}",
                {"field": p.what},
            )
        pad = getattr(target, "pad_size_to", None)
        if pad is not None:
            written = len(self.buffer) - start
            if written > pad:
                raise layout_error(
                    E_VALUE_RANGE,
                    f"{p.what}: {written} bytes exceed the padded size {pad}",
                    {"field": p.what, "expected": pad, "actual": written},
                )
            self._reserve(start + pad, p.fill)
        if after > 1:
            children.append(_AlignAfter(after, p.fill))
        return children

    # Backpatching -------------------------------------------------------------
    def _apply_patches(self) -> None:
        logger = get_logger()
        for patch in self.patches:
            stored = patch.stored_value()
            if stored == patch.null:
                raise layout_error(
                    E_POINTER_RANGE,
                    f"{patch.field}: pointee at {patch.target} encodes as the null sentinel",
                    {
                        "field": patch.field,
                        "target": patch.target,
                        "anchor": patch.anchor,
                        "null": patch.null,
                    },
                )
            try:
                struct.pack_into(patch.fmt, self.buffer, patch.position, stored)
            except struct.error as exc:
                raise layout_error(
                    E_POINTER_RANGE,
                    f"{patch.field}: offset {stored} does not fit {patch.fmt!r}",
                    {
                        "field": patch.field,
                        "target": patch.target,
                        "anchor": patch.anchor,
                        "stored": stored,
                    },
                ) from exc
            logger.debug(
                "patch %s @%d = %d (%s)",
                patch.field,
                patch.position,
                stored,
                patch.mode.value,
            )


def _required(layout: Layout, value: Mapping[str, Any], f: Any) -> Any:
    if f.name in value:
        return value[f.name]
    if isinstance(f, Scalar) and f.default is not None:
        return f.default
    raise layout_error(
        E_MISSING_FIELD,
        f"{layout.name}: missing value for {f.name}",
        {"layout": layout.name, "field": f.name},
    )


def _text_bytes(value: Any, encoding: str, what: str) -> bytes:
    # undecodable text read in "raw" mode passes through unchanged
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return str(value).encode(encoding)
    except UnicodeEncodeError as exc:
        raise layout_error(
            E_VALUE_RANGE,
            f"{what}: text is not encodable as {encoding}",
            {"field": what, "encoding": encoding},
        ) from exc


def _lookup_base(chain: Tuple[_Frame, ...], name: str, what: str) -> int:
    for frame in reversed(chain):
        f = frame.layout.find(name)
        if isinstance(f, Scalar):
            return int(_scalar_value(_required(frame.layout, frame.value, f)))
    raise layout_error(
        E_SCHEMA,
        f"{what}: no base-offset field {name} in enclosing structures",
        {"field": what, "base": name},
    )


def _with_derived_counts(layout: Layout, source: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy ``source`` with sibling count/size fields filled from pointee lengths."""
    value = dict(source)
    for f in layout.fields:
        if not isinstance(f, Pointer):
            continue
        target = resolve_target(f.target, layout)
        if isinstance(target, ArrayOf) and isinstance(target.count, str):
            sibling = target.count
        elif isinstance(target, Blob) and isinstance(target.size, str):
            sibling = target.size
        else:
            continue
        pointee = value.get(f.name)
        actual = 0 if pointee is None else len(pointee)
        declared = value.get(sibling)
        if declared is not None and int(declared) != actual:
            raise layout_error(
                E_COUNT_MISMATCH,
                f"{layout.name}.{sibling} is {declared} but {f.name} holds {actual}",
                {
                    "layout": layout.name,
                    "field": sibling,
                    "expected": actual,
                    "actual": declared,
                },
            )
        value[sibling] = actual
    return value


def encode(
    layout: Layout,
    value: Any,
    *,
    policy: Optional[FormatPolicy] = None,
    offset: int = 0,
) -> bytes:
    """Serialise ``value`` with ``layout`` as the root structure at ``offset``."""
    return LayoutWriter(policy).write(layout, value, offset)
