"""Bundle disassembly."""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional

from ..container import unpack
from ..errors import (
    E_ALIGNMENT,
    E_OVERLAP,
    bundle_error,
    out_of_bounds,
    unsupported_variant,
)
from ..layout import read_layout
from ..logging import get_logger
from .planner import Segment
from .policy import FLAG_COMPRESSED, TOC_ENTRY, BundlePolicy, SegmentPolicy

__all__ = ["TocEntry", "read_toc", "disassemble"]


@dataclass(slots=True)
class TocEntry:
    slot: int
    tag: int
    kind: str
    offset: int
    size: int
    flags: int
    position: int
    policy: Optional[SegmentPolicy] = None

    @property
    def present(self) -> bool:
        return self.offset != 0

    @property
    def compressed(self) -> bool:
        return bool(self.flags & FLAG_COMPRESSED)


def read_toc(
    data: Any,
    policy: BundlePolicy,
    base_offset: int = 0,
    *,
    strict: bool = True,
) -> tuple[int, int, List[TocEntry]]:
    """Return ``(version, toc_end, entries)`` for the bundle at ``base_offset``.

    ``toc_end`` is relative to the bundle start. Unknown kind tags raise
    ``UnsupportedVariant`` when strict and read as ``"tag:<n>"`` otherwise.
    """
    header = read_layout(policy.header_layout(), data, base_offset, strict=strict)
    version = header["version"]
    if version != policy.version:
        if strict:
            raise unsupported_variant(
                "bundle.version", version, base_offset, expected=policy.version
            )
        get_logger().warning(
            "bundle version %d differs from policy version %d",
            version,
            policy.version,
        )
    ref = header.pointer("entries")
    rows = header["entries"]
    toc_end = header.layout.size
    if ref.target_offset is not None:
        toc_end = ref.target_offset - base_offset + len(rows) * TOC_ENTRY.size
    entries: List[TocEntry] = []
    for slot, row in enumerate(rows):
        tag = row["kind"]
        seg_policy = policy.by_tag(tag)
        if seg_policy is None and strict:
            raise unsupported_variant(
                "bundle.toc.kind", tag, row.start, known=[s.tag for s in policy.segments]
            )
        entries.append(
            TocEntry(
                slot=slot,
                tag=tag,
                kind=seg_policy.kind if seg_policy else f"tag:{tag}",
                offset=row["offset"],
                size=row["size"],
                flags=row["flags"],
                position=row.start,
                policy=seg_policy,
            )
        )
    return version, toc_end, entries


def _check_ranges(
    entries: List[TocEntry],
    toc_end: int,
    limit: int,
    base_offset: int,
    strict: bool = True,
) -> None:
    spans = []
    for e in entries:
        if not e.present:
            if e.size:
                raise bundle_error(
                    E_OVERLAP,
                    f"segment {e.kind} has size {e.size} but no offset",
                    {"kind": e.kind, "slot": e.slot, "size": e.size},
                )
            continue
        start = base_offset + e.offset
        if start + e.size > limit:
            raise out_of_bounds(start, e.size, limit, f"bundle.{e.kind}")
        if e.offset < toc_end:
            raise bundle_error(
                E_OVERLAP,
                f"segment {e.kind} at {e.offset} overlaps the table of contents",
                {"kind": e.kind, "slot": e.slot, "offset": e.offset, "toc_end": toc_end},
            )
        if e.size:
            spans.append((e.offset, e.offset + e.size, e))
    spans.sort(key=lambda s: s[0])
    for (_, prev_end, prev), (start, _, cur) in zip(spans, spans[1:]):
        if start < prev_end:
            raise bundle_error(
                E_OVERLAP,
                f"segment {cur.kind} overlaps segment {prev.kind}",
                {
                    "kind": cur.kind,
                    "slot": cur.slot,
                    "offset": start,
                    "other": prev.kind,
                    "other_end": prev_end,
                },
            )
    for e in entries:
        if not e.present or e.policy is None:
            continue
        alignment = e.policy.alignment
        if e.offset % alignment == 0:
            continue
        if not strict:
            get_logger().warning(
                "segment %s at %d is not aligned to %d", e.kind, e.offset, alignment
            )
            continue
        raise bundle_error(
            E_ALIGNMENT,
            f"segment {e.kind} at {e.offset} is not aligned to {alignment}",
            {
                "kind": e.kind,
                "slot": e.slot,
                "offset": e.offset,
                "alignment": alignment,
            },
        )


def disassemble(
    data: Any,
    policy: BundlePolicy,
    base_offset: int = 0,
    *,
    strict: bool = True,
    decompress: bool = True,
) -> List[Segment]:
    """Split a bundle into its present segments, in TOC (kind) order."""
    logger = get_logger()
    buf = data if isinstance(data, bytes) else bytes(data)
    _version, toc_end, entries = read_toc(buf, policy, base_offset, strict=strict)
    _check_ranges(entries, toc_end, len(buf), base_offset, strict)
    segments: List[Segment] = []
    for e in entries:
        if not e.present:
            continue
        start = base_offset + e.offset
        payload = buf[start : start + e.size]
        if e.compressed and decompress:
            payload = unpack(payload)
        segments.append(Segment(e.kind, payload, compress=e.compressed))
    logger.info(
        "disassembled %d segment(s) from %d TOC entries", len(segments), len(entries)
    )
    return segments
