"""Bundle planning: place segments behind the table of contents.

The plan is the single source of truth for offsets. ``write_bundle`` only
emits what the plan says and fails if it ever diverges from it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..container import pack
from ..errors import E_MISSING_SEGMENT, E_TOO_MANY_SEGMENTS, bundle_error
from ..layout import round_up
from ..logging import get_logger
from .policy import FLAG_COMPRESSED, TOC_ENTRY, BundlePolicy

__all__ = [
    "Segment",
    "PreparedSegment",
    "EntryPlan",
    "PaddingStats",
    "BundlePlan",
    "prepare_segments",
    "compute_bundle_plan",
    "to_plan_dict",
]


@dataclass(slots=True)
class Segment:
    """One bundle segment. ``compress=None`` follows the kind's policy."""

    kind: str
    data: bytes
    compress: Optional[bool] = field(default=None, compare=False)


@dataclass(slots=True)
class PreparedSegment:
    kind: str
    slot: int
    payload: bytes
    raw_size: int
    compressed: bool


@dataclass(slots=True)
class EntryPlan:
    slot: int
    kind: str
    tag: int
    offset: int
    size: int
    alignment: int
    padding_before: int
    flags: int
    raw_size: int

    @property
    def present(self) -> bool:
        return self.offset != 0


@dataclass(slots=True)
class PaddingStats:
    total: int
    by_section: Dict[str, int]


@dataclass(slots=True)
class BundlePlan:
    policy: BundlePolicy
    entries: List[EntryPlan]
    payloads: Dict[int, bytes]
    header_size: int
    toc_offset: int
    toc_size: int
    padding: PaddingStats
    file_size: int

    def present(self) -> List[EntryPlan]:
        return [e for e in self.entries if e.present]


def prepare_segments(
    segments: Iterable[Segment], policy: BundlePolicy
) -> List[PreparedSegment]:
    """Assign TOC slots and compress payloads; result is in slot order."""
    logger = get_logger()
    used: Dict[str, int] = {}
    prepared: List[PreparedSegment] = []
    for seg in segments:
        seg_policy = policy.segment(seg.kind)
        index = used.get(seg.kind, 0)
        if index >= seg_policy.slots:
            raise bundle_error(
                E_TOO_MANY_SEGMENTS,
                f"kind {seg.kind} allows {seg_policy.slots} segment(s)",
                {"kind": seg.kind, "expected": seg_policy.slots, "actual": index + 1},
            )
        used[seg.kind] = index + 1
        raw = bytes(seg.data)
        compress = seg_policy.compress if seg.compress is None else seg.compress
        payload = pack(raw, policy.algorithm, name=seg.kind) if compress else raw
        prepared.append(
            PreparedSegment(
                kind=seg.kind,
                slot=policy.first_slot(seg.kind) + index,
                payload=payload,
                raw_size=len(raw),
                compressed=compress,
            )
        )
        logger.debug(
            "segment %s#%d: %d -> %d bytes", seg.kind, index, len(raw), len(payload)
        )
    for seg_policy in policy.segments:
        if not seg_policy.optional and seg_policy.kind not in used:
            raise bundle_error(
                E_MISSING_SEGMENT,
                f"required kind {seg_policy.kind} has no segment",
                {"kind": seg_policy.kind},
            )
    prepared.sort(key=lambda p: p.slot)
    return prepared


def compute_bundle_plan(
    policy: BundlePolicy, prepared: List[PreparedSegment]
) -> BundlePlan:
    padding: Dict[str, int] = {}

    def align(value: int, alignment: int, label: str) -> Tuple[int, int]:
        aligned = round_up(value, alignment)
        pad = aligned - value
        if pad:
            padding[label] = padding.get(label, 0) + pad
        return aligned, pad

    header_size = policy.header_layout().size
    toc_offset, _ = align(header_size, TOC_ENTRY.alignment, "toc")
    toc_size = policy.toc_count * TOC_ENTRY.size
    cursor = toc_offset + toc_size
    by_slot = {p.slot: p for p in prepared}
    entries: List[EntryPlan] = []
    payloads: Dict[int, bytes] = {}
    for slot, (seg_policy, _index) in enumerate(policy.toc_slots()):
        p = by_slot.get(slot)
        if p is None:
            entries.append(
                EntryPlan(
                    slot, seg_policy.kind, seg_policy.tag, 0, 0,
                    seg_policy.alignment, 0, 0, 0,
                )
            )
            continue
        offset, pad = align(cursor, seg_policy.alignment, seg_policy.kind)
        entries.append(
            EntryPlan(
                slot=slot,
                kind=seg_policy.kind,
                tag=seg_policy.tag,
                offset=offset,
                size=len(p.payload),
                alignment=seg_policy.alignment,
                padding_before=pad,
                flags=FLAG_COMPRESSED if p.compressed else 0,
                raw_size=p.raw_size,
            )
        )
        payloads[slot] = p.payload
        cursor = offset + len(p.payload)
    file_size, _ = align(cursor, policy.trailing_alignment, "trailing")
    return BundlePlan(
        policy=policy,
        entries=entries,
        payloads=payloads,
        header_size=header_size,
        toc_offset=toc_offset,
        toc_size=toc_size,
        padding=PaddingStats(total=sum(padding.values()), by_section=padding),
        file_size=file_size,
    )


def to_plan_dict(plan: BundlePlan) -> Dict[str, Any]:  # lightweight serializer
    def entry(e: EntryPlan) -> Dict[str, Any]:
        return {
            "slot": e.slot,
            "kind": e.kind,
            "tag": e.tag,
            "offset": e.offset,
            "size": e.size,
            "alignment": e.alignment,
            "padding_before": e.padding_before,
            "compressed": bool(e.flags & FLAG_COMPRESSED),
            "raw_size": e.raw_size,
        }

    present = plan.present()
    return {
        "magic": plan.policy.magic.decode("ascii", errors="backslashreplace"),
        "version": plan.policy.version,
        "file_size": plan.file_size,
        "header": {"size": plan.header_size},
        "toc": {
            "offset": plan.toc_offset,
            "count": len(plan.entries),
            "size": plan.toc_size,
        },
        "entries": [entry(e) for e in plan.entries],
        "padding": {
            "total": plan.padding.total,
            "by_section": dict(plan.padding.by_section),
        },
        "statistics": {
            "segments": len(present),
            "stored_bytes": sum(e.size for e in present),
            "raw_bytes": sum(e.raw_size for e in present),
            "compressed": sum(1 for e in present if e.flags & FLAG_COMPRESSED),
        },
    }
