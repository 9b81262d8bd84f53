"""Bundle policies: which segment kinds a bundle holds and how they are laid out.

A policy is plain data. It can be declared in code or loaded from JSON/YAML::

    magic: DRSM
    version: 10001
    algorithm: zstd
    trailing_alignment: 16
    segments:
      - {kind: vertex, tag: 0, alignment: 16, compress: true, optional: false}
      - {kind: textures, tag: 3, alignment: 4096, compress: true, slots: 4}
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..container import Algorithm, parse_algorithm
from ..errors import (
    E_UNKNOWN_KIND,
    AssetBinError,
    bundle_error,
    policy_error,
)
from ..layout import Addressing, CountOffset, Layout, Magic, u32

__all__ = [
    "FLAG_COMPRESSED",
    "TOC_ENTRY",
    "SegmentPolicy",
    "BundlePolicy",
    "STREAMING_POLICY",
    "header_layout",
    "policy_from_dict",
    "policy_to_dict",
    "load_policy",
]

FLAG_COMPRESSED = 0x1

TOC_ENTRY = Layout(
    "toc_entry",
    [u32("kind"), u32("offset"), u32("size"), u32("flags")],
    alignment=4,
)


@lru_cache(maxsize=None)
def header_layout(magic: bytes) -> Layout:
    """Bundle header: magic, version, then the TOC as a count/offset pair."""
    return Layout(
        "bundle",
        [
            Magic(magic),
            u32("version"),
            CountOffset("entries", TOC_ENTRY, mode=Addressing.RELATIVE, align=4),
        ],
    )


def _is_power_of_two(value: int) -> bool:
    return value >= 1 and (value & (value - 1)) == 0


@dataclass(frozen=True)
class SegmentPolicy:
    kind: str
    tag: int
    alignment: int = 16
    compress: bool = False
    optional: bool = True
    slots: int = 1

    def __post_init__(self) -> None:
        ctx = {"kind": self.kind}
        if not self.kind:
            raise policy_error("segment kind must be a non-empty name", ctx)
        if not 0 <= self.tag <= 0xFFFFFFFF:
            raise policy_error(f"segment {self.kind}: tag must fit u32", ctx)
        if not _is_power_of_two(self.alignment):
            raise policy_error(
                f"segment {self.kind}: alignment must be a power of two",
                {**ctx, "alignment": self.alignment},
            )
        if self.slots < 1:
            raise policy_error(f"segment {self.kind}: slots must be >= 1", ctx)


@dataclass(frozen=True)
class BundlePolicy:
    magic: bytes
    version: int
    segments: Tuple[SegmentPolicy, ...]
    algorithm: Algorithm = Algorithm.ZLIB
    fill: int = 0
    trailing_alignment: int = 1
    byte_exact: bool = False
    _by_kind: Dict[str, SegmentPolicy] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _by_tag: Dict[int, SegmentPolicy] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "segments", tuple(self.segments))
        if len(self.magic) != 4:
            raise policy_error(
                "bundle magic must be exactly 4 bytes", {"magic": repr(self.magic)}
            )
        if not self.segments:
            raise policy_error("bundle policy declares no segments")
        if not 0 <= self.fill <= 0xFF:
            raise policy_error("fill must be a byte value", {"fill": self.fill})
        if not _is_power_of_two(self.trailing_alignment):
            raise policy_error(
                "trailing_alignment must be a power of two",
                {"trailing_alignment": self.trailing_alignment},
            )
        for seg in self.segments:
            if seg.kind in self._by_kind:
                raise policy_error(f"duplicate kind {seg.kind}", {"kind": seg.kind})
            if seg.tag in self._by_tag:
                raise policy_error(
                    f"duplicate tag {seg.tag}", {"kind": seg.kind, "tag": seg.tag}
                )
            self._by_kind[seg.kind] = seg
            self._by_tag[seg.tag] = seg

    @property
    def toc_count(self) -> int:
        return sum(seg.slots for seg in self.segments)

    def segment(self, kind: str) -> SegmentPolicy:
        seg = self._by_kind.get(kind)
        if seg is None:
            raise bundle_error(
                E_UNKNOWN_KIND,
                f"kind {kind!r} is not declared by the bundle policy",
                {"kind": kind, "known": list(self._by_kind)},
            )
        return seg

    def by_tag(self, tag: int) -> Optional[SegmentPolicy]:
        return self._by_tag.get(tag)

    def toc_slots(self) -> List[Tuple[SegmentPolicy, int]]:
        """Every TOC slot in order as ``(segment policy, index within kind)``."""
        return [(seg, i) for seg in self.segments for i in range(seg.slots)]

    def first_slot(self, kind: str) -> int:
        target = self.segment(kind)
        slot = 0
        for seg in self.segments:
            if seg is target:
                break
            slot += seg.slots
        return slot

    def header_layout(self) -> Layout:
        return header_layout(self.magic)


# Model streaming bundles: geometry, shader programs and two texture tiers.
STREAMING_POLICY = BundlePolicy(
    magic=b"DRSM",
    version=10001,
    segments=(
        SegmentPolicy("vertex", tag=0, alignment=16, compress=True, optional=False),
        SegmentPolicy("shader", tag=1, alignment=16, compress=True),
        SegmentPolicy("low_textures", tag=2, alignment=16, compress=True),
        SegmentPolicy("textures", tag=3, alignment=4096, compress=True, slots=4),
    ),
    algorithm=Algorithm.ZLIB,
    trailing_alignment=16,
)


# Configuration --------------------------------------------------------------

_SEGMENT_KEYS = {"kind", "tag", "alignment", "compress", "optional", "slots"}
_POLICY_KEYS = {
    "magic",
    "version",
    "segments",
    "algorithm",
    "fill",
    "trailing_alignment",
    "byte_exact",
}


def _expect(value: Any, kind: type, what: str) -> Any:
    if kind is int and isinstance(value, bool):
        raise policy_error(f"{what} must be an integer", {"field": what})
    if not isinstance(value, kind):
        raise policy_error(
            f"{what} must be {kind.__name__}, got {type(value).__name__}",
            {"field": what},
        )
    return value


def _parse_magic(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    text = _expect(value, str, "magic")
    try:
        return text.encode("ascii")
    except UnicodeEncodeError as exc:
        raise policy_error("magic must be ASCII text", {"magic": text}) from exc


def _parse_segment(data: Any, index: int) -> SegmentPolicy:
    what = f"segments[{index}]"
    _expect(data, dict, what)
    unknown = set(data) - _SEGMENT_KEYS
    if unknown:
        raise policy_error(
            f"{what}: unknown keys {sorted(unknown)}", {"field": what}
        )
    for key in ("kind", "tag"):
        if key not in data:
            raise policy_error(f"{what}: missing {key}", {"field": f"{what}.{key}"})
    return SegmentPolicy(
        kind=_expect(data["kind"], str, f"{what}.kind"),
        tag=_expect(data["tag"], int, f"{what}.tag"),
        alignment=_expect(data.get("alignment", 16), int, f"{what}.alignment"),
        compress=_expect(data.get("compress", False), bool, f"{what}.compress"),
        optional=_expect(data.get("optional", True), bool, f"{what}.optional"),
        slots=_expect(data.get("slots", 1), int, f"{what}.slots"),
    )


def policy_from_dict(data: Dict[str, Any]) -> BundlePolicy:
    _expect(data, dict, "policy")
    unknown = set(data) - _POLICY_KEYS
    if unknown:
        raise policy_error(f"unknown policy keys {sorted(unknown)}")
    for key in ("magic", "version", "segments"):
        if key not in data:
            raise policy_error(f"missing {key}", {"field": key})
    segments = _expect(data["segments"], list, "segments")
    try:
        algorithm = parse_algorithm(data.get("algorithm", "zlib"))
    except AssetBinError as exc:
        raise policy_error(
            f"unknown algorithm {data.get('algorithm')!r}", {"field": "algorithm"}
        ) from exc
    return BundlePolicy(
        magic=_parse_magic(data["magic"]),
        version=_expect(data["version"], int, "version"),
        segments=tuple(_parse_segment(s, i) for i, s in enumerate(segments)),
        algorithm=algorithm,
        fill=_expect(data.get("fill", 0), int, "fill"),
        trailing_alignment=_expect(
            data.get("trailing_alignment", 1), int, "trailing_alignment"
        ),
        byte_exact=_expect(data.get("byte_exact", False), bool, "byte_exact"),
    )


def policy_to_dict(policy: BundlePolicy) -> Dict[str, Any]:
    return {
        "magic": policy.magic.decode("ascii", errors="backslashreplace"),
        "version": policy.version,
        "algorithm": policy.algorithm.name.lower(),
        "fill": policy.fill,
        "trailing_alignment": policy.trailing_alignment,
        "byte_exact": policy.byte_exact,
        "segments": [
            {
                "kind": s.kind,
                "tag": s.tag,
                "alignment": s.alignment,
                "compress": s.compress,
                "optional": s.optional,
                "slots": s.slots,
            }
            for s in policy.segments
        ],
    }


def load_policy(path: str | Path) -> BundlePolicy:
    """Load a bundle policy from a ``.json``, ``.yaml`` or ``.yml`` file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)
    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in {".yaml", ".yml"}:
            data: Any = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise policy_error(
            f"cannot parse policy file {p.name}: {exc}", {"path": str(p)}
        ) from exc
    if not isinstance(data, dict):
        raise policy_error("root of a policy file must be an object", {"path": str(p)})
    return policy_from_dict(data)
