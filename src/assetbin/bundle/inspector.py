"""Bundle inspection and non-raising validation."""

from __future__ import annotations
from typing import Any, Dict, List

from ..container import is_packed, read_header
from ..errors import AssetBinError
from .policy import BundlePolicy
from .reader import read_toc

__all__ = ["inspect_bundle", "validate_bundle"]


def inspect_bundle(
    data: Any, policy: BundlePolicy, base_offset: int = 0
) -> Dict[str, Any]:
    """Describe header, TOC and segment containers without unpacking payloads.

    Reads leniently; header-level corruption (bad magic, truncated TOC) still
    raises.
    """
    buf = data if isinstance(data, bytes) else bytes(data)
    version, toc_end, entries = read_toc(buf, policy, base_offset, strict=False)
    out_entries: List[Dict[str, Any]] = []
    for e in entries:
        info: Dict[str, Any] = {
            "slot": e.slot,
            "kind": e.kind,
            "tag": e.tag,
            "offset": e.offset,
            "size": e.size,
            "flags": e.flags,
            "present": e.present,
            "compressed": e.compressed,
            "alignment": e.policy.alignment if e.policy else None,
            "known": e.policy is not None,
        }
        start = base_offset + e.offset
        if e.present and e.compressed and is_packed(buf, start):
            try:
                header = read_header(buf, start)
                info["container"] = {
                    "algorithm": header.algorithm.name.lower(),
                    "decompressed_size": header.decompressed_size,
                    "compressed_size": header.compressed_size,
                    "hash": f"{header.hash:08x}",
                    "name": header.name,
                }
            except AssetBinError as exc:
                info["container_error"] = exc.to_dict()
        out_entries.append(info)
    return {
        "magic": policy.magic.decode("ascii", errors="backslashreplace"),
        "version": version,
        "base_offset": base_offset,
        "toc_end": toc_end,
        "file_size": len(buf) - base_offset,
        "entries": out_entries,
    }


def validate_bundle(info: Dict[str, Any], policy: BundlePolicy) -> List[str]:
    """Return human readable issues found in an ``inspect_bundle`` result."""
    issues: List[str] = []
    if info.get("version") != policy.version:
        issues.append(
            f"version {info.get('version')} differs from policy {policy.version}"
        )
    entries = info.get("entries", [])
    file_size = info.get("file_size", 0)
    toc_end = info.get("toc_end", 0)
    spans = []
    present_kinds = set()
    for e in entries:
        label = f"{e['kind']}#{e['slot']}"
        if not e["known"]:
            issues.append(f"{label}: unknown kind tag {e['tag']}")
        if not e["present"]:
            if e["size"]:
                issues.append(f"{label}: size {e['size']} without offset")
            continue
        present_kinds.add(e["kind"])
        if e["offset"] < toc_end:
            issues.append(f"{label}: offset {e['offset']} inside header/TOC")
        if e["offset"] + e["size"] > file_size:
            issues.append(
                f"{label}: range {e['offset']}+{e['size']} exceeds file size {file_size}"
            )
        alignment = e.get("alignment")
        if alignment and e["offset"] % alignment:
            issues.append(
                f"{label}: offset {e['offset']} not aligned to {alignment}"
            )
        if e["compressed"] and "container" not in e:
            detail = e.get("container_error", {}).get("message", "missing header")
            issues.append(f"{label}: compressed flag set but container unreadable ({detail})")
        if e["size"]:
            spans.append((e["offset"], e["offset"] + e["size"], label))
    spans.sort()
    for (_, prev_end, prev), (start, _, cur) in zip(spans, spans[1:]):
        if start < prev_end:
            issues.append(f"{cur}: overlaps {prev}")
    for seg in policy.segments:
        if not seg.optional and seg.kind not in present_kinds:
            issues.append(f"{seg.kind}: required segment missing")
    return issues
