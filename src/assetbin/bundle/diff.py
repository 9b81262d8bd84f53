"""Structured bundle-to-bundle diff.

The result is a JSON-serialisable dictionary with a stable shape::

    {"summary": {"count": n, "byte_identical": bool, "content_equal": bool},
     "changes": [...]}

Each change names the TOC slot and kind. ``field`` changes compare TOC values
(offset, size, flags); ``status`` changes report added/removed segments and
payloads whose unpacked content differs.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from ..container import crc32, unpack
from .inspector import inspect_bundle
from .policy import BundlePolicy

__all__ = ["diff_bundles"]

_TOC_FIELDS = ("offset", "size", "flags")


def _content(data: bytes, entry: Dict[str, Any], base_offset: int) -> bytes:
    start = base_offset + entry["offset"]
    payload = data[start : start + entry["size"]]
    return unpack(payload) if entry["compressed"] else payload


def diff_bundles(
    left: bytes,
    right: bytes,
    policy: BundlePolicy,
    *,
    base_offset: int = 0,
) -> Dict[str, Any]:
    a = inspect_bundle(left, policy, base_offset)
    b = inspect_bundle(right, policy, base_offset)
    changes: List[Dict[str, Any]] = []
    content_equal = True
    if a["version"] != b["version"]:
        changes.append(
            {"field": "version", "left": a["version"], "right": b["version"]}
        )
    slots = max(len(a["entries"]), len(b["entries"]))
    for slot in range(slots):
        ae: Optional[Dict[str, Any]] = (
            a["entries"][slot] if slot < len(a["entries"]) else None
        )
        be: Optional[Dict[str, Any]] = (
            b["entries"][slot] if slot < len(b["entries"]) else None
        )
        kind = (ae or be or {}).get("kind")
        a_present = bool(ae and ae["present"])
        b_present = bool(be and be["present"])
        if a_present and not b_present:
            changes.append({"slot": slot, "kind": kind, "status": "removed"})
            content_equal = False
            continue
        if b_present and not a_present:
            changes.append({"slot": slot, "kind": kind, "status": "added"})
            content_equal = False
            continue
        if not a_present or ae is None or be is None:
            continue
        for name in _TOC_FIELDS:
            if ae[name] != be[name]:
                changes.append(
                    {
                        "slot": slot,
                        "kind": kind,
                        "field": name,
                        "left": ae[name],
                        "right": be[name],
                    }
                )
        left_crc = crc32(_content(left, ae, base_offset))
        right_crc = crc32(_content(right, be, base_offset))
        if left_crc != right_crc:
            content_equal = False
            changes.append(
                {
                    "slot": slot,
                    "kind": kind,
                    "status": "content",
                    "left": f"{left_crc:08x}",
                    "right": f"{right_crc:08x}",
                }
            )
    return {
        "summary": {
            "count": len(changes),
            "byte_identical": bytes(left) == bytes(right),
            "content_equal": content_equal,
        },
        "changes": changes,
    }
