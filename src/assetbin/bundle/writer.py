"""Bundle emission from a :class:`BundlePlan`."""

from __future__ import annotations
from typing import Iterable

from ..errors import internal_error
from ..layout import FormatPolicy, encode
from ..logging import get_logger
from ..reporting import TaskStatus, get_reporter
from .planner import (
    BundlePlan,
    Segment,
    compute_bundle_plan,
    prepare_segments,
)
from .policy import BundlePolicy

__all__ = ["write_bundle", "assemble"]


def _pad_to(buf: bytearray, target_offset: int, fill: int) -> None:
    """Pad ``buf`` with ``fill`` until it reaches ``target_offset``."""
    pos = len(buf)
    if pos > target_offset:
        raise internal_error(
            f"Writer position {pos} surpassed planned offset {target_offset}",
            {"position": pos, "planned": target_offset},
        )
    buf.extend(bytes([fill]) * (target_offset - pos))


def write_bundle(plan: BundlePlan, task_id: str = "bundle.write") -> bytes:
    policy = plan.policy
    rep = get_reporter()
    header = encode(
        policy.header_layout(),
        {
            "version": policy.version,
            "entries": [
                {
                    "kind": e.tag,
                    "offset": e.offset,
                    "size": e.size,
                    "flags": e.flags,
                }
                for e in plan.entries
            ],
        },
        policy=FormatPolicy(fill=policy.fill),
    )
    if len(header) != plan.toc_offset + plan.toc_size:
        raise internal_error(
            "Header/TOC size differs from plan",
            {"actual": len(header), "planned": plan.toc_offset + plan.toc_size},
        )
    buf = bytearray(header)
    for entry in plan.present():
        payload = plan.payloads[entry.slot]
        if len(payload) != entry.size:
            raise internal_error(
                f"Segment {entry.kind} size differs from plan",
                {"slot": entry.slot, "actual": len(payload), "planned": entry.size},
            )
        _pad_to(buf, entry.offset, policy.fill)
        buf.extend(payload)
        rep.advance(task_id, current_item=entry.kind)
    _pad_to(buf, plan.file_size, policy.fill)
    return bytes(buf)


def assemble(segments: Iterable[Segment], policy: BundlePolicy) -> bytes:
    """Pack ``segments`` into one bundle laid out in policy kind order."""
    logger = get_logger()
    rep = get_reporter()
    prepared = prepare_segments(segments, policy)
    plan = compute_bundle_plan(policy, prepared)
    # task ids are per call: the reporter is process-wide
    task_id = f"bundle.write#{id(plan):x}"
    rep.start_task(task_id, "Assemble bundle", total=len(prepared))
    try:
        data = write_bundle(plan, task_id)
    except Exception:
        rep.end_task(task_id, TaskStatus.FAILED)
        raise
    rep.end_task(
        task_id,
        TaskStatus.SUCCESS,
        segments=len(prepared),
        bytes=len(data),
        packed=sum(1 for p in prepared if p.compressed),
        padding=plan.padding.total,
    )
    logger.info(
        "assembled %d segment(s) into %d bytes (%d padding)",
        len(prepared),
        len(data),
        plan.padding.total,
    )
    return data
