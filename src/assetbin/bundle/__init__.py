"""Composite resource bundles: header, table of contents and aligned segments."""

from .policy import (
    FLAG_COMPRESSED,
    STREAMING_POLICY,
    TOC_ENTRY,
    BundlePolicy,
    SegmentPolicy,
    header_layout,
    load_policy,
    policy_from_dict,
    policy_to_dict,
)
from .planner import (
    BundlePlan,
    EntryPlan,
    PaddingStats,
    PreparedSegment,
    Segment,
    compute_bundle_plan,
    prepare_segments,
    to_plan_dict,
)
from .writer import assemble, write_bundle
from .reader import TocEntry, disassemble, read_toc
from .inspector import inspect_bundle, validate_bundle
from .diff import diff_bundles

__all__ = [
    "FLAG_COMPRESSED",
    "STREAMING_POLICY",
    "TOC_ENTRY",
    "BundlePolicy",
    "SegmentPolicy",
    "header_layout",
    "load_policy",
    "policy_from_dict",
    "policy_to_dict",
    "BundlePlan",
    "EntryPlan",
    "PaddingStats",
    "PreparedSegment",
    "Segment",
    "compute_bundle_plan",
    "prepare_segments",
    "to_plan_dict",
    "assemble",
    "write_bundle",
    "TocEntry",
    "disassemble",
    "read_toc",
    "inspect_bundle",
    "validate_bundle",
    "diff_bundles",
]
