from __future__ import annotations

"""Writer tests: placement, alignment/fill, traversal order, dedup, cycles.

Expected byte strings are spelled out by hand so layout changes are caught.
"""

import struct

import pytest

from assetbin.errors import (
    E_COUNT_MISMATCH,
    E_CYCLE,
    E_MISSING_FIELD,
    E_POINTER_RANGE,
    E_VALUE_RANGE,
    LayoutError,
)
from assetbin.layout import (
    SELF,
    Addressing,
    ArrayOf,
    Blob,
    CountOffset,
    CString,
    Dedup,
    FixedString,
    FormatPolicy,
    Layout,
    LayoutWriter,
    Pointer,
    Traversal,
    decode,
    encode,
    read_layout,
    u8,
    u16,
    u32,
)

ITEM = Layout("item", [u32("id"), u32("offset")], alignment=4)
ROOT = Layout(
    "root",
    [
        u32("count"),
        Pointer("items", ArrayOf(ITEM, "count"), mode=Addressing.RELATIVE),
    ],
)
LEAF = Layout("leaf", [u8("v")])
BRANCH = Layout("branch", [Pointer("leaf", LEAF)])
TREE = Layout("tree", [Pointer("a", BRANCH), Pointer("b", BRANCH)])
SHARED = Layout("shared", [Pointer("x", LEAF), Pointer("y", LEAF)])
NODE = Layout("node", [u32("value"), Pointer("next", SELF)])
LIST = Layout("list", [Pointer("head", NODE)])


def _items_value(with_count: bool = True) -> dict:
    value = {
        "items": [{"id": 10, "offset": 100}, {"id": 20, "offset": 200}],
    }
    if with_count:
        value["count"] = 2
    return value


def test_items_follow_header_with_relative_offset():
    data = encode(ROOT, _items_value())
    assert data == struct.pack("<II", 2, 8) + struct.pack("<IIII", 10, 100, 20, 200)
    assert decode(ROOT, data) == _items_value()


def test_sibling_count_is_derived():
    assert encode(ROOT, _items_value(with_count=False)) == encode(ROOT, _items_value())


def test_sibling_count_mismatch():
    value = _items_value()
    value["count"] = 3
    with pytest.raises(LayoutError) as exc:
        encode(ROOT, value)
    assert exc.value.code == E_COUNT_MISMATCH
    assert exc.value.context["expected"] == 2


def test_count_offset_bytes():
    layout = Layout("co", [CountOffset("a", "B")])
    assert encode(layout, {"a": [1, 2, 3, 4]}) == bytes.fromhex(
        "04000000 08000000 01020304"
    )


def test_count_offset_aligned_zero_fill():
    layout = Layout("co", [CountOffset("a", "B", align=16)])
    assert encode(layout, {"a": [1, 2, 3, 4]}) == bytes.fromhex(
        "04000000 10000000 0000000000000000 01020304"
    )


def test_count_offset_aligned_custom_fill():
    layout = Layout("co", [CountOffset("a", "B", align=16, fill=0xFF)])
    expected = bytes.fromhex("04000000 10000000 ffffffffffffffff 01020304")
    assert encode(layout, {"a": [1, 2, 3, 4]}) == expected
    plain = Layout("co", [CountOffset("a", "B", align=16)])
    assert encode(plain, {"a": [1, 2, 3, 4]}, policy=FormatPolicy(fill=0xFF)) == expected


def test_empty_count_offset_writes_null():
    layout = Layout("co", [CountOffset("a", "B")])
    assert encode(layout, {"a": []}) == bytes(8)


def test_depth_first_order():
    value = {"a": {"leaf": {"v": 1}}, "b": {"leaf": {"v": 2}}}
    data = encode(TREE, value)
    assert data == (
        struct.pack("<II", 8, 13)
        + struct.pack("<I", 12)
        + b"\x01"
        + struct.pack("<I", 17)
        + b"\x02"
    )
    assert decode(TREE, data) == value


def test_breadth_first_order():
    value = {"a": {"leaf": {"v": 1}}, "b": {"leaf": {"v": 2}}}
    policy = FormatPolicy(traversal=Traversal.BREADTH_FIRST)
    data = encode(TREE, value, policy=policy)
    assert data == (
        struct.pack("<II", 8, 12)
        + struct.pack("<I", 16)
        + struct.pack("<I", 17)
        + b"\x01\x02"
    )
    assert decode(TREE, data) == value


def test_same_value_twice_without_dedup_is_copied():
    leaf = {"v": 7}
    data = encode(SHARED, {"x": leaf, "y": leaf})
    assert data == struct.pack("<II", 8, 9) + b"\x07\x07"


def test_identity_dedup_shares_offsets():
    leaf = {"v": 7}
    policy = FormatPolicy(dedup=Dedup.IDENTITY)
    data = encode(SHARED, {"x": leaf, "y": leaf}, policy=policy)
    assert data == struct.pack("<II", 8, 8) + b"\x07"
    value = decode(SHARED, data)
    assert value["x"] is value["y"]
    distinct = encode(SHARED, {"x": {"v": 7}, "y": {"v": 7}}, policy=policy)
    assert len(distinct) == 10


def test_equal_dedup_merges_equal_values():
    policy = FormatPolicy(dedup=Dedup.EQUAL)
    data = encode(SHARED, {"x": {"v": 7}, "y": {"v": 7}}, policy=policy)
    assert data == struct.pack("<II", 8, 8) + b"\x07"


def test_equal_dedup_of_strings():
    names = Layout("names", [Pointer("a", CString()), Pointer("b", CString())])
    policy = FormatPolicy(dedup=Dedup.EQUAL)
    assert encode(names, {"a": "mesh", "b": "mesh"}, policy=policy) == (
        struct.pack("<II", 8, 8) + b"mesh\x00"
    )
    assert encode(names, {"a": "mesh", "b": "mesh"}) == (
        struct.pack("<II", 8, 13) + b"mesh\x00mesh\x00"
    )


def test_cycle_back_to_ancestor():
    a = {"value": 1}
    b = {"value": 2, "next": a}
    a["next"] = b
    data = encode(LIST, {"head": a})
    assert data == (
        struct.pack("<I", 4) + struct.pack("<II", 1, 12) + struct.pack("<II", 2, 4)
    )
    head = decode(LIST, data)["head"]
    assert head["next"]["next"] is head


def test_equal_dedup_rejects_cycles():
    a = {"value": 1}
    a["next"] = a
    with pytest.raises(LayoutError) as exc:
        encode(LIST, {"head": a}, policy=FormatPolicy(dedup=Dedup.EQUAL))
    assert exc.value.code == E_CYCLE


def test_null_pointers():
    assert encode(LIST, {"head": None}) == bytes(4)
    opt = Layout("opt", [Pointer("p", LEAF, null=0xFFFFFFFF)])
    data = encode(opt, {"p": None})
    assert data == b"\xff" * 4
    assert decode(opt, data) == {"p": None}


def test_pointer_that_would_encode_as_null_is_rejected():
    selfy = Layout("selfy", [Pointer("me", SELF, mode=Addressing.RELATIVE)])
    value: dict = {}
    value["me"] = value
    with pytest.raises(LayoutError) as exc:
        encode(selfy, value)
    assert exc.value.code == E_POINTER_RANGE


def test_pointer_width_overflow():
    wide = Layout(
        "wide",
        [Pointer("a", Blob(300), width="B"), Pointer("b", Blob(1), width="B")],
    )
    with pytest.raises(LayoutError) as exc:
        encode(wide, {"a": bytes(300), "b": b"\x01"})
    assert exc.value.code == E_POINTER_RANGE
    assert exc.value.context["stored"] == 302


def test_missing_field_and_value_range():
    with pytest.raises(LayoutError) as exc:
        encode(ITEM, {"id": 1})
    assert exc.value.code == E_MISSING_FIELD
    with pytest.raises(LayoutError) as exc:
        encode(LEAF, {"v": 300})
    assert exc.value.code == E_VALUE_RANGE


def test_scalar_default_fills_missing_value():
    layout = Layout("versioned", [u16("version", default=3), u8("flags")])
    assert encode(layout, {"flags": 1}) == struct.pack("<HB", 3, 1)


def test_big_endian_layout():
    layout = Layout("be", [u16("x"), Pointer("p", LEAF, width="H")], endian=">")
    assert encode(layout, {"x": 1, "p": {"v": 9}}) == b"\x00\x01\x00\x04\x09"


def test_trailing_alignment():
    policy = FormatPolicy(trailing_alignment=16, fill=0xAA)
    assert encode(LEAF, {"v": 1}, policy=policy) == b"\x01" + b"\xaa" * 15


def test_layout_alignment_of_pointee():
    aligned = Layout("aligned", [u32("v")], alignment=8)
    holder = Layout("holder", [u8("tag"), Pointer("p", aligned, width="B")])
    assert encode(holder, {"tag": 5, "p": {"v": 1}}) == (
        b"\x05\x08" + bytes(6) + struct.pack("<I", 1)
    )


def test_record_can_be_written_back():
    data = struct.pack("<II", 2, 8) + struct.pack("<IIII", 10, 100, 20, 200)
    assert encode(ROOT, read_layout(ROOT, data)) == data


def test_patch_table_records_every_pointer():
    writer = LayoutWriter()
    writer.write(TREE, {"a": {"leaf": {"v": 1}}, "b": {"leaf": None}})
    assert [(p.field, p.position, p.target) for p in writer.patches] == [
        ("a", 0, 8),
        ("b", 4, 13),
        ("leaf", 8, 12),
    ]


def test_deterministic_output():
    value = {"a": {"leaf": {"v": 1}}, "b": {"leaf": {"v": 2}}}
    assert encode(TREE, value) == encode(TREE, value)


def test_base_addressed_pointee_is_placed_after_its_base():
    child = Layout("child", [u32("value")], alignment=4)
    outer = Layout(
        "outer",
        [u32("base"), Pointer("child", child, mode=Addressing.BASE, base="base")],
    )
    data = struct.pack("<II", 32, 4) + bytes(28) + struct.pack("<I", 99)
    value = decode(outer, data)
    assert value == {"base": 32, "child": {"value": 99}}
    assert encode(outer, value) == data


def test_base_addressed_pointee_skips_the_null_offset():
    child = Layout("child", [u32("value")])
    outer = Layout(
        "outer",
        [u32("base"), Pointer("child", child, mode=Addressing.BASE, base="base")],
    )
    data = encode(outer, {"base": 32, "child": {"value": 99}})
    assert data == struct.pack("<II", 32, 1) + bytes(25) + struct.pack("<I", 99)
    assert decode(outer, data) == {"base": 32, "child": {"value": 99}}


def test_undecodable_text_passes_through_raw():
    named = Layout("named", [FixedString("name", 8)])
    data = b"\xff\xfe" + bytes(6)
    raw = decode(named, data, encoding_errors="raw")
    assert raw == {"name": b"\xff\xfe"}
    assert encode(named, raw) == data

    labels = Layout("labels", [Pointer("label", CString())])
    data = struct.pack("<I", 4) + b"\xff\xfe\x00"
    assert encode(labels, decode(labels, data, encoding_errors="raw")) == data


def test_absent_inline_text_is_not_rewritten():
    named = Layout("named", [FixedString("name", 8)])
    absent = decode(named, b"\xff\xfe" + bytes(6), encoding_errors="absent")
    assert absent == {"name": None}
    with pytest.raises(LayoutError) as exc:
        encode(named, absent)
    assert exc.value.code == E_MISSING_FIELD


def test_align_after_pads_past_structure_and_pointees():
    padded = Layout(
        "padded", [u8("v"), Pointer("leaf", LEAF, width="B")], align_after=8
    )
    pair = Layout(
        "pair", [Pointer("a", padded, width="B"), Pointer("b", LEAF, width="B")]
    )
    data = encode(pair, {"a": {"v": 1, "leaf": {"v": 2}}, "b": {"v": 3}})
    assert data == bytes([2, 8, 1, 4, 2, 0, 0, 0, 3])


def test_align_after_on_root_uses_policy_fill():
    tail = Layout("tail", [u8("v")], align_after=4)
    assert encode(tail, {"v": 1}, policy=FormatPolicy(fill=0xAA)) == b"\x01\xaa\xaa\xaa"


def test_pad_size_to_fills_pointee_to_declared_size():
    names = Layout(
        "names",
        [Pointer("name", CString(pad_size_to=8), width="B", fill=0xCC), u8("after")],
    )
    data = encode(names, {"name": "abc", "after": 7})
    assert data == b"\x02\x07abc\x00" + b"\xcc" * 4
    assert decode(names, data) == {"name": "abc", "after": 7}
    with pytest.raises(LayoutError) as exc:
        encode(names, {"name": "abcdefghij", "after": 7})
    assert exc.value.code == E_VALUE_RANGE
    assert exc.value.context["actual"] == 11
