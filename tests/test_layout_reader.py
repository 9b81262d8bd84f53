from __future__ import annotations

"""Reader tests.

Covers:
- fixed fields decode eagerly, magic mismatches and truncation fail early
- pointers resolve lazily (a bad pointer only fails when read)
- null sentinels, relative and base-field addressing
- text decoding errors stay local to the field
- enum variants in strict and lenient mode
"""

import struct
from enum import IntEnum

import pytest

from assetbin.errors import (
    BadMagic,
    InvalidEncoding,
    OutOfBounds,
    UnsupportedVariant,
)
from assetbin.layout import (
    SELF,
    Addressing,
    Array,
    ArrayOf,
    Blob,
    CountOffset,
    CString,
    FixedString,
    Inline,
    Layout,
    LengthPrefixed,
    Magic,
    Padding,
    Pointer,
    decode,
    read_layout,
    u16,
    u32,
)

POINT = Layout("point", [u16("x"), u16("y")])
HEADER = Layout(
    "header",
    [
        Magic(b"MDL1"),
        u32("flags"),
        Inline("origin", POINT),
        Array("ids", "B", 3),
        Padding(1),
        FixedString("name", 8),
    ],
)
ITEM = Layout("item", [u32("id"), u32("offset")], alignment=4)
ROOT = Layout(
    "root",
    [
        u32("count"),
        Pointer("items", ArrayOf(ITEM, "count"), mode=Addressing.RELATIVE),
    ],
)


def _header_bytes(magic: bytes = b"MDL1") -> bytes:
    return (
        magic
        + struct.pack("<I", 7)
        + struct.pack("<HH", 3, 4)
        + bytes([1, 2, 3])
        + b"\x00"
        + b"body".ljust(8, b"\x00")
    )


def test_fixed_fields_decode():
    assert HEADER.size == 24
    rec = read_layout(HEADER, _header_bytes())
    assert rec["flags"] == 7
    assert rec["origin"]["x"] == 3
    assert rec["ids"] == [1, 2, 3]
    assert rec["name"] == "body"
    assert "magic" not in rec
    assert decode(HEADER, _header_bytes()) == {
        "flags": 7,
        "origin": {"x": 3, "y": 4},
        "ids": [1, 2, 3],
        "name": "body",
    }


def test_bad_magic():
    with pytest.raises(BadMagic) as exc:
        read_layout(HEADER, _header_bytes(b"XXXX"))
    assert exc.value.context["expected"] == b"MDL1".hex()
    assert exc.value.context["actual"] == b"XXXX".hex()


def test_truncated_body_raises_out_of_bounds():
    data = _header_bytes()[:-1]
    with pytest.raises(OutOfBounds) as exc:
        read_layout(HEADER, data)
    assert exc.value.context["buffer_size"] == 23
    assert exc.value.context["size"] == 24


def test_relative_pointer_to_item_array():
    data = struct.pack("<II", 2, 8) + struct.pack("<IIII", 10, 100, 20, 200)
    rec = read_layout(ROOT, data)
    ref = rec.pointer("items")
    assert ref.target_offset == 8
    assert ref.stored == 8
    assert [i["id"] for i in rec["items"]] == [10, 20]
    assert rec["items"][1]["offset"] == 200


def test_relative_pointer_anchors_at_structure_start():
    data = b"\xff" * 4 + struct.pack("<II", 2, 8) + struct.pack("<IIII", 10, 100, 20, 200)
    rec = read_layout(ROOT, data, 4)
    assert rec.pointer("items").target_offset == 12
    assert rec["items"][0]["id"] == 10


def test_bad_pointer_is_lazy():
    data = struct.pack("<II", 2, 64) + bytes(16)
    rec = read_layout(ROOT, data)
    assert rec["count"] == 2
    with pytest.raises(OutOfBounds) as exc:
        rec["items"]
    assert exc.value.context["offset"] == 64
    assert exc.value.context["field"] == "root.items"


def test_null_pointer_reads_as_none():
    rec = read_layout(ROOT, struct.pack("<II", 0, 0))
    assert rec.pointer("items").is_null
    assert rec["items"] is None


def test_custom_null_sentinel():
    layout = Layout("opt", [Pointer("p", POINT, null=0xFFFFFFFF)])
    assert read_layout(layout, b"\xff" * 4)["p"] is None


def test_base_field_addressing():
    child = Layout("child", [u32("value")])
    inner = Layout(
        "inner", [Pointer("child", child, mode=Addressing.BASE, base="base")]
    )
    outer = Layout("outer", [u32("base"), Inline("inner", inner)])
    data = struct.pack("<II", 4, 8) + bytes(4) + struct.pack("<I", 99)
    rec = read_layout(outer, data)
    assert rec["inner"].pointer("child").target_offset == 12
    assert rec["inner"]["child"]["value"] == 99


def test_invalid_text_only_fails_its_field():
    named = Layout(
        "named", [Pointer("name", CString()), Pointer("label", CString()), u32("id")]
    )
    data = struct.pack("<III", 12, 16, 5) + b"abc\x00" + b"\xff\xfe\x00\x00"
    rec = read_layout(named, data)
    assert rec["id"] == 5
    assert rec["name"] == "abc"
    with pytest.raises(InvalidEncoding) as exc:
        rec["label"]
    assert exc.value.context["offset"] == 16
    lenient = read_layout(named, data, encoding_errors="absent")
    assert lenient["label"] is None
    assert lenient["name"] == "abc"


def test_unterminated_string_is_out_of_bounds():
    named = Layout("named", [Pointer("name", CString()), Pointer("label", CString())])
    rec = read_layout(named, struct.pack("<II", 8, 0) + b"abc")
    assert rec["label"] is None
    with pytest.raises(OutOfBounds):
        rec["name"]


class _Kind(IntEnum):
    MESH = 1
    SKIN = 2


def test_enum_strict_and_lenient():
    tagged = Layout("tagged", [u32("kind", enum=_Kind)])
    assert read_layout(tagged, struct.pack("<I", 2))["kind"] is _Kind.SKIN
    rec = read_layout(tagged, struct.pack("<I", 9))
    with pytest.raises(UnsupportedVariant) as exc:
        rec["kind"]
    assert exc.value.context["actual"] == 9
    assert exc.value.context["expected"] == [1, 2]
    assert read_layout(tagged, struct.pack("<I", 9), strict=False)["kind"] == 9


def test_count_offset_scalars():
    layout = Layout("co", [CountOffset("a", "B")])
    assert read_layout(layout, bytes.fromhex("04000000 08000000 01020304"))["a"] == [1, 2, 3, 4]
    empty = read_layout(layout, bytes.fromhex("00000000 00000000"))
    assert empty["a"] == []
    assert empty.stored("a") == (0, 0)


def test_offset_count_order():
    layout = Layout("oc", [CountOffset("a", "H", order="offset_count")])
    data = struct.pack("<II", 8, 2) + struct.pack("<HH", 5, 6)
    assert read_layout(layout, data)["a"] == [5, 6]


def test_blob_sibling_size_and_length_prefixed_text():
    layout = Layout(
        "blobby",
        [
            u32("size"),
            Pointer("data", Blob("size")),
            Pointer("label", LengthPrefixed("H", "utf-8")),
        ],
    )
    data = struct.pack("<III", 3, 12, 15) + b"xyz" + struct.pack("<H", 2) + b"hi"
    assert decode(layout, data) == {"size": 3, "data": b"xyz", "label": "hi"}


def test_cycles_and_shared_pointees_materialise_once():
    node = Layout("node", [u32("value"), Pointer("next", SELF)])
    chain = Layout("list", [Pointer("head", node), Pointer("tail", node)])
    data = struct.pack("<II", 8, 16) + struct.pack("<II", 1, 16) + struct.pack("<II", 2, 8)
    value = decode(chain, data)
    head = value["head"]
    assert head["value"] == 1
    assert head["next"]["value"] == 2
    assert head["next"]["next"] is head
    assert value["tail"] is head["next"]


def test_lazy_cache_returns_same_record():
    data = struct.pack("<II", 2, 8) + struct.pack("<IIII", 10, 100, 20, 200)
    rec = read_layout(ROOT, data)
    assert rec["items"] is rec["items"]
    assert rec["items"][0].parent is rec
