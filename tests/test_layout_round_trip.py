from __future__ import annotations

import struct

from assetbin.layout import (
    Addressing,
    ArrayOf,
    CountOffset,
    CString,
    FormatPolicy,
    Layout,
    Magic,
    Pointer,
    check_round_trip,
    decode,
    encode,
    u16,
    u32,
)
from assetbin.layout.verify import values_equal

LOD = Layout("lod", [u32("first"), u32("count")], alignment=4)
MESH = Layout(
    "mesh",
    [
        Magic(b"MESH"),
        u16("version"),
        u16("flags"),
        u32("vertex_count"),
        Pointer("vertices", ArrayOf("f", "vertex_count"), align=4),
        Pointer("name", CString()),
        CountOffset("lods", LOD),
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


def _mesh() -> dict:
    return {
        "version": 2,
        "flags": 0x10,
        "vertices": [0.5, 1.0, -2.0],
        "name": "crate",
        "lods": [{"first": 0, "count": 3}, {"first": 3, "count": 1}],
    }


def test_mixed_layout_round_trip():
    data = encode(MESH, _mesh())
    assert data[:4] == b"MESH"
    value = decode(MESH, data)
    assert value["vertex_count"] == 3
    assert value["vertices"] == [0.5, 1.0, -2.0]
    assert value["name"] == "crate"
    assert value["lods"][1] == {"first": 3, "count": 1}
    assert encode(MESH, value) == data


def test_writer_output_is_byte_exact():
    data = encode(MESH, _mesh())
    report = check_round_trip(MESH, data, FormatPolicy(byte_exact=True))
    assert report.ok
    assert report.byte_equal
    assert report.first_difference is None
    assert report.to_dict()["encoded_size"] == len(data)


def test_foreign_layout_with_gap_is_value_equal_only():
    items = struct.pack("<IIII", 10, 100, 20, 200)
    data = struct.pack("<II", 2, 16) + bytes(8) + items
    report = check_round_trip(ROOT, data)
    assert report.value_equal
    assert not report.byte_equal
    assert report.first_difference == 4
    assert report.ok

    strict = check_round_trip(ROOT, data, FormatPolicy(byte_exact=True))
    assert not strict.ok
    assert strict.to_dict()["byte_exact_required"] is True


def test_round_trip_at_offset():
    body = struct.pack("<II", 2, 8) + struct.pack("<IIII", 10, 100, 20, 200)
    report = check_round_trip(ROOT, b"JUNK" + body, offset=4)
    assert report.byte_equal
    assert report.ok


def test_values_equal_handles_cycles():
    a: dict = {"value": 1}
    a["next"] = a
    b: dict = {"value": 1}
    b["next"] = b
    assert values_equal(a, b)
    c: dict = {"value": 2}
    c["next"] = c
    assert not values_equal(a, c)
