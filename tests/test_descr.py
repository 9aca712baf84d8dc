"""Type descriptor parsing, formatting, and numpy conversion."""

import numpy as np
import pytest

from npyfile.descr import (
    NATIVE,
    Compound,
    Endianness,
    Field,
    Kind,
    Scalar,
    TypeDescriptor,
)
from npyfile.errors import MalformedDescriptor

PADDED = "[('x', '<f4'), ('', '|V4'), ('y', '<i8')]"


# ── Scalars ─────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text, kind, width, order, itemsize",
    [
        ("<f8", Kind.FLOAT, 8, Endianness.LITTLE, 8),
        ("|b1", Kind.BOOL, 1, Endianness.NOT_APPLICABLE, 1),
        (">u4", Kind.UINT, 4, Endianness.BIG, 4),
        ("<c16", Kind.COMPLEX, 16, Endianness.LITTLE, 16),
        ("|S10", Kind.BYTES, 10, Endianness.NOT_APPLICABLE, 10),
        ("<U5", Kind.UNICODE, 5, Endianness.LITTLE, 20),
        ("|V3", Kind.VOID, 3, Endianness.NOT_APPLICABLE, 3),
        ("<f2", Kind.FLOAT, 2, Endianness.LITTLE, 2),
    ],
)
def test_parse_scalar(text, kind, width, order, itemsize):
    d = TypeDescriptor.parse(text)
    assert d == Scalar(kind, width, order)
    assert d.size() == itemsize
    assert d.format() == text
    assert not d.is_compound


def test_parse_time_units():
    d = TypeDescriptor.parse("<M8[ns]")
    assert d.kind is Kind.DATETIME
    assert d.units == "ns"
    assert d.format() == "<M8[ns]"
    assert TypeDescriptor.parse("<m8[10us]").units == "10us"
    # Generic (unit-less) datetimes are allowed.
    assert TypeDescriptor.parse("<M8").units is None


def test_native_order_is_resolved():
    d = TypeDescriptor.parse("=i4")
    assert d.endianness is NATIVE
    assert "=" not in d.format()


def test_native_helper():
    assert Scalar.native(Kind.UINT, 1).endianness is Endianness.NOT_APPLICABLE
    assert Scalar.native(Kind.FLOAT, 8).endianness is NATIVE


@pytest.mark.parametrize(
    "text",
    [
        "",
        "f8",
        "<f3",
        "<i3",
        "|b2",
        "<q8",
        "|f8",
        "|U4",
        "<i4[ns]",
        "<M8[parsec]",
        "<M4[ns]",
        "<f8 junk",
    ],
)
def test_parse_invalid_scalar(text):
    with pytest.raises(MalformedDescriptor):
        TypeDescriptor.parse(text)


def test_scalar_matches():
    f4 = TypeDescriptor.parse("<f4")
    f8 = TypeDescriptor.parse("<f8")
    assert not f4.matches(f8)
    assert f8.matches(TypeDescriptor.parse("<f8"))
    assert not TypeDescriptor.parse("<i4").matches(TypeDescriptor.parse(">i4"))
    # Byte order is irrelevant for single bytes and byte strings.
    assert TypeDescriptor.parse("|u1").matches(TypeDescriptor.parse("<u1"))
    assert TypeDescriptor.parse("|S3").matches(TypeDescriptor.parse("<S3"))
    assert not TypeDescriptor.parse("<U3").matches(TypeDescriptor.parse(">U3"))


# ── Compounds ───────────────────────────────────────────────────────────────


def test_parse_padded_compound():
    d = TypeDescriptor.parse(PADDED)
    assert isinstance(d, Compound)
    assert d.is_compound
    assert d.names == ("x", "y")
    assert d.field("x").offset == 0
    assert d.field("y").offset == 8
    assert d.size() == 16
    assert d.format() == PADDED


def test_parse_compound_from_literal_objects():
    literal = [("x", "<f4"), ("", "|V4"), ("y", "<i8")]
    assert TypeDescriptor.parse(literal) == TypeDescriptor.parse(PADDED)


def test_trailing_padding_round_trips():
    x = Field("x", 0, TypeDescriptor.parse("<f8"))
    d = Compound((x,), itemsize=16)
    assert d.to_literal() == [("x", "<f8"), ("", "|V8")]
    assert TypeDescriptor.parse(d.format()) == d


def test_subarray_field():
    d = TypeDescriptor.parse("[('pos', '<f4', (3,)), ('id', '<u2')]")
    pos = d.field("pos")
    assert pos.shape == (3,)
    assert pos.size == 12
    assert d.field("id").offset == 12
    assert d.size() == 14


def test_nested_compound():
    d = TypeDescriptor.parse("[('a', [('b', '<i2'), ('c', '<i2')]), ('d', '|u1')]")
    inner = d.field("a").descriptor
    assert isinstance(inner, Compound)
    assert inner.size() == 4
    assert d.field("d").offset == 4


def test_dict_form_with_overlap():
    d = TypeDescriptor.parse(
        {"names": ["lo", "all"], "formats": ["<u2", "<u4"],
         "offsets": [0, 0], "itemsize": 4}
    )
    assert d.field("all").offset == 0
    lit = d.to_literal()
    assert isinstance(lit, dict)
    assert TypeDescriptor.parse(d.format()) == d


def test_title_name_pairs_keep_name():
    d = TypeDescriptor.parse([(("Temperature", "t"), "<f4")])
    assert d.names == ("t",)


@pytest.mark.parametrize(
    "spec",
    [
        "[('x', '<f4')",
        "[('x', '<f4'), ('x', '<f8')]",
        "[('x',)]",
        "[('', '<f4')]",
        "[(1, '<f4')]",
        "[('x', '<f4', (-1,))]",
        "{'names': ['a'], 'formats': ['<f4', '<f8']}",
        "{'formats': ['<f4']}",
        "{'names': ['a'], 'formats': ['<f8'], 'itemsize': 4}",
        42,
    ],
)
def test_parse_invalid_compound(spec):
    with pytest.raises(MalformedDescriptor):
        TypeDescriptor.parse(spec)


def test_compound_invariants():
    f8 = TypeDescriptor.parse("<f8")
    with pytest.raises(MalformedDescriptor, match="itemsize"):
        Compound((Field("a", 0, f8),), itemsize=4)
    with pytest.raises(MalformedDescriptor, match="precedes"):
        Compound((Field("a", 8, f8), Field("b", 0, f8)))
    with pytest.raises(MalformedDescriptor):
        Field("", 0, f8)


def test_layout_builders():
    members = [("x", "<f4"), ("y", "<i8")]
    assert Compound.aligned(members) == TypeDescriptor.parse(PADDED)
    packed = Compound.packed(members)
    assert packed.field("y").offset == 4
    assert packed.size() == 12


def test_compound_matches():
    a = TypeDescriptor.parse(PADDED)
    assert a.matches(TypeDescriptor.parse(PADDED))
    assert not a.matches(Compound.packed([("x", "<f4"), ("y", "<i8")]))
    assert not a.matches(TypeDescriptor.parse("[('x', '<f4'), ('', '|V4'), ('z', '<i8')]"))
    assert not a.matches(TypeDescriptor.parse("<f8"))


# ── Round trip ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text",
    [
        "<f8", ">i2", "|b1", "<U7", "|S0", "<M8[ms]", ">m8[3h]",
        PADDED,
        "[('a', '>i4', (2, 2)), ('b', [('c', '|S3')]), ('', '|V1')]",
    ],
)
def test_format_parse_round_trip(text):
    d = TypeDescriptor.parse(text)
    assert TypeDescriptor.parse(d.format()) == d
    assert hash(TypeDescriptor.parse(d.format())) == hash(d)


# ── numpy interop ───────────────────────────────────────────────────────────


def test_from_numpy_aligned_struct():
    dt = np.dtype([("x", "<f4"), ("y", "<i8")], align=True)
    assert TypeDescriptor.from_numpy(dt) == TypeDescriptor.parse(PADDED)


def test_to_numpy_keeps_offsets():
    dt = TypeDescriptor.parse(PADDED).to_numpy()
    assert dt.itemsize == 16
    assert dt.names == ("x", "y")
    assert dt.fields["y"][1] == 8


@pytest.mark.parametrize("dt", ["<f8", ">u2", "|b1", "<U3", "|S4", "<M8[D]", "<c8"])
def test_numpy_scalar_round_trip(dt):
    d = TypeDescriptor.from_numpy(np.dtype(dt))
    assert d.to_numpy() == np.dtype(dt)


def test_from_numpy_rejects_bare_subarray():
    with pytest.raises(MalformedDescriptor):
        TypeDescriptor.from_numpy(np.dtype(("<i4", (2,))))


def test_deeply_nested_descriptor_text():
    with pytest.raises(MalformedDescriptor, match="nested deeper"):
        TypeDescriptor.parse("[" * 5000 + "]" * 5000)
