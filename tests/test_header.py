"""Preamble and header dictionary: parse, validate, serialize."""

import io
import struct

import numpy as np
import pytest

from npyfile.descr import Compound, TypeDescriptor
from npyfile.errors import (
    BadMagic,
    MalformedDescriptor,
    MalformedHeaderDict,
    MissingField,
    TruncatedData,
    UnsupportedVersion,
)
from npyfile.header import Header, read_header, read_header_at, read_preamble, write
from npyfile.source import BufferSource


# ── Helpers ─────────────────────────────────────────────────────────────────


def _raw_npy(text: str, version=(1, 0), payload: bytes = b"") -> bytes:
    """Hand-assemble a .npy image around an arbitrary header text."""
    fmt = "<H" if version[0] == 1 else "<I"
    body = text.encode("latin1" if version[0] < 3 else "utf8")
    prefix = 8 + struct.calcsize(fmt)
    pad = -(prefix + len(body) + 1) % 64
    body += b" " * pad + b"\n"
    return b"\x93NUMPY" + bytes(version) + struct.pack(fmt, len(body)) + body + payload


def _parse(data: bytes, **kwargs) -> Header:
    src = BufferSource(data)
    return read_header(src, read_preamble(src), **kwargs)


# ── Preamble ────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("version", [(1, 0), (2, 0), (3, 0)])
def test_preamble_versions(version):
    data = _raw_npy("{'descr': '<i2', 'fortran_order': False, 'shape': (1,), }", version)
    assert read_preamble(BufferSource(data)) == version


@pytest.mark.parametrize(
    "data",
    [b"", b"\x93NUM", b"NOTNPY\x01\x00", b"\x93NUMPX\x01\x00", b"\x93NUMPY\x01"],
)
def test_bad_magic(data):
    with pytest.raises(BadMagic):
        read_preamble(BufferSource(data))


@pytest.mark.parametrize("version", [(0, 9), (1, 1), (4, 0)])
def test_unsupported_version(version):
    with pytest.raises(UnsupportedVersion):
        read_preamble(BufferSource(b"\x93NUMPY" + bytes(version) + b"\x00" * 8))


# ── Header dict ─────────────────────────────────────────────────────────────


def test_parse_simple_header():
    h = _parse(_raw_npy("{'descr': '<f8', 'fortran_order': False, 'shape': (3,), }"))
    assert h.descriptor == TypeDescriptor.parse("<f8")
    assert h.shape == (3,)
    assert h.fortran_order is False
    assert h.count == 3
    assert h.nbytes == 24


def test_parse_compound_header():
    text = (
        "{'descr': [('x', '<f4'), ('', '|V4'), ('y', '<i8')], "
        "'fortran_order': True, 'shape': (2, 5), }"
    )
    h = _parse(_raw_npy(text))
    assert h.descriptor.names == ("x", "y")
    assert h.fortran_order is True
    assert h.count == 10


def test_scalar_and_empty_shapes():
    assert _parse(_raw_npy("{'descr': '<f8', 'fortran_order': False, 'shape': (), }")).count == 1
    assert _parse(_raw_npy("{'descr': '<f8', 'fortran_order': False, 'shape': (0, 4), }")).count == 0


def test_key_order_and_extra_keys():
    text = "{'shape': [2], 'extra': None, 'fortran_order': False, 'descr': '|u1'}"
    h = _parse(_raw_npy(text))
    assert h.shape == (2,)


def test_read_header_at_returns_data_offset():
    data = _raw_npy("{'descr': '<f8', 'fortran_order': False, 'shape': (3,), }")
    src = BufferSource(data)
    header, offset = read_header_at(src, read_preamble(src))
    assert offset == len(data)
    assert offset % 64 == 0
    assert header.count == 3


@pytest.mark.parametrize("missing", ["descr", "fortran_order", "shape"])
def test_missing_field(missing):
    d = {"descr": "'<f8'", "fortran_order": "False", "shape": "(3,)"}
    del d[missing]
    text = "{" + ", ".join(f"'{k}': {v}" for k, v in d.items()) + "}"
    with pytest.raises(MissingField, match=missing):
        _parse(_raw_npy(text))
    # MissingField is a MalformedHeaderDict.
    with pytest.raises(MalformedHeaderDict):
        _parse(_raw_npy(text))


@pytest.mark.parametrize(
    "text",
    [
        "['descr', '<f8']",
        "{'descr': '<f8', 'fortran_order': 0, 'shape': (3,)}",
        "{'descr': '<f8', 'fortran_order': False, 'shape': (-1,)}",
        "{'descr': '<f8', 'fortran_order': False, 'shape': ('3',)}",
        "{'descr': '<f8', 'fortran_order': False, 'shape': 3}",
        "{'descr': '<f8', 'fortran_order': False, 'shape': (True,)}",
        "{'descr': '<f8', 'fortran_order': False, 'shape': (3.5,)}",
        "{'descr': '<f8', 'fortran_order': False, 'shape': (3,)",
        "{'descr': '<f8', 'fortran_order': False, 'shape': (3,), 'x': open('f')}",
    ],
)
def test_malformed_header(text):
    with pytest.raises(MalformedHeaderDict):
        _parse(_raw_npy(text))


def test_malformed_descr():
    with pytest.raises(MalformedDescriptor):
        _parse(_raw_npy("{'descr': '<x8', 'fortran_order': False, 'shape': (3,)}"))


def test_header_size_cap():
    data = _raw_npy("{'descr': '<f8', 'fortran_order': False, 'shape': (3,), }")
    with pytest.raises(MalformedHeaderDict, match="safety cap"):
        _parse(data, max_header_size=16)


def test_truncated_header():
    data = _raw_npy("{'descr': '<f8', 'fortran_order': False, 'shape': (3,), }")
    with pytest.raises(TruncatedData):
        _parse(data[:40])
    with pytest.raises(TruncatedData):
        _parse(data[:9])


def test_utf8_header_requires_version_3():
    text = "{'descr': [('温度', '<f4')], 'fortran_order': False, 'shape': (1,), }"
    h = _parse(_raw_npy(text, (3, 0)))
    assert h.descriptor.names == ("温度",)


def test_reads_numpy_header():
    buf = io.BytesIO()
    np.save(buf, np.zeros((4, 2), dtype=">i2"))
    h = _parse(buf.getvalue())
    assert h.descriptor == TypeDescriptor.parse(">i2")
    assert h.shape == (4, 2)
    assert not h.fortran_order


# ── Writing ─────────────────────────────────────────────────────────────────


def test_write_simple_header():
    out = write(Header("<f8", (3,)))
    assert out[:8] == b"\x93NUMPY\x01\x00"
    assert len(out) == 128
    (hlen,) = struct.unpack("<H", out[8:10])
    assert hlen == 118
    text = out[10:].decode("latin1")
    assert text.startswith("{'descr': '<f8', 'fortran_order': False, 'shape': (3,), }")
    assert text.endswith(" \n")
    assert _parse(out) == Header("<f8", (3,))


@pytest.mark.parametrize(
    "shape",
    [(), (0,), (1,), (7,), (3, 4), (2, 3, 4, 5), (10**12,), tuple(range(1, 20))],
)
@pytest.mark.parametrize("fortran_order", [False, True])
def test_written_header_is_aligned(shape, fortran_order):
    out = write(Header("<i4", shape, fortran_order))
    assert len(out) % 64 == 0
    assert _parse(out) == Header("<i4", shape, fortran_order)


def test_written_header_loads_in_numpy():
    h = Header("[('x', '<f4'), ('', '|V4'), ('y', '<i8')]", (2,))
    data = write(h) + b"\x00" * 32
    arr = np.load(io.BytesIO(data))
    assert arr.shape == (2,)
    assert arr.dtype.names == ("x", "y")
    assert arr.dtype.itemsize == 16


def test_large_header_uses_version_2():
    descr = Compound.packed([(f"f{i:05d}", "<f8") for i in range(4000)])
    out = write(Header(descr, (1,)))
    assert out[6:8] == b"\x02\x00"
    assert len(out) % 64 == 0
    assert _parse(out).descriptor == descr


def test_non_latin1_header_uses_version_3():
    out = write(Header("[('温度', '<f4')]", (1,)))
    assert out[6:8] == b"\x03\x00"
    assert _parse(out).descriptor.names == ("温度",)


def test_explicit_version():
    out = write(Header("<f8", (3,)), (2, 0))
    assert out[6:8] == b"\x02\x00"
    assert len(out) % 64 == 0
    assert _parse(out).shape == (3,)


def test_explicit_version_that_cannot_hold_header():
    with pytest.raises(UnsupportedVersion):
        write(Header("[('温度', '<f4')]", (1,)), (1, 0))
    descr = Compound.packed([(f"f{i:05d}", "<f8") for i in range(4000)])
    with pytest.raises(UnsupportedVersion):
        write(Header(descr, (1,)), (1, 0))
    with pytest.raises(UnsupportedVersion):
        write(Header("<f8", (1,)), (4, 0))


def test_header_validation():
    with pytest.raises(MalformedHeaderDict):
        Header("<f8", (-1,))
    with pytest.raises(MalformedHeaderDict):
        Header("<f8", (3,), fortran_order=1)
    assert Header("<f8", 5).shape == (5,)
