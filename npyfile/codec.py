"""Binary encode/decode of single elements, driven by a TypeDescriptor.

Scalars are reinterpreted exactly as their descriptor says (byte width and
byte order, no widening or narrowing); compounds delegate field by field at
each field's declared offset inside the element window.
"""

from __future__ import annotations

import struct
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from .descr import Compound, Endianness, Kind, Scalar, TypeDescriptor
from .errors import TypeMismatch


# ── struct codes ────────────────────────────────────────────────────────────

_STRUCT_CODES: dict[tuple[Kind, int], str] = {
    (Kind.BOOL, 1): "?",
    (Kind.INT, 1): "b", (Kind.INT, 2): "h", (Kind.INT, 4): "i", (Kind.INT, 8): "q",
    (Kind.UINT, 1): "B", (Kind.UINT, 2): "H", (Kind.UINT, 4): "I", (Kind.UINT, 8): "Q",
    (Kind.FLOAT, 2): "e", (Kind.FLOAT, 4): "f", (Kind.FLOAT, 8): "d",
    (Kind.COMPLEX, 8): "ff", (Kind.COMPLEX, 16): "dd",
    # timedelta64 / datetime64 are 64-bit counts of their unit
    (Kind.TIMEDELTA, 8): "q", (Kind.DATETIME, 8): "q",
}


def _byte_order(endianness: Endianness) -> str:
    return ">" if endianness is Endianness.BIG else "<"


# ── Base ────────────────────────────────────────────────────────────────────


class ElementCodec:
    """Encode/decode one element of a fixed *itemsize*."""

    itemsize: int

    def decode(self, buf, offset: int = 0) -> Any:
        raise NotImplementedError

    def encode_into(self, buf, offset: int, value: Any) -> None:
        raise NotImplementedError

    def encode(self, value: Any) -> bytes:
        out = bytearray(self.itemsize)
        self.encode_into(out, 0, value)
        return bytes(out)

    def decode_many(self, buf, count: int, offset: int = 0) -> list:
        """Decode *count* consecutive elements starting at *offset*."""
        size = self.itemsize
        return [self.decode(buf, offset + i * size) for i in range(count)]


# ── Scalars ─────────────────────────────────────────────────────────────────


class StructCodec(ElementCodec):
    """Fixed-width numbers via :mod:`struct`."""

    def __init__(self, descr: Scalar) -> None:
        self.descr = descr
        self._struct = struct.Struct(
            _byte_order(descr.endianness) + _STRUCT_CODES[(descr.kind, descr.width)]
        )
        self.itemsize = self._struct.size

    def decode(self, buf, offset: int = 0) -> Any:
        return self._struct.unpack_from(buf, offset)[0]

    def decode_many(self, buf, count: int, offset: int = 0) -> list:
        end = offset + count * self.itemsize
        return [v for (v,) in self._struct.iter_unpack(memoryview(buf)[offset:end])]

    def encode_into(self, buf, offset: int, value: Any) -> None:
        kind = self.descr.kind
        if kind is Kind.BOOL:
            if not isinstance(value, bool):
                raise ValueError(
                    f"{self.descr.format()!r} needs a bool, got {type(value).__name__}"
                )
        elif isinstance(value, bool):
            raise ValueError(f"{self.descr.format()!r} does not take bool {value!r}")
        elif kind in (Kind.INT, Kind.UINT, Kind.TIMEDELTA, Kind.DATETIME):
            if isinstance(value, float):
                raise ValueError(
                    f"{self.descr.format()!r} needs an int, got float {value!r}"
                )
        try:
            self._struct.pack_into(buf, offset, value)
        except (struct.error, OverflowError) as exc:
            raise ValueError(
                f"cannot encode {value!r} as {self.descr.format()!r}: {exc}"
            ) from exc


class ComplexCodec(ElementCodec):
    """Complex numbers stored as (real, imag) pairs."""

    def __init__(self, descr: Scalar) -> None:
        self.descr = descr
        self._struct = struct.Struct(
            _byte_order(descr.endianness) + _STRUCT_CODES[(descr.kind, descr.width)]
        )
        self.itemsize = self._struct.size

    def decode(self, buf, offset: int = 0) -> complex:
        re_, im = self._struct.unpack_from(buf, offset)
        return complex(re_, im)

    def encode_into(self, buf, offset: int, value: Any) -> None:
        # complex() would parse text and accept bools
        if isinstance(value, (str, bytes, bytearray, bool)):
            raise ValueError(
                f"{self.descr.format()!r} needs a number, got {type(value).__name__}"
            )
        try:
            c = complex(value)
            self._struct.pack_into(buf, offset, c.real, c.imag)
        except (TypeError, struct.error, OverflowError) as exc:
            raise ValueError(
                f"cannot encode {value!r} as {self.descr.format()!r}: {exc}"
            ) from exc


class BytesCodec(ElementCodec):
    """``S``: zero-padded byte strings; trailing NULs are dropped on decode."""

    def __init__(self, descr: Scalar) -> None:
        self.descr = descr
        self.itemsize = descr.itemsize

    def decode(self, buf, offset: int = 0) -> bytes:
        return bytes(buf[offset : offset + self.itemsize]).rstrip(b"\x00")

    def encode_into(self, buf, offset: int, value: Any) -> None:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise ValueError(
                f"{self.descr.format()!r} needs bytes, got {type(value).__name__}"
            )
        data = bytes(value)
        if len(data) > self.itemsize:
            raise ValueError(
                f"{len(data)} bytes do not fit {self.descr.format()!r}"
            )
        buf[offset : offset + self.itemsize] = data.ljust(self.itemsize, b"\x00")


class UnicodeCodec(ElementCodec):
    """``U``: UCS-4 code points in the declared byte order."""

    def __init__(self, descr: Scalar) -> None:
        self.descr = descr
        self.itemsize = descr.itemsize
        self._encoding = (
            "utf-32-be" if descr.endianness is Endianness.BIG else "utf-32-le"
        )

    def decode(self, buf, offset: int = 0) -> str:
        raw = bytes(buf[offset : offset + self.itemsize])
        return raw.decode(self._encoding, "surrogatepass").rstrip("\x00")

    def encode_into(self, buf, offset: int, value: Any) -> None:
        if not isinstance(value, str):
            raise ValueError(
                f"{self.descr.format()!r} needs str, got {type(value).__name__}"
            )
        if len(value) > self.descr.width:
            raise ValueError(
                f"{len(value)} characters do not fit {self.descr.format()!r}"
            )
        data = value.encode(self._encoding, "surrogatepass")
        buf[offset : offset + self.itemsize] = data.ljust(self.itemsize, b"\x00")


class VoidCodec(ElementCodec):
    """``V``: opaque blobs of exactly *width* bytes."""

    def __init__(self, descr: Scalar) -> None:
        self.descr = descr
        self.itemsize = descr.itemsize

    def decode(self, buf, offset: int = 0) -> bytes:
        return bytes(buf[offset : offset + self.itemsize])

    def encode_into(self, buf, offset: int, value: Any) -> None:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise ValueError(
                f"{self.descr.format()!r} needs bytes, got {type(value).__name__}"
            )
        data = bytes(value)
        if len(data) != self.itemsize:
            raise ValueError(
                f"{self.descr.format()!r} needs exactly {self.itemsize} bytes, "
                f"got {len(data)}"
            )
        buf[offset : offset + self.itemsize] = data


# ── Sub-arrays & compounds ─────────────────────────────────────────────────


class SubarrayCodec(ElementCodec):
    """A fixed-shape block of one base type, as nested row-major lists."""

    def __init__(self, base: ElementCodec, shape: tuple[int, ...]) -> None:
        self.base = base
        self.shape = shape
        self.count = _prod(shape)
        self.itemsize = base.itemsize * self.count

    def decode(self, buf, offset: int = 0) -> list:
        flat = self.base.decode_many(buf, self.count, offset)
        return _nest(flat, self.shape)

    def encode_into(self, buf, offset: int, value: Any) -> None:
        flat = _flatten(value, self.shape)
        size = self.base.itemsize
        for i, item in enumerate(flat):
            self.base.encode_into(buf, offset + i * size, item)


class CompoundCodec(ElementCodec):
    """Records as ``dict`` values, one codec per field at its offset."""

    def __init__(self, descr: Compound) -> None:
        self.descr = descr
        self.itemsize = descr.itemsize
        self.fields: list[tuple[str, int, ElementCodec]] = []
        for f in descr.fields:
            codec = codec_for(f.descriptor)
            if f.shape:
                codec = SubarrayCodec(codec, f.shape)
            self.fields.append((f.name, f.offset, codec))

    def decode(self, buf, offset: int = 0) -> dict:
        return {
            name: codec.decode(buf, offset + field_off)
            for name, field_off, codec in self.fields
        }

    def encode_into(self, buf, offset: int, value: Any) -> None:
        if isinstance(value, Mapping):
            missing = [name for name, _, _ in self.fields if name not in value]
            if missing:
                raise ValueError(f"record value is missing fields {missing}")
            items = [value[name] for name, _, _ in self.fields]
        elif isinstance(value, (tuple, list)):
            if len(value) != len(self.fields):
                raise ValueError(
                    f"record has {len(self.fields)} fields, got {len(value)} values"
                )
            items = list(value)
        else:
            raise ValueError(
                f"record value must be a mapping or sequence, "
                f"got {type(value).__name__}"
            )
        for (_, field_off, codec), item in zip(self.fields, items):
            codec.encode_into(buf, offset + field_off, item)


# ── Helpers ─────────────────────────────────────────────────────────────────


def _prod(shape: tuple[int, ...]) -> int:
    n = 1
    for d in shape:
        n *= d
    return n


def _nest(flat: list, shape: tuple[int, ...]) -> list:
    if len(shape) <= 1:
        return list(flat)
    step = _prod(shape[1:])
    return [_nest(flat[i * step : (i + 1) * step], shape[1:]) for i in range(shape[0])]


def _flatten(value: Any, shape: tuple[int, ...]) -> list:
    if not shape:
        return [value]
    if isinstance(value, (str, bytes)) or not hasattr(value, "__len__"):
        raise ValueError(f"expected a sequence of length {shape[0]}, got {value!r}")
    if len(value) != shape[0]:
        raise ValueError(
            f"expected a sequence of length {shape[0]}, got length {len(value)}"
        )
    out: list = []
    for item in value:
        out.extend(_flatten(item, shape[1:]))
    return out


@lru_cache(maxsize=256)
def codec_for(descr: TypeDescriptor) -> ElementCodec:
    """Return the codec for *descr*; raise :class:`TypeMismatch` if none exists."""
    if isinstance(descr, Compound):
        return CompoundCodec(descr)
    if not isinstance(descr, Scalar):
        raise TypeMismatch(f"not a type descriptor: {descr!r}")
    if descr.kind is Kind.BYTES:
        return BytesCodec(descr)
    if descr.kind is Kind.UNICODE:
        return UnicodeCodec(descr)
    if descr.kind is Kind.VOID:
        return VoidCodec(descr)
    if (descr.kind, descr.width) not in _STRUCT_CODES:
        raise TypeMismatch(
            f"no binary codec for {descr.format()!r} "
            f"(extended-precision types cannot be represented)"
        )
    if descr.kind is Kind.COMPLEX:
        return ComplexCodec(descr)
    return StructCodec(descr)
