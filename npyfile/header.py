"""NPY preamble and header dictionary: parse and serialize.

Layout::

    \\x93NUMPY  major minor  header_len  {'descr': ..., 'fortran_order': ..., 'shape': (...), }   \\n
    |<------ MAGIC_LEN ---->|<- 2|4 B ->|<------------- header_len bytes, space padded ------------->|

``MAGIC_LEN + len(length field) + header_len`` is always a multiple of
``ARRAY_ALIGN`` so the payload starts aligned.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Any

from .descr import TypeDescriptor, as_descriptor
from .errors import (
    BadMagic,
    MalformedHeaderDict,
    MissingField,
    TruncatedData,
    UnsupportedVersion,
)
from .format import (
    ARRAY_ALIGN,
    HEADER_ENCODING,
    HEADER_LEN_FMT,
    MAGIC_LEN,
    MAGIC_PREFIX,
    MAX_HEADER_SIZE,
    SUPPORTED_VERSIONS,
    header_padding,
    shape_count,
)
from .literal import parse_literal

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("descr", "fortran_order", "shape")


# ── Header ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Header:
    """Parsed header: element descriptor, array shape, and storage order."""

    descriptor: TypeDescriptor
    shape: tuple[int, ...]
    fortran_order: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "descriptor", as_descriptor(self.descriptor))
        shape = self.shape
        if isinstance(shape, int) and not isinstance(shape, bool):
            shape = (shape,)
        try:
            shape = tuple(shape)
            shape_count(shape)
        except (TypeError, ValueError) as exc:
            raise MalformedHeaderDict(f"invalid shape {self.shape!r}: {exc}") from None
        object.__setattr__(self, "shape", shape)
        if not isinstance(self.fortran_order, bool):
            raise MalformedHeaderDict(
                f"fortran_order must be a bool, got {self.fortran_order!r}"
            )

    @property
    def count(self) -> int:
        """Number of elements (1 for a 0-d array)."""
        return shape_count(self.shape)

    @property
    def nbytes(self) -> int:
        return self.count * self.descriptor.size()

    def to_dict(self) -> dict[str, Any]:
        return {
            "descr": self.descriptor.to_literal(),
            "fortran_order": self.fortran_order,
            "shape": self.shape,
        }


# ── Reading ─────────────────────────────────────────────────────────────────


def _read_exact(source, offset: int, length: int, what: str) -> bytes:
    data = source.read(offset, length)
    if len(data) != length:
        raise TruncatedData(
            f"{what}: expected {length} bytes at offset {offset}, got {len(data)}"
        )
    return bytes(data)


def read_preamble(source) -> tuple[int, int]:
    """Validate the magic string; return the ``(major, minor)`` version."""
    raw = bytes(source.read(0, MAGIC_LEN))
    if len(raw) < len(MAGIC_PREFIX) or raw[: len(MAGIC_PREFIX)] != MAGIC_PREFIX:
        raise BadMagic(
            f"bad magic: expected {MAGIC_PREFIX!r}, got {raw[:len(MAGIC_PREFIX)]!r}"
        )
    if len(raw) < MAGIC_LEN:
        raise BadMagic("file too small for version bytes")
    version = (raw[6], raw[7])
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(f"unsupported version {version[0]}.{version[1]}")
    return version


def read_header_at(
    source,
    version: tuple[int, int],
    *,
    max_header_size: int = MAX_HEADER_SIZE,
) -> tuple[Header, int]:
    """Parse the header dict after the preamble; return it and the data offset."""
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(f"unsupported version {version[0]}.{version[1]}")
    len_fmt = HEADER_LEN_FMT[version[0]]
    len_size = struct.calcsize(len_fmt)
    raw_len = _read_exact(source, MAGIC_LEN, len_size, "header length")
    (header_len,) = struct.unpack(len_fmt, raw_len)
    if header_len > max_header_size:
        raise MalformedHeaderDict(
            f"header length {header_len} exceeds safety cap "
            f"({max_header_size}); refusing to parse"
        )
    start = MAGIC_LEN + len_size
    raw = _read_exact(source, start, header_len, "header")
    try:
        text = raw.decode(HEADER_ENCODING[version[0]])
    except UnicodeDecodeError as exc:
        raise MalformedHeaderDict(f"header is not valid text: {exc}") from None
    header = parse_header_text(text)
    data_offset = start + header_len
    if data_offset % ARRAY_ALIGN:
        logger.debug("data offset %d is not %d-byte aligned", data_offset, ARRAY_ALIGN)
    logger.debug(
        "parsed v%d.%d header: descr=%s shape=%s fortran_order=%s",
        version[0], version[1], header.descriptor.format(),
        header.shape, header.fortran_order,
    )
    return header, data_offset


def read_header(source, version: tuple[int, int], **kwargs) -> Header:
    """Parse the header dict that follows a preamble of *version*."""
    return read_header_at(source, version, **kwargs)[0]


def parse_header_text(text: str) -> Header:
    """Build a :class:`Header` from the dict literal text."""
    d = parse_literal(text)
    if not isinstance(d, dict):
        raise MalformedHeaderDict(f"header is not a dict: {d!r}")
    missing = [k for k in REQUIRED_KEYS if k not in d]
    if missing:
        raise MissingField(f"header is missing required keys {missing}")

    descriptor = TypeDescriptor.parse(d["descr"])
    fortran_order = d["fortran_order"]
    if not isinstance(fortran_order, bool):
        raise MalformedHeaderDict(
            f"'fortran_order' is not a bool: {fortran_order!r}"
        )
    shape = d["shape"]
    if not isinstance(shape, (tuple, list)) or not all(
        isinstance(x, int) and not isinstance(x, bool) and x >= 0 for x in shape
    ):
        raise MalformedHeaderDict(f"'shape' is not a tuple of non-negative ints: {shape!r}")
    return Header(descriptor, tuple(shape), fortran_order)


# ── Writing ─────────────────────────────────────────────────────────────────


def header_text(header: Header) -> str:
    """The unpadded dict literal, keys in sorted order like ``numpy.save``."""
    d = header.to_dict()
    return "{" + "".join(f"'{k}': {d[k]!r}, " for k in sorted(d)) + "}"


def _pick_version(text: str, version: tuple[int, int] | None) -> tuple[int, int]:
    if version is not None:
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(
                f"we only support format versions {SUPPORTED_VERSIONS}, not {version}"
            )
        return version
    try:
        text.encode("latin1")
    except UnicodeEncodeError:
        return (3, 0)
    encoded_len = len(text) + header_padding(MAGIC_LEN + 2 + len(text)) + 1
    if encoded_len <= 0xFFFF:
        return (1, 0)
    return (2, 0)


def write(header: Header, version: tuple[int, int] | None = None) -> bytes:
    """Serialize magic + version + padded header for *header*."""
    text = header_text(header)
    version = _pick_version(text, version)
    try:
        encoded = text.encode(HEADER_ENCODING[version[0]])
    except UnicodeEncodeError:
        raise UnsupportedVersion(
            f"header needs UTF-8, which version {version[0]}.{version[1]} "
            f"cannot store"
        ) from None
    len_fmt = HEADER_LEN_FMT[version[0]]
    prefix_len = MAGIC_LEN + struct.calcsize(len_fmt)
    pad = header_padding(prefix_len + len(encoded))
    header_len = len(encoded) + pad + 1
    if header_len > (1 << (8 * struct.calcsize(len_fmt))) - 1:
        raise UnsupportedVersion(
            f"header of {header_len} bytes does not fit version "
            f"{version[0]}.{version[1]}"
        )
    out = (
        MAGIC_PREFIX
        + bytes(version)
        + struct.pack(len_fmt, header_len)
        + encoded
        + b" " * pad
        + b"\n"
    )
    assert len(out) % ARRAY_ALIGN == 0
    return out
