"""NPY binary format constants, configuration, and alignment helpers."""

import os
import struct

# ── Magic & version ─────────────────────────────────────────────────────────

MAGIC_PREFIX = b"\x93NUMPY"
MAGIC_LEN = len(MAGIC_PREFIX) + 2

SUPPORTED_VERSIONS = ((1, 0), (2, 0), (3, 0))

# ── Header length field (little-endian) ─────────────────────────────────────
#
# Preamble:
#   magic[6]  ver_major(u8) ver_minor(u8)  header_len(u16 | u32)
#
# 1.0 stores a u16 length and a latin-1 header, 2.0 widens the length to
# u32, 3.0 keeps the u32 length and allows a UTF-8 header.

HEADER_LEN_FMT: dict[int, str] = {1: "<H", 2: "<I", 3: "<I"}
HEADER_ENCODING: dict[int, str] = {1: "latin1", 2: "latin1", 3: "utf8"}

assert struct.calcsize(HEADER_LEN_FMT[1]) == 2
assert struct.calcsize(HEADER_LEN_FMT[2]) == 4

# Preamble + header is padded to this boundary so the payload is aligned.
ARRAY_ALIGN = 64

# ── Configuration ───────────────────────────────────────────────────────────


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {parsed}")
    return parsed


MAX_HEADER_SIZE = _env_int("NPYFILE_MAX_HEADER_SIZE", 1024 * 1024)
READ_BLOCK_SIZE = _env_int("NPYFILE_READ_BLOCK_SIZE", 1024 * 1024)
WRITE_BUFFER_SIZE = 1024 * 1024

# ── Alignment helpers ──────────────────────────────────────────────────────


def align(offset: int, alignment: int) -> int:
    """Round *offset* up to the next multiple of *alignment*."""
    return -(-offset // alignment) * alignment


def header_padding(unpadded_len: int) -> int:
    """Number of pad spaces so that *unpadded_len* + pad + newline aligns."""
    return -(unpadded_len + 1) % ARRAY_ALIGN


# ── Safe shape utilities ───────────────────────────────────────────────────


def shape_count(shape) -> int:
    """Number of elements described by *shape* (1 for the empty shape)."""
    n = 1
    for d in shape:
        if isinstance(d, bool) or not isinstance(d, int):
            raise ValueError(f"dimension must be an int, got {d!r}")
        if d < 0:
            raise ValueError(f"negative dimension: {d}")
        n *= d
    return n
