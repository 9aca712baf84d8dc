"""Byte sources: random-access reads over buffers, files, and memory maps.

A :class:`DataView` never opens files itself; it reads through a
:class:`ByteSource`.  Every source answers ``read(offset, length)`` and
reports its total size when it knows it.
"""

from __future__ import annotations

import io
import logging
import mmap
import os
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


# ── ByteSource protocol ─────────────────────────────────────────────────────


class ByteSource(ABC):
    """Abstract interface for byte-range reading."""

    @abstractmethod
    def size(self) -> Optional[int]:
        """Return total size in bytes, or None if unknown."""

    @abstractmethod
    def read(self, offset: int, length: int):
        """Read up to *length* bytes at *offset*; fewer only at end of data."""

    def close(self) -> None:
        """Release resources."""

    @property
    def zero_copy(self) -> bool:
        """True when ``read`` returns views into memory the source owns."""
        return False

    def __enter__(self) -> ByteSource:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


# ── BufferSource ────────────────────────────────────────────────────────────


class BufferSource(ByteSource):
    """Zero-copy source over ``bytes``, ``bytearray`` or ``memoryview``."""

    def __init__(self, data) -> None:
        self._view = memoryview(data).cast("B")

    def size(self) -> int:
        return self._view.nbytes

    def read(self, offset: int, length: int) -> memoryview:
        return self._view[offset : offset + length]

    @property
    def zero_copy(self) -> bool:
        return True

    def close(self) -> None:
        self._view.release()


# ── FileSource ──────────────────────────────────────────────────────────────


class FileSource(ByteSource):
    """Source for local files using pread or seek+read."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = os.fspath(path)
        self._fd = open(self.path, "rb")  # noqa: SIM115
        self._size = os.fstat(self._fd.fileno()).st_size

    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        # Use pread if available (Unix), else seek+read
        if hasattr(os, "pread"):
            return os.pread(self._fd.fileno(), length, offset)
        self._fd.seek(offset)
        return self._fd.read(length)

    def close(self) -> None:
        self._fd.close()


# ── MMapSource ──────────────────────────────────────────────────────────────


class MMapSource(ByteSource):
    """Read-only memory map of a whole file, exposed as memoryview slices.

    Reads are zero-copy; views handed out by :meth:`read` must be released
    (or dropped) before :meth:`close`.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = os.fspath(path)
        with open(self.path, "rb") as f:
            self._size = os.fstat(f.fileno()).st_size
            # Zero-length files cannot be mapped.
            self._mm = (
                mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
                if self._size
                else None
            )
        self._view = memoryview(self._mm) if self._mm is not None else memoryview(b"")

    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> memoryview:
        return self._view[offset : offset + length]

    @property
    def zero_copy(self) -> bool:
        return True

    def close(self) -> None:
        self._view.release()
        if self._mm is not None:
            try:
                self._mm.close()
            except BufferError:
                # Exported views are still alive; the map is freed with them.
                logger.debug("mmap of %s still has live views", self.path)


# ── FileObjectSource ────────────────────────────────────────────────────────


class FileObjectSource(ByteSource):
    """Source over a seekable binary file object the caller owns.

    The size is taken from ``seek(0, SEEK_END)`` when the object supports it
    and is otherwise unknown, in which case short reads surface at the first
    access that runs off the end.
    """

    def __init__(self, fileobj: Any) -> None:
        self._f = fileobj
        self._size: Optional[int] = None
        try:
            pos = fileobj.tell()
            self._size = fileobj.seek(0, io.SEEK_END)
            fileobj.seek(pos)
        except (AttributeError, OSError, io.UnsupportedOperation):
            self._size = None

    def size(self) -> Optional[int]:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        self._f.seek(offset)
        chunks = []
        remaining = length
        while remaining > 0:
            data = self._f.read(remaining)
            if not data:
                break
            chunks.append(data)
            remaining -= len(data)
        return b"".join(chunks)


# ── Factory ─────────────────────────────────────────────────────────────────


def open_source(obj: Any, *, use_mmap: bool = True) -> tuple[ByteSource, bool]:
    """Wrap *obj* in a :class:`ByteSource`.

    Returns ``(source, owned)``; *owned* is True when the source was opened
    here and should be closed by the caller.
    """
    if isinstance(obj, ByteSource):
        return obj, False
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return BufferSource(obj), True
    if isinstance(obj, (str, os.PathLike)):
        return (MMapSource(obj) if use_mmap else FileSource(obj)), True
    if hasattr(obj, "read") and hasattr(obj, "seek"):
        return FileObjectSource(obj), False
    raise TypeError(f"cannot read .npy data from {type(obj).__name__}")
