"""Read .npy files: typed sequential, random and bulk access over a byte source."""

from __future__ import annotations

import logging
import operator
import os
from collections.abc import Iterator
from typing import Any

import numpy as np

from .descr import TypeDescriptor
from .element import DescriptorElement, ElementType, as_element, check_binding
from .errors import IndexOutOfRange, TruncatedData
from .format import MAX_HEADER_SIZE, READ_BLOCK_SIZE
from .header import Header, read_header_at, read_preamble
from .source import ByteSource, open_source

logger = logging.getLogger(__name__)


# ── DataView ────────────────────────────────────────────────────────────────


class DataView:
    """Typed, read-only view of the elements stored in a .npy source.

    The header is parsed and validated once, at construction: the element
    binding must match the file's descriptor and the source must hold the
    whole payload.  Elements are then decoded on demand.

    Usage::

        with DataView("points.npy", "<f8") as v:
            first = v.get(0)
            total = sum(v)

    *source* is a path, a bytes-like object, a seekable binary file object or
    a :class:`~npyfile.source.ByteSource`.  Sources opened here (paths and
    buffers) are closed by :meth:`close`; file objects and byte sources
    passed in stay owned by the caller.
    """

    def __init__(
        self,
        source: Any,
        element: Any = None,
        *,
        max_header_size: int | None = None,
        mmap: bool = True,
    ) -> None:
        self._source, self._owned = open_source(source, use_mmap=mmap)
        try:
            self._version = read_preamble(self._source)
            self._header, self._data_offset = read_header_at(
                self._source,
                self._version,
                max_header_size=(
                    MAX_HEADER_SIZE if max_header_size is None else max_header_size
                ),
            )
            descr = self._header.descriptor
            if element is None:
                self._element: ElementType = DescriptorElement(descr)
            else:
                self._element = as_element(element)
                check_binding(self._element, descr)
            self._element_size = descr.size()
            self._count = self._header.count
            self._check_length()
        except BaseException:
            if self._owned:
                self._source.close()
            raise
        # Generic bindings decode whole blocks at once.
        self._codec = (
            self._element.codec
            if isinstance(self._element, DescriptorElement)
            else None
        )
        logger.debug(
            "opened view: %d x %s at offset %d",
            self._count, descr.format(), self._data_offset,
        )

    def _check_length(self) -> None:
        size = self._source.size()
        if size is None:
            return
        expected = self._data_offset + self._count * self._element_size
        if size < expected:
            raise TruncatedData(
                f"source holds {size} bytes; header needs {expected} "
                f"({self._count} elements of {self._element_size} bytes "
                f"after a {self._data_offset}-byte header)"
            )
        if size > expected:
            logger.warning(
                "ignoring %d trailing bytes after the array payload",
                size - expected,
            )

    # ── Header properties ────────────────────────────────────────────────

    @property
    def header(self) -> Header:
        return self._header

    @property
    def version(self) -> tuple[int, int]:
        return self._version

    @property
    def shape(self) -> tuple[int, ...]:
        return self._header.shape

    @property
    def fortran_order(self) -> bool:
        return self._header.fortran_order

    @property
    def descriptor(self) -> TypeDescriptor:
        return self._header.descriptor

    @property
    def element(self) -> ElementType:
        return self._element

    @property
    def element_size(self) -> int:
        return self._element_size

    @property
    def data_offset(self) -> int:
        return self._data_offset

    @property
    def nbytes(self) -> int:
        """Payload size in bytes."""
        return self._count * self._element_size

    def len(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    # ── Element access ───────────────────────────────────────────────────

    def get(self, index: int) -> Any:
        """Decode the element at storage position *index* (``0 <= index < len``)."""
        index = operator.index(index)
        if index < 0 or index >= self._count:
            raise IndexOutOfRange(
                f"index {index} out of range for {self._count} elements"
            )
        size = self._element_size
        offset = self._data_offset + index * size
        data = self._source.read(offset, size)
        if len(data) != size:
            raise TruncatedData(
                f"element {index}: expected {size} bytes at offset {offset}, "
                f"got {len(data)}"
            )
        if self._codec is not None:
            return self._codec.decode(data)
        return self._element.npy_decode(bytes(data))

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return [self.get(i) for i in range(*index.indices(self._count))]
        index = operator.index(index)
        if index < 0:
            index += self._count
        return self.get(index)

    def iter(self) -> Iterator[Any]:
        """Yield every element in storage order, reading bounded blocks."""
        size = self._element_size
        per_block = max(1, READ_BLOCK_SIZE // size) if size else self._count
        index = 0
        while index < self._count:
            n = min(per_block, self._count - index)
            offset = self._data_offset + index * size
            block = self._source.read(offset, n * size)
            if len(block) != n * size:
                raise TruncatedData(
                    f"expected {n * size} bytes at offset {offset}, "
                    f"got {len(block)}"
                )
            yield from self._decode_block(block, n)
            index += n

    def __iter__(self) -> Iterator[Any]:
        return self.iter()

    def _decode_block(self, block, n: int) -> list:
        if self._codec is not None:
            return self._codec.decode_many(block, n)
        size = self._element_size
        return [
            self._element.npy_decode(bytes(block[i * size : (i + 1) * size]))
            for i in range(n)
        ]

    def to_container(self) -> list:
        """Decode every element into a list, in storage order."""
        return list(self.iter())

    def to_numpy(self, *, copy: bool = False) -> np.ndarray:
        """Return the payload as an ndarray of the header's shape and order.

        Over zero-copy sources (buffers, memory maps) the array shares memory
        with the source and is read-only; pass ``copy=True`` for an
        independent, writable array.
        """
        dtype = self._header.descriptor.to_numpy()
        order = "F" if self.fortran_order else "C"
        if self.nbytes == 0:
            return np.empty(self.shape, dtype=dtype, order=order)
        data = self._source.read(self._data_offset, self.nbytes)
        if len(data) != self.nbytes:
            raise TruncatedData(
                f"expected {self.nbytes} payload bytes, got {len(data)}"
            )
        arr = np.frombuffer(data, dtype=dtype, count=self._count)
        arr = arr.reshape(self.shape, order=order)
        return arr.copy(order=order) if copy else arr

    # ── Index mapping ────────────────────────────────────────────────────

    def logical_index(self, index: int) -> tuple[int, ...]:
        """Map a storage position to array coordinates, honouring fortran_order."""
        index = operator.index(index)
        if index < 0 or index >= self._count:
            raise IndexOutOfRange(
                f"index {index} out of range for {self._count} elements"
            )
        dims = self.shape if self.fortran_order else self.shape[::-1]
        coords = []
        for d in dims:
            index, rem = divmod(index, d)
            coords.append(rem)
        return tuple(coords) if self.fortran_order else tuple(reversed(coords))

    def storage_index(self, coords) -> int:
        """Inverse of :meth:`logical_index`."""
        coords = tuple(operator.index(c) for c in coords)
        if len(coords) != len(self.shape):
            raise IndexOutOfRange(
                f"expected {len(self.shape)} coordinates, got {len(coords)}"
            )
        for c, d in zip(coords, self.shape):
            if c < 0 or c >= d:
                raise IndexOutOfRange(f"coordinates {coords} out of range for shape {self.shape}")
        pairs = zip(coords, self.shape)
        if self.fortran_order:
            pairs = reversed(list(pairs))
        index = 0
        for c, d in pairs:
            index = index * d + c
        return index

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def source(self) -> ByteSource:
        return self._source

    def close(self) -> None:
        if self._owned:
            self._source.close()

    def __enter__(self) -> DataView:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"DataView(shape={self.shape}, descr={self.descriptor.format()!r}, "
            f"fortran_order={self.fortran_order})"
        )


# ── Convenience ─────────────────────────────────────────────────────────────


def open_npy(
    path: str | os.PathLike,
    element: Any = None,
    *,
    mmap: bool = True,
    max_header_size: int | None = None,
) -> DataView:
    """Open a .npy file; the returned view owns and closes the file."""
    return DataView(
        os.fspath(path), element, mmap=mmap, max_header_size=max_header_size
    )


def from_bytes(data, element: Any = None, **kwargs) -> DataView:
    """View over an in-memory .npy image."""
    return DataView(memoryview(data), element, **kwargs)


def load(source: Any, element: Any = None, **kwargs) -> list:
    """Read every element of *source* into a list."""
    with DataView(source, element, **kwargs) as view:
        return view.to_container()
