"""Write .npy files: a padded header followed by streamed, typed elements."""

from __future__ import annotations

import io
import logging
import os
from typing import Any

import numpy as np

from .descr import TypeDescriptor
from .element import ElementType, as_element
from .errors import ElementCountMismatch, TypeMismatch
from .format import WRITE_BUFFER_SIZE
from .header import Header
from .header import write as write_header

logger = logging.getLogger(__name__)


# ── NpyWriter ───────────────────────────────────────────────────────────────


class NpyWriter:
    """Stream exactly ``product(shape)`` elements into a .npy sink.

    The preamble and header are written on construction.  A path sink is
    written to ``<path>.tmp`` and renamed into place by a successful
    :meth:`close` (``atomic=False`` writes the path directly).  A file object
    sink is borrowed: it is flushed, never closed.

    Usage::

        with NpyWriter("out.npy", "<f8", (3,)) as w:
            for x in (1.0, 2.0, 3.0):
                w.write(x)
    """

    def __init__(
        self,
        sink: Any,
        element: Any,
        shape: Any,
        fortran_order: bool = False,
        *,
        version: tuple[int, int] | None = None,
        atomic: bool = True,
    ) -> None:
        self._element: ElementType = as_element(element)
        self.header = Header(self._element.npy_descriptor(), shape, fortran_order)
        preamble = write_header(self.header, version)
        self._expected = self.header.count
        self._itemsize = self.header.descriptor.size()
        self._written = 0
        self._buffer = bytearray()
        self._closed = False

        if isinstance(sink, (str, os.PathLike)):
            self.path: str | None = os.fspath(sink)
            self._atomic = atomic
            self._tmp_path = self.path + ".tmp" if atomic else self.path
            self._f = open(self._tmp_path, "wb")  # noqa: SIM115
            self._owned = True
        elif hasattr(sink, "write"):
            self.path = None
            self._atomic = False
            self._tmp_path = None
            self._f = sink
            self._owned = False
        else:
            raise TypeError(f"cannot write .npy data to {type(sink).__name__}")

        try:
            self._f.write(preamble)
        except BaseException:
            self._discard()
            raise
        logger.debug(
            "begin write: %s shape=%s fortran_order=%s header=%d bytes",
            self.header.descriptor.format(), self.header.shape,
            self.header.fortran_order, len(preamble),
        )

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def descriptor(self) -> TypeDescriptor:
        return self.header.descriptor

    @property
    def written(self) -> int:
        """Elements accepted so far."""
        return self._written

    @property
    def remaining(self) -> int:
        return self._expected - self._written

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Writing ──────────────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("write to a closed NpyWriter")

    def write(self, value: Any) -> None:
        """Encode and append one element."""
        self._check_open()
        if self._written >= self._expected:
            raise ElementCountMismatch(
                f"shape {self.header.shape} holds {self._expected} elements; "
                f"refusing element {self._written + 1}"
            )
        data = self._element.npy_encode(value)
        if len(data) != self._itemsize:
            raise TypeMismatch(
                f"element encoded to {len(data)} bytes; "
                f"{self.descriptor.format()!r} needs {self._itemsize}"
            )
        self._buffer += data
        self._written += 1
        if len(self._buffer) >= WRITE_BUFFER_SIZE:
            self._flush_buffer()

    def write_all(self, values) -> None:
        for value in values:
            self.write(value)

    def write_raw(self, data, count: int | None = None) -> None:
        """Append *count* already-encoded elements."""
        self._check_open()
        data = memoryview(data).cast("B")
        if count is None:
            if not self._itemsize:
                raise ValueError("count is required for zero-size elements")
            count, rem = divmod(data.nbytes, self._itemsize)
            if rem:
                raise ValueError(
                    f"{data.nbytes} bytes is not a whole number of "
                    f"{self._itemsize}-byte elements"
                )
        elif data.nbytes != count * self._itemsize:
            raise ValueError(
                f"{count} elements need {count * self._itemsize} bytes, "
                f"got {data.nbytes}"
            )
        if self._written + count > self._expected:
            raise ElementCountMismatch(
                f"shape {self.header.shape} holds {self._expected} elements; "
                f"got {self._written + count}"
            )
        self._flush_buffer()
        self._f.write(data)
        self._written += count

    def _flush_buffer(self) -> None:
        if self._buffer:
            self._f.write(self._buffer)
            self._buffer = bytearray()

    # ── Lifecycle ────────────────────────────────────────────────────────

    def close(self) -> None:
        """Finish the file; fail if fewer elements than promised were written."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._written != self._expected:
                raise ElementCountMismatch(
                    f"shape {self.header.shape} needs {self._expected} "
                    f"elements; only {self._written} written"
                )
            self._flush_buffer()
            self._f.flush()
            if self._owned:
                if self._atomic:
                    os.fsync(self._f.fileno())
                self._f.close()
                if self._atomic:
                    os.replace(self._tmp_path, self.path)
                    logger.debug("renamed %s -> %s", self._tmp_path, self.path)
        except BaseException:
            self._discard()
            raise
        logger.debug("closed writer after %d elements", self._written)

    def abort(self) -> None:
        """Stop writing and remove any partial output this writer created."""
        if self._closed:
            return
        self._closed = True
        self._discard()

    def _discard(self) -> None:
        self._buffer = bytearray()
        if not self._owned:
            return
        self._f.close()
        if os.path.exists(self._tmp_path):
            os.unlink(self._tmp_path)
            logger.debug("discarded partial output %s", self._tmp_path)

    def __enter__(self) -> NpyWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()

    def __repr__(self) -> str:
        return (
            f"NpyWriter(descr={self.descriptor.format()!r}, "
            f"shape={self.header.shape}, written={self._written})"
        )


# ── Functional interface ────────────────────────────────────────────────────


def begin(
    sink: Any,
    descriptor: Any,
    shape: Any,
    fortran_order: bool = False,
    *,
    version: tuple[int, int] | None = None,
    atomic: bool = True,
) -> NpyWriter:
    """Write the header for *shape* elements of *descriptor* and return a writer."""
    return NpyWriter(
        sink, descriptor, shape, fortran_order, version=version, atomic=atomic
    )


def write_element(handle: NpyWriter, value: Any) -> None:
    handle.write(value)


def close(handle: NpyWriter) -> None:
    handle.close()


def _infer_element(values: list) -> ElementType:
    if not values:
        return as_element(float)
    kind = type(values[0])
    for t in (bool, int, float, complex):
        if kind is t:
            return as_element(t)
    raise TypeMismatch(
        f"cannot infer an element type from {kind.__name__} values; "
        f"pass element="
    )


def _prepare(values, element, shape) -> tuple[Any, ElementType, Any]:
    if shape is None or element is None:
        values = list(values)
    if shape is None:
        shape = (len(values),)
    element = _infer_element(values) if element is None else as_element(element)
    return values, element, shape


def save(
    sink: Any,
    values,
    element: Any = None,
    shape: Any = None,
    fortran_order: bool = False,
    *,
    version: tuple[int, int] | None = None,
    atomic: bool = True,
) -> None:
    """Write *values* (in storage order) as a complete .npy file.

    *shape* defaults to ``(len(values),)``; *element* defaults to the native
    binding for the Python type of the first value.
    """
    values, element, shape = _prepare(values, element, shape)
    with NpyWriter(
        sink, element, shape, fortran_order, version=version, atomic=atomic
    ) as w:
        w.write_all(values)


def to_bytes(
    values,
    element: Any = None,
    shape: Any = None,
    fortran_order: bool = False,
    *,
    version: tuple[int, int] | None = None,
) -> bytes:
    """Encode *values* as an in-memory .npy image."""
    buf = io.BytesIO()
    save(buf, values, element, shape, fortran_order, version=version)
    return buf.getvalue()


def save_array(
    sink: Any,
    array: Any,
    *,
    version: tuple[int, int] | None = None,
    atomic: bool = True,
) -> None:
    """Write a numpy array, keeping Fortran order for Fortran-contiguous input."""
    arr = np.asanyarray(array)
    if arr.dtype.hasobject:
        raise TypeMismatch("arrays of Python objects cannot be stored")
    descr = TypeDescriptor.from_numpy(arr.dtype)
    fortran_order = bool(arr.flags.f_contiguous and not arr.flags.c_contiguous)
    order = "F" if fortran_order else "C"
    flat = arr.ravel(order=order)
    with NpyWriter(
        sink, descr, arr.shape, fortran_order, version=version, atomic=atomic
    ) as w:
        if arr.dtype.itemsize == 0:
            w.write_raw(b"", flat.size)
            return
        step = max(1, WRITE_BUFFER_SIZE // arr.dtype.itemsize)
        for start in range(0, flat.size, step):
            chunk = flat[start : start + step]
            w.write_raw(chunk.tobytes(), chunk.size)
