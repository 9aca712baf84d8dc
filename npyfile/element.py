"""Element bindings: how a caller-side type maps onto a descriptor.

Anything that provides the three ``npy_*`` methods of :class:`ElementType`
can be read from or written to a .npy file.  The binding's descriptor is
checked against the file's once, when a view or writer is built.

Three bindings ship with the package:

* :class:`DescriptorElement` decodes to plain Python values (``int``,
  ``float``, ``bytes``, ``dict`` for records, ...).
* :class:`Record` is a base class for user record types; the subclass sets
  ``npy_descr`` and is constructed with one keyword argument per field.
* Native-order scalar constants (:data:`FLOAT64`, :data:`INT32`, ...).

Usage::

    @dataclasses.dataclass
    class Point(Record):
        npy_descr = "[('x', '<f4'), ('', '|V4'), ('y', '<i8')]"
        x: float
        y: int
"""

from __future__ import annotations

from typing import Any, ClassVar, Protocol, runtime_checkable

from .codec import ElementCodec, codec_for
from .descr import Compound, Kind, Scalar, TypeDescriptor, as_descriptor
from .errors import TypeMismatch


@runtime_checkable
class ElementType(Protocol):
    """Capability a caller type supplies to be stored as one array element."""

    def npy_descriptor(self) -> TypeDescriptor: ...

    def npy_encode(self, value: Any) -> bytes: ...

    def npy_decode(self, data) -> Any: ...


# ── Generic binding ─────────────────────────────────────────────────────────


class DescriptorElement:
    """Bind plain Python values to a descriptor through its codec."""

    def __init__(self, descriptor: Any) -> None:
        self.descriptor = as_descriptor(descriptor)
        self.codec: ElementCodec = codec_for(self.descriptor)

    def npy_descriptor(self) -> TypeDescriptor:
        return self.descriptor

    def npy_encode(self, value: Any) -> bytes:
        return self.codec.encode(value)

    def npy_decode(self, data) -> Any:
        return self.codec.decode(data)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, DescriptorElement)
            and self.descriptor == other.descriptor
        )

    def __hash__(self) -> int:
        return hash(self.descriptor)

    def __repr__(self) -> str:
        return f"DescriptorElement({self.descriptor.format()!r})"


# ── Record base class ───────────────────────────────────────────────────────


class Record:
    """Base class for record types bound to a compound descriptor.

    Subclasses set ``npy_descr`` (anything :func:`as_descriptor` accepts) and
    must accept one keyword argument per field name; dataclasses and
    ``__init__``-with-fields classes both work.  Values are encoded from
    attributes of the same names.
    """

    npy_descr: ClassVar[Any]

    @classmethod
    def _npy_codec(cls) -> ElementCodec:
        # Cached per class, not inherited: each subclass has its own layout.
        codec = cls.__dict__.get("_npy_codec_cache")
        if codec is None:
            descr = as_descriptor(cls.npy_descr)
            if not isinstance(descr, Compound):
                raise TypeMismatch(
                    f"{cls.__name__}.npy_descr must describe a record, "
                    f"got {descr.format()!r}"
                )
            codec = codec_for(descr)
            setattr(cls, "_npy_codec_cache", codec)
        return codec

    @classmethod
    def npy_descriptor(cls) -> TypeDescriptor:
        return cls._npy_codec().descr

    @classmethod
    def npy_decode(cls, data) -> Record:
        return cls(**cls._npy_codec().decode(data))

    @classmethod
    def npy_encode(cls, value: Any) -> bytes:
        codec = cls._npy_codec()
        return codec.encode({name: getattr(value, name) for name in codec.descr.names})


# ── Coercion ────────────────────────────────────────────────────────────────

_PYTHON_TYPES = {
    bool: (Kind.BOOL, 1),
    int: (Kind.INT, 8),
    float: (Kind.FLOAT, 8),
    complex: (Kind.COMPLEX, 16),
}


def as_element(obj: Any) -> ElementType:
    """Turn *obj* into an element binding.

    Accepts an existing binding (instance or class), a descriptor, dtype text
    or literal, a numpy dtype, or one of ``bool``, ``int``, ``float``,
    ``complex`` (native-order ``b1``, ``i8``, ``f8``, ``c16``).
    """
    if isinstance(obj, type) and obj in _PYTHON_TYPES:
        kind, width = _PYTHON_TYPES[obj]
        return DescriptorElement(Scalar.native(kind, width))
    if isinstance(obj, (TypeDescriptor, str, list, dict)):
        return DescriptorElement(obj)
    if (
        callable(getattr(obj, "npy_descriptor", None))
        and callable(getattr(obj, "npy_encode", None))
        and callable(getattr(obj, "npy_decode", None))
    ):
        return obj
    try:
        return DescriptorElement(obj)
    except TypeError as exc:
        raise TypeMismatch(f"cannot use {obj!r} as an element type") from exc


def check_binding(element: ElementType, descriptor: TypeDescriptor) -> None:
    """Raise :class:`TypeMismatch` unless *element* matches *descriptor*."""
    claimed = element.npy_descriptor()
    if not claimed.matches(descriptor):
        raise TypeMismatch(
            f"element type {claimed.format()!r} does not match "
            f"file descriptor {descriptor.format()!r}"
        )


# ── Native scalar bindings ──────────────────────────────────────────────────

BOOL = DescriptorElement(Scalar.native(Kind.BOOL, 1))
INT8 = DescriptorElement(Scalar.native(Kind.INT, 1))
INT16 = DescriptorElement(Scalar.native(Kind.INT, 2))
INT32 = DescriptorElement(Scalar.native(Kind.INT, 4))
INT64 = DescriptorElement(Scalar.native(Kind.INT, 8))
UINT8 = DescriptorElement(Scalar.native(Kind.UINT, 1))
UINT16 = DescriptorElement(Scalar.native(Kind.UINT, 2))
UINT32 = DescriptorElement(Scalar.native(Kind.UINT, 4))
UINT64 = DescriptorElement(Scalar.native(Kind.UINT, 8))
FLOAT16 = DescriptorElement(Scalar.native(Kind.FLOAT, 2))
FLOAT32 = DescriptorElement(Scalar.native(Kind.FLOAT, 4))
FLOAT64 = DescriptorElement(Scalar.native(Kind.FLOAT, 8))
COMPLEX64 = DescriptorElement(Scalar.native(Kind.COMPLEX, 8))
COMPLEX128 = DescriptorElement(Scalar.native(Kind.COMPLEX, 16))
