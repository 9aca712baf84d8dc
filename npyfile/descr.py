"""Type descriptors for the numpy dtype mini-language.

A descriptor is either a :class:`Scalar` (``'<f8'``, ``'|b1'``, ``'>U5'``,
``'<M8[ns]'``) or a :class:`Compound` record made of named, offset-positioned
:class:`Field` entries.  Descriptors are immutable and hashable, and
``TypeDescriptor.parse(d.format()) == d`` holds for every descriptor that can
be constructed.

Compound types are written the way ``numpy.dtype.descr`` writes them: a list
of ``(name, format)`` or ``(name, format, shape)`` tuples, with padding
expressed as unnamed ``('', '|Vn')`` entries.  Layouts that list form cannot
express (overlapping fields) use numpy's dict form with explicit offsets.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from .errors import MalformedDescriptor, MalformedHeaderDict
from .format import align
from .literal import parse_literal


# ── Kinds & byte order ──────────────────────────────────────────────────────


class Kind(Enum):
    BOOL = "b"
    INT = "i"
    UINT = "u"
    FLOAT = "f"
    COMPLEX = "c"
    TIMEDELTA = "m"
    DATETIME = "M"
    BYTES = "S"
    UNICODE = "U"
    VOID = "V"


class Endianness(Enum):
    LITTLE = "<"
    BIG = ">"
    NOT_APPLICABLE = "|"


NATIVE = Endianness.LITTLE if sys.byteorder == "little" else Endianness.BIG

# ``None`` means any non-negative width is valid.
VALID_WIDTHS: dict[Kind, tuple[int, ...] | None] = {
    Kind.BOOL: (1,),
    Kind.INT: (1, 2, 4, 8),
    Kind.UINT: (1, 2, 4, 8),
    Kind.FLOAT: (2, 4, 8, 16),
    Kind.COMPLEX: (8, 16, 32),
    Kind.TIMEDELTA: (8,),
    Kind.DATETIME: (8,),
    Kind.BYTES: None,
    Kind.UNICODE: None,
    Kind.VOID: None,
}

_NUMERIC = frozenset({
    Kind.BOOL, Kind.INT, Kind.UINT, Kind.FLOAT, Kind.COMPLEX,
    Kind.TIMEDELTA, Kind.DATETIME,
})
_TIME_KINDS = frozenset({Kind.TIMEDELTA, Kind.DATETIME})

TIME_UNITS = (
    "Y", "M", "W", "D", "h", "m", "s", "ms", "us", "ns", "ps", "fs", "as",
)

_TYPESTR_RE = re.compile(
    r"(?P<order>[<>|=])(?P<kind>[a-zA-Z])(?P<width>\d+)"
    r"(?:\[(?P<units>[^\[\]]*)\])?"
)
_UNITS_RE = re.compile(r"(?P<mult>[1-9]\d*)?(?P<unit>[A-Za-z]+)")


# ── Base class ──────────────────────────────────────────────────────────────


class TypeDescriptor:
    """Common interface of :class:`Scalar` and :class:`Compound`."""

    is_compound = False

    @staticmethod
    def parse(spec: Any) -> TypeDescriptor:
        """Build a descriptor from a type string, literal text, or literal.

        Accepts ``'<f8'``-style type strings, the text of a compound literal
        (``"[('x', '<f4'), ('y', '<i8')]"``), or the already-parsed literal
        (list of tuples, or numpy's ``{'names': ..., 'formats': ...}`` dict).
        """
        if isinstance(spec, TypeDescriptor):
            return spec
        if isinstance(spec, str):
            text = spec.strip()
            if text[:1] in ("[", "{"):
                try:
                    spec = parse_literal(text)
                except MalformedHeaderDict as exc:
                    raise MalformedDescriptor(
                        f"cannot parse descriptor {text!r}: {exc}"
                    ) from exc
            else:
                return _parse_typestr(text)
        return _from_literal(spec)

    @staticmethod
    def from_numpy(dtype: Any) -> TypeDescriptor:
        """Convert a ``numpy.dtype`` (or anything it accepts) to a descriptor."""
        dt = np.dtype(dtype)
        if dt.fields is None:
            if dt.subdtype is not None:
                raise MalformedDescriptor(
                    f"sub-array dtype {dt} is only valid as a record field"
                )
            return _parse_typestr(dt.str)
        fields = []
        for name in dt.names:
            fdt, offset = dt.fields[name][:2]
            shape: tuple[int, ...] = ()
            if fdt.subdtype is not None:
                fdt, shape = fdt.subdtype
            fields.append(
                Field(name, offset, TypeDescriptor.from_numpy(fdt), tuple(shape))
            )
        return Compound(tuple(fields), dt.itemsize)

    def size(self) -> int:
        """Total byte width of one element."""
        return self.itemsize  # type: ignore[attr-defined]

    def format(self) -> str:
        raise NotImplementedError

    def to_literal(self) -> Any:
        raise NotImplementedError

    def matches(self, other: TypeDescriptor) -> bool:
        raise NotImplementedError

    def to_numpy(self) -> np.dtype:
        raise NotImplementedError

    def alignment(self) -> int:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.format()


# ── Scalar ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Scalar(TypeDescriptor):
    """A scalar element type such as ``'<f8'``.

    *width* is the number in the type string: bytes for every kind except
    ``U``, where it counts UCS-4 code points.
    """

    kind: Kind
    width: int
    endianness: Endianness
    units: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.width, int) or self.width < 0:
            raise MalformedDescriptor(f"invalid width {self.width!r}")
        valid = VALID_WIDTHS[self.kind]
        if valid is not None and self.width not in valid:
            raise MalformedDescriptor(
                f"type string {self.format()!r} has invalid size; "
                f"valid sizes are {list(valid)}"
            )
        if (
            self.endianness is Endianness.NOT_APPLICABLE
            and self.byte_order_matters
        ):
            raise MalformedDescriptor(
                f"type string {self.format()!r} needs '<' or '>' endianness"
            )
        if self.units is not None:
            if self.kind not in _TIME_KINDS:
                raise MalformedDescriptor(
                    f"unexpected time units in type string {self.format()!r}"
                )
            m = _UNITS_RE.fullmatch(self.units)
            if m is None or m.group("unit") not in TIME_UNITS:
                raise MalformedDescriptor(
                    f"unknown time units {self.units!r}"
                )

    @classmethod
    def native(cls, kind: Kind, width: int, units: str | None = None) -> Scalar:
        """Scalar in platform byte order, or ``|`` where order is irrelevant."""
        probe = cls(kind, width, NATIVE, units)
        if not probe.byte_order_matters:
            return cls(kind, width, Endianness.NOT_APPLICABLE, units)
        return probe

    @property
    def itemsize(self) -> int:
        if self.kind is Kind.UNICODE:
            return 4 * self.width
        return self.width

    @property
    def byte_order_matters(self) -> bool:
        if self.kind is Kind.UNICODE:
            return True
        return self.kind in _NUMERIC and self.width != 1

    def format(self) -> str:
        text = f"{self.endianness.value}{self.kind.value}{self.width}"
        if self.units is not None:
            text += f"[{self.units}]"
        return text

    def to_literal(self) -> str:
        return self.format()

    def matches(self, other: TypeDescriptor) -> bool:
        if not isinstance(other, Scalar):
            return False
        if (self.kind, self.width, self.units) != (other.kind, other.width, other.units):
            return False
        return (
            self.endianness is other.endianness or not self.byte_order_matters
        )

    def to_numpy(self) -> np.dtype:
        return np.dtype(self.format())

    def alignment(self) -> int:
        if self.kind is Kind.COMPLEX:
            return self.width // 2
        if self.kind is Kind.UNICODE:
            return 4
        if self.kind in _NUMERIC:
            return self.width
        return 1


def _parse_typestr(text: str) -> Scalar:
    m = _TYPESTR_RE.fullmatch(text)
    if m is None:
        raise MalformedDescriptor(f"invalid type string {text!r}")
    try:
        kind = Kind(m.group("kind"))
    except ValueError:
        raise MalformedDescriptor(
            f"unknown type code {m.group('kind')!r} in {text!r}"
        ) from None
    order = m.group("order")
    endianness = NATIVE if order == "=" else Endianness(order)
    return Scalar(kind, int(m.group("width")), endianness, m.group("units"))


# ── Compound ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Field:
    """One named member of a :class:`Compound` at a fixed byte offset."""

    name: str
    offset: int
    descriptor: TypeDescriptor
    shape: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise MalformedDescriptor(f"field name must be a non-empty string, got {self.name!r}")
        if not isinstance(self.offset, int) or self.offset < 0:
            raise MalformedDescriptor(
                f"field {self.name!r} has invalid offset {self.offset!r}"
            )
        if not isinstance(self.descriptor, TypeDescriptor):
            raise MalformedDescriptor(
                f"field {self.name!r} descriptor must be a TypeDescriptor"
            )
        object.__setattr__(self, "shape", _as_shape(self.shape, self.name))

    @property
    def count(self) -> int:
        n = 1
        for d in self.shape:
            n *= d
        return n

    @property
    def size(self) -> int:
        return self.descriptor.size() * self.count

    @property
    def end(self) -> int:
        return self.offset + self.size


def _as_shape(shape: Any, name: str) -> tuple[int, ...]:
    if isinstance(shape, int) and not isinstance(shape, bool):
        shape = (shape,)
    if not isinstance(shape, (tuple, list)):
        raise MalformedDescriptor(f"field {name!r} has invalid shape {shape!r}")
    for d in shape:
        if isinstance(d, bool) or not isinstance(d, int) or d < 0:
            raise MalformedDescriptor(f"field {name!r} has invalid shape {shape!r}")
    return tuple(shape)


@dataclass(frozen=True)
class Compound(TypeDescriptor):
    """A record type: ordered named fields at byte offsets.

    Offsets must be non-decreasing and every field must end within
    *itemsize*.  When *itemsize* is omitted it is the end of the last field.
    """

    fields: tuple[Field, ...]
    itemsize: int | None = None

    is_compound = True

    def __post_init__(self) -> None:
        fields = tuple(self.fields)
        object.__setattr__(self, "fields", fields)
        seen: set[str] = set()
        prev_offset = 0
        extent = 0
        for f in fields:
            if not isinstance(f, Field):
                raise MalformedDescriptor(f"expected Field, got {f!r}")
            if f.name in seen:
                raise MalformedDescriptor(f"duplicate field name {f.name!r}")
            seen.add(f.name)
            if f.offset < prev_offset:
                raise MalformedDescriptor(
                    f"field {f.name!r} offset {f.offset} precedes "
                    f"previous offset {prev_offset}"
                )
            prev_offset = f.offset
            extent = max(extent, f.end)
        if self.itemsize is None:
            object.__setattr__(self, "itemsize", extent)
        elif isinstance(self.itemsize, bool) or not isinstance(self.itemsize, int):
            raise MalformedDescriptor(f"invalid itemsize {self.itemsize!r}")
        elif self.itemsize < extent:
            raise MalformedDescriptor(
                f"fields extend to byte {extent} but itemsize is {self.itemsize}"
            )

    # ── Builders ─────────────────────────────────────────────────────────

    @classmethod
    def packed(cls, members) -> Compound:
        """Lay out ``(name, descr[, shape])`` members back to back."""
        return cls._layout(members, aligned=False)

    @classmethod
    def aligned(cls, members) -> Compound:
        """Lay out members with C-struct alignment (numpy ``align=True``)."""
        return cls._layout(members, aligned=True)

    @classmethod
    def _layout(cls, members, aligned: bool) -> Compound:
        fields: list[Field] = []
        offset = 0
        max_align = 1
        for member in members:
            name, spec, *rest = member
            descr = TypeDescriptor.parse(spec)
            shape = rest[0] if rest else ()
            if aligned:
                a = descr.alignment()
                max_align = max(max_align, a)
                offset = align(offset, a)
            field = Field(name, offset, descr, shape)
            fields.append(field)
            offset = field.end
        if aligned:
            offset = align(offset, max_align)
        return cls(tuple(fields), offset)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def field(self, name: str) -> Field:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def _is_sequential(self) -> bool:
        end = 0
        for f in self.fields:
            if f.offset < end:
                return False
            end = f.end
        return True

    # ── Formatting ───────────────────────────────────────────────────────

    def to_literal(self) -> list | dict:
        if not self._is_sequential():
            formats: list[Any] = []
            for f in self.fields:
                lit = f.descriptor.to_literal()
                formats.append((lit, f.shape) if f.shape else lit)
            return {
                "names": list(self.names),
                "formats": formats,
                "offsets": [f.offset for f in self.fields],
                "itemsize": self.itemsize,
            }
        out: list[tuple] = []
        pos = 0
        for f in self.fields:
            if f.offset > pos:
                out.append(("", f"|V{f.offset - pos}"))
            lit = f.descriptor.to_literal()
            out.append((f.name, lit, f.shape) if f.shape else (f.name, lit))
            pos = f.end
        if self.itemsize > pos:
            out.append(("", f"|V{self.itemsize - pos}"))
        return out

    def format(self) -> str:
        return repr(self.to_literal())

    def matches(self, other: TypeDescriptor) -> bool:
        if not isinstance(other, Compound):
            return False
        if self.itemsize != other.itemsize or len(self.fields) != len(other.fields):
            return False
        return all(
            a.name == b.name
            and a.offset == b.offset
            and a.shape == b.shape
            and a.descriptor.matches(b.descriptor)
            for a, b in zip(self.fields, other.fields)
        )

    def to_numpy(self) -> np.dtype:
        # Dict form keeps padding implicit; list form would turn unnamed
        # padding entries into fields called 'f0', 'f1', ...
        formats = []
        for f in self.fields:
            dt = f.descriptor.to_numpy()
            formats.append((dt, f.shape) if f.shape else dt)
        return np.dtype({
            "names": list(self.names),
            "formats": formats,
            "offsets": [f.offset for f in self.fields],
            "itemsize": self.itemsize,
        })

    def alignment(self) -> int:
        return max((f.descriptor.alignment() for f in self.fields), default=1)


# ── Literal → descriptor ────────────────────────────────────────────────────


def _from_literal(lit: Any) -> TypeDescriptor:
    if isinstance(lit, str):
        return TypeDescriptor.parse(lit)
    if isinstance(lit, list):
        return _from_list(lit)
    if isinstance(lit, dict):
        return _from_dict(lit)
    raise MalformedDescriptor(f"unsupported descriptor literal {lit!r}")


def _from_list(entries: list) -> Compound:
    fields: list[Field] = []
    offset = 0
    for entry in entries:
        if not isinstance(entry, (tuple, list)) or len(entry) not in (2, 3):
            raise MalformedDescriptor(
                f"record entry must be (name, format[, shape]), got {entry!r}"
            )
        name = entry[0]
        if isinstance(name, tuple) and len(name) == 2:
            # (title, name) pairs; titles are not kept
            name = name[1]
        if not isinstance(name, str):
            raise MalformedDescriptor(f"field name must be a string, got {name!r}")
        descr = _from_literal(entry[1])
        shape = _as_shape(entry[2], name) if len(entry) == 3 else ()
        if name == "":
            if (
                isinstance(descr, Scalar)
                and descr.kind is Kind.VOID
                and not shape
            ):
                offset += descr.itemsize
                continue
            raise MalformedDescriptor(f"unnamed field {entry!r} is not padding")
        field = Field(name, offset, descr, shape)
        fields.append(field)
        offset = field.end
    return Compound(tuple(fields), offset)


def _from_dict(spec: dict) -> Compound:
    try:
        names = spec["names"]
        formats = spec["formats"]
    except KeyError as exc:
        raise MalformedDescriptor(
            f"dict descriptor is missing {exc.args[0]!r}"
        ) from None
    if not isinstance(names, (list, tuple)) or not isinstance(formats, (list, tuple)):
        raise MalformedDescriptor("'names' and 'formats' must be sequences")
    if len(names) != len(formats):
        raise MalformedDescriptor(
            f"{len(names)} names but {len(formats)} formats"
        )
    offsets = spec.get("offsets")
    if offsets is not None and (
        not isinstance(offsets, (list, tuple)) or len(offsets) != len(names)
    ):
        raise MalformedDescriptor("'offsets' must match 'names' in length")
    fields: list[Field] = []
    pos = 0
    for i, (name, fmt) in enumerate(zip(names, formats)):
        shape: Any = ()
        if isinstance(fmt, tuple) and len(fmt) == 2:
            fmt, shape = fmt
        descr = _from_literal(fmt)
        offset = offsets[i] if offsets is not None else pos
        field = Field(name, offset, descr, _as_shape(shape, str(name)))
        fields.append(field)
        pos = field.end
    return Compound(tuple(fields), spec.get("itemsize"))


def as_descriptor(spec: Any) -> TypeDescriptor:
    """Coerce a descriptor, dtype text/literal, or numpy dtype to a descriptor."""
    if isinstance(spec, (TypeDescriptor, str, list, dict)):
        return TypeDescriptor.parse(spec)
    return TypeDescriptor.from_numpy(spec)
