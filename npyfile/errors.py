"""Exceptions raised while parsing, reading, and writing .npy files."""


class NpyError(ValueError):
    """Base exception for NPY format / parse errors."""


class BadMagic(NpyError):
    """The source does not start with the NPY magic string."""


class UnsupportedVersion(NpyError):
    """The preamble names a format version this library cannot handle."""


class MalformedDescriptor(NpyError):
    """A dtype description could not be parsed or violates layout rules."""


class MalformedHeaderDict(NpyError):
    """The header dictionary literal is unparseable or has bad values."""


class MissingField(MalformedHeaderDict):
    """A required header key (descr, fortran_order, shape) is absent."""


class TypeMismatch(NpyError):
    """The caller's element binding disagrees with the file descriptor."""


class TruncatedData(NpyError):
    """The source holds fewer payload bytes than the header implies."""


class IndexOutOfRange(NpyError, IndexError):
    """Element index outside ``[0, len(view))``."""


class ElementCountMismatch(NpyError):
    """A writer received more or fewer elements than its shape promises."""
