"""npyfile – streaming reader/writer for the NPY array format."""

__version__ = "0.1.0"

from .format import (
    ARRAY_ALIGN, MAGIC_PREFIX, MAX_HEADER_SIZE, SUPPORTED_VERSIONS,
)
from .errors import (
    BadMagic, ElementCountMismatch, IndexOutOfRange, MalformedDescriptor,
    MalformedHeaderDict, MissingField, NpyError, TruncatedData, TypeMismatch,
    UnsupportedVersion,
)
from .descr import Compound, Endianness, Field, Kind, Scalar, TypeDescriptor
from .header import Header, read_header, read_preamble
from .element import (
    BOOL, COMPLEX64, COMPLEX128, FLOAT16, FLOAT32, FLOAT64,
    INT8, INT16, INT32, INT64, UINT8, UINT16, UINT32, UINT64,
    DescriptorElement, ElementType, Record, as_element,
)
from .source import (
    BufferSource, ByteSource, FileObjectSource, FileSource, MMapSource,
)
from .reader import DataView, from_bytes, load, open_npy
from .writer import (
    NpyWriter, begin, close, save, save_array, to_bytes, write_element,
)

__all__ = [
    "__version__",
    "ARRAY_ALIGN", "MAGIC_PREFIX", "MAX_HEADER_SIZE", "SUPPORTED_VERSIONS",
    "NpyError", "BadMagic", "UnsupportedVersion", "MalformedDescriptor",
    "MalformedHeaderDict", "MissingField", "TypeMismatch", "TruncatedData",
    "IndexOutOfRange", "ElementCountMismatch",
    "TypeDescriptor", "Scalar", "Compound", "Field", "Kind", "Endianness",
    "Header", "read_preamble", "read_header",
    "ElementType", "DescriptorElement", "Record", "as_element",
    "BOOL", "INT8", "INT16", "INT32", "INT64",
    "UINT8", "UINT16", "UINT32", "UINT64",
    "FLOAT16", "FLOAT32", "FLOAT64", "COMPLEX64", "COMPLEX128",
    "ByteSource", "BufferSource", "FileSource", "MMapSource", "FileObjectSource",
    "DataView", "open_npy", "from_bytes", "load",
    "NpyWriter", "begin", "write_element", "close",
    "save", "to_bytes", "save_array",
]
