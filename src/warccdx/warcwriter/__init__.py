"""Write gzipped WARC files, one gzip member per record, and their CDX index.

WARC Format Specification References:
- WARC 1.1 Annotated (primary): https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/
"""

from . import cdx, record, stream, surt, warc, writer
from .cdx import WarcCdxWriter, clean_digest, clean_mime_type
from .errors import BrokenArchiveError, WarcFramingError, WarcinfoError, WarcWriterError
from .surt import make_surt
from .warc import WarcFramer
from .writer import WarcWriter

__all__ = [
    "WarcWriter",
    "WarcCdxWriter",
    "WarcFramer",
    "WarcWriterError",
    "WarcFramingError",
    "WarcinfoError",
    "BrokenArchiveError",
    "make_surt",
    "clean_mime_type",
    "clean_digest",
    "cdx",
    "record",
    "stream",
    "surt",
    "warc",
    "writer",
]
