"""Exceptions raised while writing WARC records and their index."""


class WarcWriterError(Exception):
    """Base class for errors raised by the WARC writers."""


class WarcFramingError(WarcWriterError, ValueError):
    """A record header could not be rendered.

    Raised before any byte of the record reaches the output, so the
    archive is left exactly as it was.
    """


class WarcinfoError(WarcWriterError):
    """The warcinfo linkage of a file was violated.

    Every content record must refer to the warcinfo record written first
    in the same file, and a file holds exactly one warcinfo record.
    """


class BrokenArchiveError(WarcWriterError):
    """A previous write failed; the archive must not be written to again."""
