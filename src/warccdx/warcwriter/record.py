"""Base class for rendering archive record headers.

A record header is a version line, a sequence of ``Name: value`` lines
and a blank line. The order of the named fields is fixed per format and
is declared with :func:`add_headers`.

WARC Format Specification References:
- WARC 1.1 Annotated (primary): https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/
- File and record model: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#file-and-record-model
"""

import re

from warccdx.warcwriter.errors import WarcFramingError

# CR and LF end a header line; a value containing either would forge fields
bad_value = re.compile(rb"[\r\n]")


def add_headers(**kwargs):
    """Decorator helper for defining header name constants in record formats.

    This decorator sets class attributes for header names and records the
    header names, in declaration order, in the _FIELDS attribute. That order
    is the order in which the fields are written.

    Args:
        **kwargs: Header name to constant value mappings (e.g., TYPE=b"WARC-Type")

    Returns:
        Decorator function that adds header constants to a class

    Example:
        @add_headers(
            TYPE=b"WARC-Type",
            DATE=b"WARC-Date",
        )
        class WarcFramer(RecordFramer):
            pass
    """

    def _add_headers(cls):
        for k, v in kwargs.items():
            setattr(cls, k, v)
        cls._HEADERS = list(kwargs.keys())
        cls._FIELDS = list(kwargs.values())
        return cls

    return _add_headers


class RecordFramer:
    """Renders the header block of one record. Owns no I/O.

    Subclasses set VERSION and declare their fields with HEADERS; fields
    not declared there are rejected.
    """

    VERSION = b""
    NEWLINE = b"\x0d\x0a"
    MANDATORY = ()

    _FIELDS = []

    HEADERS = staticmethod(add_headers)

    def frame(self, fields):
        """Render the header block for ``fields``.

        ``fields`` is an iterable of (name, value) pairs. Names are bytes
        constants of this framer; values are str, bytes or int, and pairs
        with a None value are left out. The pairs may come in any order,
        the output always follows the declared field order.
        """
        values = {}
        for name, value in fields:
            if name not in self._FIELDS:
                raise WarcFramingError(f"unknown header field {name!r}")
            if name in values:
                raise WarcFramingError(f"duplicate header field {name!r}")
            values[name] = value

        for name in self.MANDATORY:
            if values.get(name) is None:
                raise WarcFramingError(f"missing mandatory field {name!r}")

        out = [self.VERSION, self.NEWLINE]
        for name in self._FIELDS:
            value = values.get(name)
            if value is None:
                continue
            out.append(name)
            out.append(b": ")
            out.append(self.encode_value(name, value))
            out.append(self.NEWLINE)
        out.append(self.NEWLINE)  # end of header blank nl
        return b"".join(out)

    @staticmethod
    def encode_value(name, value):
        if isinstance(value, int):
            value = str(value)
        if isinstance(value, str):
            try:
                value = value.encode("utf-8")
            except UnicodeEncodeError as e:
                raise WarcFramingError(f"cannot encode value of {name!r}: {e}") from e
        if bad_value.search(value):
            raise WarcFramingError(f"line break in value of {name!r}: {value!r}")
        return value
