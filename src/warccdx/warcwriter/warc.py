"""WARC header vocabulary and the framer that writes WARC record headers.

WARC Format Specification References:
- WARC 1.1 Annotated (primary): https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/
- WARC 1.0: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.0/
"""

import datetime
import uuid

from warccdx.warcwriter.errors import WarcFramingError
from warccdx.warcwriter.record import RecordFramer


# WARC Named Fields - See WARC 1.1 Section 5 "Named fields"
# https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#named-fields
# Declaration order is write order: mandatory fields, then extensions.
@RecordFramer.HEADERS(
    TYPE=b"WARC-Type",  # Section 5.4
    DATE=b"WARC-Date",  # Section 5.3
    ID=b"WARC-Record-ID",  # Section 5.2
    CONTENT_LENGTH=b"Content-Length",  # Section 5.5
    CONTENT_TYPE=b"Content-Type",  # Section 5.6
    IP_ADDRESS=b"WARC-IP-Address",  # Section 5.11
    WARCINFO_ID=b"WARC-Warcinfo-ID",  # Section 5.14
    URL=b"WARC-Target-URI",  # Section 5.13
    CONCURRENT_TO=b"WARC-Concurrent-To",  # Section 5.7
    REFERS_TO=b"WARC-Refers-To",  # Section 5.8
    PAYLOAD_DIGEST=b"WARC-Payload-Digest",  # Section 5.10
    BLOCK_DIGEST=b"WARC-Block-Digest",  # Section 5.9
    TRUNCATED=b"WARC-Truncated",  # Section 5.12
    IDENTIFIED_PAYLOAD_TYPE=b"WARC-Identified-Payload-Type",  # Section 5.17
    PROFILE=b"WARC-Profile",  # Section 5.15
    FILENAME=b"WARC-Filename",  # Section 5.16
)
class WarcFramer(RecordFramer):
    # pylint: disable-msg=E1101

    VERSION = b"WARC/1.0"

    # WARC Record Types - See WARC 1.1 Section 6 "WARC Record Types"
    WARCINFO = "warcinfo"
    RESPONSE = "response"
    REQUEST = "request"
    METADATA = "metadata"
    REVISIT = "revisit"
    CONVERSION = "conversion"

    # Revisit Profiles - See WARC 1.0 Section 6.7 "revisit" record
    PROFILE_IDENTICAL_PAYLOAD_DIGEST = (
        "http://netpreserve.org/warc/1.0/revisit/identical-payload-digest"
    )
    PROFILE_SERVER_NOT_MODIFIED = "http://netpreserve.org/warc/1.0/revisit/server-not-modified"

    # WARC-Truncated reasons - See WARC 1.1 Section 5.12
    TRUNCATED_REASONS = ("length", "time", "disconnect", "unspecified")

    TRAILER = b"\r\n\r\n"

    def frame_record(self, record_type, date, record_id, content_length, content_type, extra=()):
        """Render the header block of one WARC record.

        Args:
            record_type: One of the record type names (e.g. WarcFramer.RESPONSE)
            date: datetime of the record, written as WARC-Date
            record_id: Record id, written as <urn:uuid:...>
            content_length: Exact length of the block that follows
            content_type: MIME type of the block
            extra: Iterable of (name, value) pairs for extension fields

        Returns:
            bytes: version line, named fields and the terminating blank line

        Raises:
            WarcFramingError: a value cannot be encoded, a field is unknown,
                repeated or mandatory and missing

        See:
            WARC 1.1 Section 4: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#file-and-record-model
        """
        fields = [
            (self.TYPE, record_type),
            (self.DATE, warc_datetime_str(date)),
            (self.ID, angle_id(record_id)),
            (self.CONTENT_LENGTH, content_length),
            (self.CONTENT_TYPE, content_type),
        ]
        fields.extend(extra)
        return self.frame(fields)


WarcFramer.MANDATORY = (
    WarcFramer.TYPE,  # pylint: disable-msg=E1101
    WarcFramer.DATE,  # pylint: disable-msg=E1101
    WarcFramer.ID,  # pylint: disable-msg=E1101
    WarcFramer.CONTENT_LENGTH,  # pylint: disable-msg=E1101
    WarcFramer.CONTENT_TYPE,  # pylint: disable-msg=E1101
)


def utc(d):
    """Return ``d`` as an aware UTC datetime; naive values are taken as UTC."""
    if d.tzinfo is None:
        return d.replace(tzinfo=datetime.timezone.utc)
    return d.astimezone(datetime.timezone.utc)


def warc_datetime_str(d):
    """Format datetime as WARC-Date string, UTC with second precision.

    WARC-Date format follows W3CDTF (W3C profile of ISO8601).
    See WARC 1.1 Section 5.3: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#warc-date
    """
    return utc(d).strftime("%Y-%m-%dT%H:%M:%SZ")


def random_warc_uuid():
    """Generate a random record id of the form ``urn:uuid:<uuid4>``.

    The id is globally unique for its period of intended use and carries
    no ordering.

    See:
        WARC 1.1 Section 5.2: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#warc-record-id
    """
    return f"urn:uuid:{uuid.uuid4()}"


def bare_id(record_id):
    """Strip the angle brackets a record id may be written with."""
    if record_id.startswith("<") and record_id.endswith(">"):
        return record_id[1:-1]
    return record_id


def angle_id(record_id):
    """Render a record id as a header value: ``<urn:uuid:...>``."""
    if record_id is None:
        return None
    return f"<{bare_id(record_id)}>"


def warc_fields(fields, nl="\r\n"):
    """Render (name, value) pairs as an application/warc-fields block.

    Pairs whose value is None are skipped.
    """
    lines = []
    for name, value in fields:
        if value is None:
            continue
        if "\r" in str(value) or "\n" in str(value):
            raise WarcFramingError(f"line break in warc-fields value of {name!r}")
        lines.append(f"{name}: {value}{nl}")
    try:
        return "".join(lines).encode("utf-8")
    except UnicodeEncodeError as e:
        raise WarcFramingError(f"cannot encode warc-fields block: {e}") from e
