"""Write WARC records, each in its own gzip member, to a single output.

WARC Format Specification References:
- WARC 1.1 Annotated (primary): https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/
- WARC Record Types: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#warc-record-types
"""

import datetime
import logging
import threading
from collections.abc import Mapping

from warccdx.warcwriter.errors import BrokenArchiveError, WarcinfoError
from warccdx.warcwriter.stream import CountingStream, copy_stream, gzip_member, record_block
from warccdx.warcwriter.warc import (
    WarcFramer,
    angle_id,
    bare_id,
    random_warc_uuid,
    warc_fields,
)

WARC_FORMAT = "WARC File Format 1.0"
WARC_CONFORMS_TO = "http://bibnum.bnf.fr/WARC/WARC_ISO_28500_version1_latestdraft.pdf"

HTTP_REQUEST_TYPE = "application/http; msgtype=request"
HTTP_RESPONSE_TYPE = "application/http; msgtype=response"
WARC_FIELDS_TYPE = "application/warc-fields"

PROFILES = {
    "identical-payload-digest": WarcFramer.PROFILE_IDENTICAL_PAYLOAD_DIGEST,
    "server-not-modified": WarcFramer.PROFILE_SERVER_NOT_MODIFIED,
}


class WarcWriter:
    """Writes WARC records to ``out``, one independent gzip member each.

    The first record must be the warcinfo record (write_warcinfo); every
    other record refers to it. Each write method returns the id of the new
    record as ``urn:uuid:...``.

    Writes are serialized on ``lock``, held for the whole of one record, so
    a writer may be shared between threads. After an I/O failure the file is
    suspect: the failing call raises the original error and every later
    call raises BrokenArchiveError.
    """

    # pylint: disable-msg=E1101

    PROFILE_IDENTICAL_PAYLOAD_DIGEST = WarcFramer.PROFILE_IDENTICAL_PAYLOAD_DIGEST
    PROFILE_SERVER_NOT_MODIFIED = WarcFramer.PROFILE_SERVER_NOT_MODIFIED

    def __init__(self, out, compresslevel=9):
        self.out = CountingStream(out)
        self.compresslevel = compresslevel
        self.framer = WarcFramer()
        self.lock = threading.RLock()
        self.warcinfo_id = None
        self.broken = False
        self._owned = []

    @classmethod
    def open(cls, filename, **kwargs):
        """Create a writer on a new file; close() closes the file."""
        fh = open(filename, "wb")
        writer = cls(fh, **kwargs)
        writer._owned.append(fh)
        return writer

    @property
    def offset(self):
        """Offset in the output at which the next record starts."""
        return self.out.byte_count

    def write_warcinfo(
        self,
        filename,
        hostname=None,
        publisher=None,
        operator=None,
        software=None,
        is_part_of=None,
        description=None,
        robots="classic",
        date=None,
    ):
        """Write the warcinfo record describing this file.

        Must be the first record of the file, and is written once per file.
        The block is an application/warc-fields block; ``format`` and
        ``conformsTo`` are always present.

        Args:
            filename: Name of the WARC file, written as WARC-Filename
            hostname: Host the crawler ran on
            publisher: Publisher of the crawl
            operator: Operator of the crawl
            software: Crawler software and version
            is_part_of: Name of the crawl this file is part of
            description: Free text description of the crawl
            robots: Robots policy followed by the crawler
            date: Record date, defaults to now

        Returns:
            str: Record id of the warcinfo record

        Raises:
            WarcinfoError: a warcinfo record was already written, or other
                records precede this one

        See:
            WARC 1.1 Section 6.2: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#warcinfo
        """
        with self.lock:
            if self.warcinfo_id is not None:
                raise WarcinfoError(f"warcinfo record already written: {self.warcinfo_id}")
            if self.offset != 0:
                raise WarcinfoError("warcinfo record must be the first record of the file")

            content = warc_fields(
                [
                    ("robots", robots),
                    ("hostname", hostname),
                    ("software", software),
                    ("isPartOf", is_part_of),
                    ("operator", operator),
                    ("description", description),
                    ("publisher", publisher),
                    ("format", WARC_FORMAT),
                    ("conformsTo", WARC_CONFORMS_TO),
                ]
            )
            if date is None:
                date = datetime.datetime.now(datetime.timezone.utc)

            record_id = self._write_record(
                WarcFramer.WARCINFO,
                date,
                WARC_FIELDS_TYPE,
                [(WarcFramer.FILENAME, filename)],
                content,
            )
            self.warcinfo_id = record_id
            return record_id

    def write_request(self, target_uri, ip, date, warcinfo_id, content):
        """Write a 'request' record holding the HTTP request as sent.

        See WARC 1.1 Section 6.5: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#request
        """
        with self.lock:
            extra = [
                (WarcFramer.WARCINFO_ID, angle_id(self._check_warcinfo(warcinfo_id))),
                (WarcFramer.IP_ADDRESS, ip),
                (WarcFramer.URL, target_uri),
            ]
            return self._write_record(WarcFramer.REQUEST, date, HTTP_REQUEST_TYPE, extra, content)

    def write_response(
        self,
        target_uri,
        ip,
        date,
        warcinfo_id,
        related_id,
        payload_digest=None,
        block_digest=None,
        truncated=None,
        content=None,
        meta=None,
        content_length=None,
        identified_payload_type=None,
    ):
        """Write a 'response' record holding the HTTP response as received.

        Args:
            target_uri: URL the response was fetched from
            ip: IP address of the server
            date: Fetch time
            warcinfo_id: Id of this file's warcinfo record
            related_id: Id of the request record, written as WARC-Concurrent-To
            payload_digest: ``<algorithm>:<digest>`` of the HTTP entity body
            block_digest: ``<algorithm>:<digest>`` of the whole block
            truncated: Reason the capture was cut short, one of
                WarcFramer.TRUNCATED_REASONS
            content: HTTP response bytes, or a binary stream
            meta: Fetch metadata (Content-Type, HTTP-Status-Code); not written
                to the record, used by indexing writers
            content_length: Upper bound on bytes read from a stream
            identified_payload_type: MIME type identified by content sniffing

        Returns:
            str: Record id of the response record

        See:
            WARC 1.1 Section 6.3: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#response
        """
        if truncated is not None and truncated not in WarcFramer.TRUNCATED_REASONS:
            raise ValueError(f"unknown truncation reason {truncated!r}")

        with self.lock:
            extra = [
                (WarcFramer.WARCINFO_ID, angle_id(self._check_warcinfo(warcinfo_id))),
                (WarcFramer.CONCURRENT_TO, angle_id(related_id)),
                (WarcFramer.IP_ADDRESS, ip),
                (WarcFramer.URL, target_uri),
                (WarcFramer.PAYLOAD_DIGEST, payload_digest),
                (WarcFramer.BLOCK_DIGEST, block_digest),
                (WarcFramer.TRUNCATED, truncated),
                (WarcFramer.IDENTIFIED_PAYLOAD_TYPE, identified_payload_type),
            ]
            return self._write_record(
                WarcFramer.RESPONSE, date, HTTP_RESPONSE_TYPE, extra, content, content_length
            )

    def write_revisit(
        self,
        target_uri,
        ip,
        date,
        warcinfo_id,
        related_id,
        profile,
        payload_digest=None,
        content=None,
        content_length=None,
    ):
        """Write a 'revisit' record in place of a duplicate or unchanged response.

        ``profile`` is one of the two revisit profile URIs, or its short
        name ('identical-payload-digest', 'server-not-modified'). The block
        is usually the HTTP response headers only; ``content`` may be a
        stream bounded by ``content_length``.

        See WARC 1.1 Section 6.7: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#revisit
        """
        profile = PROFILES.get(profile, profile)
        if profile not in PROFILES.values():
            raise ValueError(f"unknown revisit profile {profile!r}")

        with self.lock:
            extra = [
                (WarcFramer.WARCINFO_ID, angle_id(self._check_warcinfo(warcinfo_id))),
                (WarcFramer.REFERS_TO, angle_id(related_id)),
                (WarcFramer.IP_ADDRESS, ip),
                (WarcFramer.URL, target_uri),
                (WarcFramer.PROFILE, profile),
                (WarcFramer.PAYLOAD_DIGEST, payload_digest),
            ]
            return self._write_record(
                WarcFramer.REVISIT, date, HTTP_RESPONSE_TYPE, extra, content, content_length
            )

    def write_metadata(self, target_uri, date, warcinfo_id, related_id, block_digest=None, content=None):
        """Write a 'metadata' record about the record ``related_id``.

        ``content`` is an application/warc-fields block, either as bytes or
        as a mapping (or list of pairs) rendered into one.

        See WARC 1.1 Section 6.6: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#metadata
        """
        if isinstance(content, Mapping):
            content = warc_fields(content.items())
        elif isinstance(content, list):
            content = warc_fields(content)

        with self.lock:
            extra = [
                (WarcFramer.WARCINFO_ID, angle_id(self._check_warcinfo(warcinfo_id))),
                (WarcFramer.CONCURRENT_TO, angle_id(related_id)),
                (WarcFramer.URL, target_uri),
                (WarcFramer.BLOCK_DIGEST, block_digest),
            ]
            return self._write_record(WarcFramer.METADATA, date, WARC_FIELDS_TYPE, extra, content)

    def write_conversion(
        self, target_uri, date, warcinfo_id, related_id, block_digest=None, content_type=None, content=None
    ):
        """Write a 'conversion' record: content derived from the record ``related_id``,
        e.g. text extracted from an HTML page. ``content_type`` is mandatory.

        See WARC 1.1 Section 6.8: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#conversion
        """
        with self.lock:
            extra = [
                (WarcFramer.WARCINFO_ID, angle_id(self._check_warcinfo(warcinfo_id))),
                (WarcFramer.REFERS_TO, angle_id(related_id)),
                (WarcFramer.URL, target_uri),
                (WarcFramer.BLOCK_DIGEST, block_digest),
            ]
            return self._write_record(WarcFramer.CONVERSION, date, content_type, extra, content)

    def _check_warcinfo(self, warcinfo_id):
        if self.warcinfo_id is None:
            raise WarcinfoError("no warcinfo record written yet, call write_warcinfo first")
        if warcinfo_id is None:
            return self.warcinfo_id
        if bare_id(warcinfo_id) != self.warcinfo_id:
            raise WarcinfoError(
                f"{warcinfo_id} is not the warcinfo record of this file ({self.warcinfo_id})"
            )
        return self.warcinfo_id

    def _write_record(self, record_type, date, content_type, extra, content, content_length=None):
        """Frame, compress and append one record; return its id.

        The header is rendered before the gzip member is opened, so framing
        errors leave the output untouched.
        """
        if self.broken:
            raise BrokenArchiveError("a previous write to this archive failed")

        record_id = random_warc_uuid()
        with record_block(content, content_length) as (block, length):
            header = self.framer.frame_record(
                record_type, date, record_id, length, content_type, extra
            )
            offset = self.offset
            try:
                with gzip_member(self.out, self.compresslevel) as member:
                    member.write(header)
                    copy_stream(block, member, length)
                    member.write(WarcFramer.TRAILER)
            except BaseException as e:
                self.broken = True
                logging.error(f"failed writing {record_type} record {record_id} at {offset}: {e}")
                raise

        logging.debug(
            f"wrote {record_type} record {record_id} at {offset} ({self.offset - offset} bytes)"
        )
        return record_id

    def flush(self):
        self.out.flush()

    def close(self):
        """Flush the output; close it if this writer opened it."""
        with self.lock:
            if not self.broken:
                self.flush()
            for fh in self._owned:
                fh.close()
            self._owned = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
