"""Write a CDX index alongside the WARC file.

One line per response record:

    <surt key> <yyyyMMddHHmmss> {"url": ..., "mime": ..., "status": ...,
    "digest": ..., "length": ..., "offset": ..., "filename": ...}

The JSON block has a fixed key order, ": " and ", " separators and
escaped non-ASCII, as read by pywb (https://github.com/ikreymer/pywb).
``length`` and ``offset`` give the byte range of the record's gzip member
in the WARC file.
"""

import json
import logging
import os
import re

from warccdx.warcwriter.surt import make_surt
from warccdx.warcwriter.warc import utc
from warccdx.warcwriter.writer import WarcWriter

MISSING = "-"

# the key is the first space-separated field of a line
whitespace_rx = re.compile(r"\s")


def clean_mime_type(mime):
    """Strip parameters from a MIME type; 'unk' when there is none.

    >>> clean_mime_type("text/html; charset=utf-8")
    'text/html'
    """
    if mime is None:
        return "unk"
    for delim in (";", " "):
        pos = mime.find(delim)
        if pos > -1:
            mime = mime[:pos]
    if not mime:
        return "unk"
    return mime


def clean_digest(digest):
    """Strip the algorithm prefix from an ``<algorithm>:<digest>`` string."""
    if digest is None:
        return None
    if ":" in digest:
        return digest.split(":", 1)[1]
    return digest


def cdx_timestamp(date):
    return utc(date).strftime("%Y%m%d%H%M%S")


def cdx_json(data):
    return json.dumps(data, separators=(", ", ": "), ensure_ascii=True)


class WarcCdxWriter(WarcWriter):
    """A WarcWriter that also writes a CDX line for every response record.

    ``cdx_out`` is a binary stream receiving the index lines, in the order
    the records are written. ``warc_filename`` is the name recorded in the
    ``filename`` field (a leading '/' is dropped). ``canonicalize`` turns a
    target URI into the sort key, make_surt by default.
    """

    def __init__(self, warc_out, cdx_out, warc_filename, canonicalize=make_surt, **kwargs):
        WarcWriter.__init__(self, warc_out, **kwargs)
        self.cdx_out = cdx_out
        self.warc_filename = os.fspath(warc_filename)
        if self.warc_filename.startswith("/"):
            self.warc_filename = self.warc_filename[1:]
        self.canonicalize = canonicalize

    @classmethod
    def open(cls, warc_path, cdx_path, warc_filename=None, **kwargs):
        """Create a writer on new WARC and CDX files; close() closes both.

        The index names the WARC file by ``warc_filename``, its path by default.
        """
        warc_out = open(warc_path, "wb")
        try:
            cdx_out = open(cdx_path, "wb")
        except OSError:
            warc_out.close()
            raise
        if warc_filename is None:
            warc_filename = warc_path
        writer = cls(warc_out, cdx_out, warc_filename, **kwargs)
        writer._owned.extend([warc_out, cdx_out])
        return writer

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
        """Write a response record, then its CDX line.

        The lock is held across both so index lines follow archive order and
        no other record lands between the two offset readings. A target URI
        that cannot be canonicalized is logged and gets no index line; the
        record itself stays in the archive.
        """
        with self.lock:
            offset = self.offset
            record_id = WarcWriter.write_response(
                self,
                target_uri,
                ip,
                date,
                warcinfo_id,
                related_id,
                payload_digest,
                block_digest,
                truncated,
                content,
                meta,
                content_length,
                identified_payload_type,
            )
            length = self.offset - offset
            self.write_cdx_line(target_uri, date, offset, length, payload_digest, meta)
            return record_id

    def write_cdx_line(self, target_uri, date, offset, length, payload_digest, meta):
        try:
            key = self.canonicalize(target_uri)
            if not key or whitespace_rx.search(key):
                raise ValueError(f"unusable key {key!r}")
        except ValueError as e:
            logging.error(f"Failed to make SURT for {target_uri}: {e}")
            return

        meta = meta if meta is not None else {}
        status = meta.get("HTTP-Status-Code")
        digest = clean_digest(payload_digest)
        data = {
            "url": target_uri,
            "mime": clean_mime_type(meta.get("Content-Type")),
            "status": str(status) if status is not None else MISSING,
            "digest": digest if digest is not None else MISSING,
            "length": str(length),
            "offset": str(offset),
            "filename": self.warc_filename,
        }
        line = f"{key} {cdx_timestamp(date)} {cdx_json(data)}\n"
        self.cdx_out.write(line.encode("utf-8"))

    def flush(self):
        WarcWriter.flush(self)
        self.cdx_out.flush()
