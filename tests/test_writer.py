"""Tests for WarcWriter: framing, per-record gzip members and linkage."""

import gzip
import tempfile
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path

import pytest

from warccdx.cdxcheck import parse_record, read_record_range
from warccdx.warcwriter import BrokenArchiveError, WarcFramingError, WarcinfoError, WarcWriter

DATE = datetime(2024, 3, 5, 7, 8, 9, tzinfo=timezone.utc)
URL = "http://example.org/a?x=1"
REQUEST = b"GET /a?x=1 HTTP/1.1\r\nHost: example.org\r\n\r\n"
RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\nContent-Length: 5\r\n\r\nhello"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def out():
    return BytesIO()


@pytest.fixture
def writer(out):
    return WarcWriter(out)


class RecordingWriter:
    """Wraps a writer and keeps the byte range of every record it writes."""

    def __init__(self, writer):
        self.writer = writer
        self.ranges = []

    def __getattr__(self, name):
        method = getattr(self.writer, name)

        def call(*args, **kwargs):
            start = self.writer.offset
            result = method(*args, **kwargs)
            self.ranges.append((start, self.writer.offset - start))
            return result

        return call


def read_record(out, offset, length):
    version, headers, block = parse_record(read_record_range(out, offset, length))
    return version, dict(headers), block


class FailingStream:
    """A stream whose writes fail once ``fail`` is set."""

    def __init__(self):
        self.fail = False
        self.data = BytesIO()

    def write(self, data):
        if self.fail:
            raise OSError("disk full")
        return self.data.write(data)

    def flush(self):
        pass


class InterruptingStream(FailingStream):
    """Raises KeyboardInterrupt on the second write once ``fail`` is set."""

    def __init__(self):
        FailingStream.__init__(self)
        self.armed_writes = 0

    def write(self, data):
        if self.fail:
            self.armed_writes += 1
            if self.armed_writes == 2:
                raise KeyboardInterrupt()
        return self.data.write(data)


def test_warcinfo_record(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo(
        "crawl-0001.warc.gz",
        hostname="crawler1",
        publisher="Example Crawl",
        operator="ops@example.org",
        software="crawler/1.0",
        is_part_of="CRAWL-2024-10",
        description="test crawl",
        date=DATE,
    )

    assert rec.ranges[0][0] == 0
    assert writer.warcinfo_id == warcinfo_id
    version, headers, block = read_record(out, *rec.ranges[0])
    assert version == b"WARC/1.0"
    assert headers[b"WARC-Type"] == b"warcinfo"
    assert headers[b"WARC-Record-ID"] == f"<{warcinfo_id}>".encode()
    assert headers[b"WARC-Date"] == b"2024-03-05T07:08:09Z"
    assert headers[b"Content-Type"] == b"application/warc-fields"
    assert headers[b"WARC-Filename"] == b"crawl-0001.warc.gz"
    assert block == (
        b"robots: classic\r\n"
        b"hostname: crawler1\r\n"
        b"software: crawler/1.0\r\n"
        b"isPartOf: CRAWL-2024-10\r\n"
        b"operator: ops@example.org\r\n"
        b"description: test crawl\r\n"
        b"publisher: Example Crawl\r\n"
        b"format: WARC File Format 1.0\r\n"
        b"conformsTo: http://bibnum.bnf.fr/WARC/WARC_ISO_28500_version1_latestdraft.pdf\r\n"
    )


def test_warcinfo_defaults(writer, out):
    rec = RecordingWriter(writer)
    rec.write_warcinfo("f.warc.gz")
    _, headers, block = read_record(out, *rec.ranges[0])
    assert block.startswith(b"robots: classic\r\nformat: WARC File Format 1.0\r\n")
    assert headers[b"WARC-Date"].endswith(b"Z")


def test_request_and_response(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz", date=DATE)
    request_id = rec.write_request(URL, "93.184.216.34", DATE, warcinfo_id, REQUEST)
    response_id = rec.write_response(
        URL,
        "93.184.216.34",
        DATE,
        warcinfo_id,
        request_id,
        payload_digest="sha1:PAYLOAD",
        block_digest="sha1:BLOCK",
        truncated="length",
        content=RESPONSE,
        identified_payload_type="text/html",
    )

    _, headers, block = read_record(out, *rec.ranges[1])
    assert list(headers) == [
        b"WARC-Type",
        b"WARC-Date",
        b"WARC-Record-ID",
        b"Content-Length",
        b"Content-Type",
        b"WARC-IP-Address",
        b"WARC-Warcinfo-ID",
        b"WARC-Target-URI",
    ]
    assert headers[b"WARC-Type"] == b"request"
    assert headers[b"Content-Type"] == b"application/http; msgtype=request"
    assert headers[b"WARC-Warcinfo-ID"] == f"<{warcinfo_id}>".encode()
    assert headers[b"Content-Length"] == str(len(REQUEST)).encode()
    assert block == REQUEST

    _, headers, block = read_record(out, *rec.ranges[2])
    assert headers[b"WARC-Type"] == b"response"
    assert headers[b"WARC-Record-ID"] == f"<{response_id}>".encode()
    assert headers[b"WARC-Concurrent-To"] == f"<{request_id}>".encode()
    assert headers[b"WARC-Target-URI"] == URL.encode()
    assert headers[b"WARC-Payload-Digest"] == b"sha1:PAYLOAD"
    assert headers[b"WARC-Block-Digest"] == b"sha1:BLOCK"
    assert headers[b"WARC-Truncated"] == b"length"
    assert headers[b"WARC-Identified-Payload-Type"] == b"text/html"
    assert headers[b"Content-Type"] == b"application/http; msgtype=response"
    assert headers[b"Content-Length"] == str(len(RESPONSE)).encode()
    assert block == RESPONSE


def test_records_are_independent_gzip_members(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz", date=DATE)
    for i in range(5):
        rec.write_response(f"http://example.org/{i}", None, DATE, warcinfo_id, None, content=b"x" * i)

    # contiguous partition of the whole file
    position = 0
    for offset, length in rec.ranges:
        assert offset == position
        assert length > 0
        position += length
    assert position == len(out.getvalue())

    # each range decompresses on its own
    for i, (offset, length) in enumerate(rec.ranges[1:]):
        _, headers, block = read_record(out, offset, length)
        assert headers[b"WARC-Target-URI"] == f"http://example.org/{i}".encode()
        assert block == b"x" * i

    # and the file as a whole is valid multi-member gzip
    data = gzip.decompress(out.getvalue())
    assert data.count(b"WARC/1.0\r\n") == 6


def test_revisit(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz", date=DATE)
    headers_only = BytesIO(b"HTTP/1.1 304 Not Modified\r\n\r\nignored body")
    revisit_id = rec.write_revisit(
        URL,
        "10.0.0.1",
        DATE,
        warcinfo_id,
        "urn:uuid:prior-response",
        "identical-payload-digest",
        payload_digest="sha1:SAME",
        content=headers_only,
        content_length=29,
    )

    _, headers, block = read_record(out, *rec.ranges[1])
    assert headers[b"WARC-Type"] == b"revisit"
    assert headers[b"WARC-Record-ID"] == f"<{revisit_id}>".encode()
    assert headers[b"WARC-Refers-To"] == b"<urn:uuid:prior-response>"
    assert headers[b"WARC-Profile"] == WarcWriter.PROFILE_IDENTICAL_PAYLOAD_DIGEST.encode()
    assert headers[b"WARC-Payload-Digest"] == b"sha1:SAME"
    assert headers[b"Content-Length"] == b"29"
    assert block == b"HTTP/1.1 304 Not Modified\r\n\r\n"


def test_revisit_profile_uri_accepted(writer, out):
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    writer.write_revisit(
        URL, None, DATE, warcinfo_id, "urn:uuid:x", WarcWriter.PROFILE_SERVER_NOT_MODIFIED
    )


def test_revisit_unknown_profile_rejected(writer, out):
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    before = writer.offset
    with pytest.raises(ValueError):
        writer.write_revisit(URL, None, DATE, warcinfo_id, "urn:uuid:x", "fuzzy-match")
    assert writer.offset == before


def test_unknown_truncation_reason_rejected(writer):
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    with pytest.raises(ValueError):
        writer.write_response(URL, None, DATE, warcinfo_id, None, truncated="too-big")


def test_stream_shorter_than_bound(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz")
    rec.write_response(
        URL, None, DATE, warcinfo_id, None, content=BytesIO(b"short"), content_length=1000
    )
    _, headers, block = read_record(out, *rec.ranges[1])
    assert headers[b"Content-Length"] == b"5"
    assert block == b"short"


def test_unbounded_stream(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz")
    payload = bytes(range(256)) * 1000
    rec.write_response(URL, None, DATE, warcinfo_id, None, content=BytesIO(payload))
    _, headers, block = read_record(out, *rec.ranges[1])
    assert headers[b"Content-Length"] == str(len(payload)).encode()
    assert block == payload


def test_empty_block(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz")
    rec.write_response(URL, None, DATE, warcinfo_id, None)
    _, headers, block = read_record(out, *rec.ranges[1])
    assert headers[b"Content-Length"] == b"0"
    assert block == b""


def test_metadata(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz")
    rec.write_metadata(
        URL,
        DATE,
        warcinfo_id,
        "urn:uuid:resp",
        block_digest="sha1:META",
        content={"fetchTimeMs": 120, "via": "http://example.org/"},
    )
    _, headers, block = read_record(out, *rec.ranges[1])
    assert headers[b"WARC-Type"] == b"metadata"
    assert headers[b"Content-Type"] == b"application/warc-fields"
    assert headers[b"WARC-Concurrent-To"] == b"<urn:uuid:resp>"
    assert headers[b"WARC-Block-Digest"] == b"sha1:META"
    assert block == b"fetchTimeMs: 120\r\nvia: http://example.org/\r\n"


def test_conversion(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz")
    text = "héllo wörld".encode("utf-8")
    rec.write_conversion(
        URL,
        DATE,
        warcinfo_id,
        "<urn:uuid:resp>",
        content_type="text/plain; charset=utf-8",
        content=text,
    )
    _, headers, block = read_record(out, *rec.ranges[1])
    assert headers[b"WARC-Type"] == b"conversion"
    assert headers[b"WARC-Refers-To"] == b"<urn:uuid:resp>"
    assert headers[b"Content-Type"] == b"text/plain; charset=utf-8"
    assert b"WARC-Block-Digest" not in headers
    assert block == text


def test_conversion_needs_content_type(writer):
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    with pytest.raises(WarcFramingError):
        writer.write_conversion(URL, DATE, warcinfo_id, "urn:uuid:resp", content=b"text")


def test_content_record_before_warcinfo(writer, out):
    with pytest.raises(WarcinfoError):
        writer.write_request(URL, None, DATE, "urn:uuid:nothing", REQUEST)
    assert out.getvalue() == b""


def test_foreign_warcinfo_id_rejected(writer):
    writer.write_warcinfo("f.warc.gz")
    with pytest.raises(WarcinfoError):
        writer.write_request(URL, None, DATE, "urn:uuid:other-file", REQUEST)


def test_warcinfo_id_defaults_to_this_file(writer, out):
    rec = RecordingWriter(writer)
    warcinfo_id = rec.write_warcinfo("f.warc.gz")
    rec.write_request(URL, None, DATE, None, REQUEST)
    _, headers, _ = read_record(out, *rec.ranges[1])
    assert headers[b"WARC-Warcinfo-ID"] == f"<{warcinfo_id}>".encode()


def test_second_warcinfo_rejected(writer):
    writer.write_warcinfo("f.warc.gz")
    with pytest.raises(WarcinfoError):
        writer.write_warcinfo("f.warc.gz")


def test_framing_error_writes_nothing(writer, out):
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    size = len(out.getvalue())
    with pytest.raises(WarcFramingError):
        writer.write_request("http://example.org/\nWARC-Type: forged", None, DATE, warcinfo_id, REQUEST)
    assert len(out.getvalue()) == size
    assert writer.offset == size
    # the writer is still usable
    writer.write_request(URL, None, DATE, warcinfo_id, REQUEST)


def test_identical_records_get_distinct_ids(writer):
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    first = writer.write_request(URL, None, DATE, warcinfo_id, REQUEST)
    second = writer.write_request(URL, None, DATE, warcinfo_id, REQUEST)
    assert first != second


def test_io_failure_breaks_archive():
    sink = FailingStream()
    writer = WarcWriter(sink)
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    written = writer.offset
    sink.fail = True

    with pytest.raises(OSError):
        writer.write_response(URL, None, DATE, warcinfo_id, None, content=bytes(range(256)) * 64)
    assert writer.broken
    assert writer.offset == written

    with pytest.raises(BrokenArchiveError):
        writer.write_request(URL, None, DATE, warcinfo_id, REQUEST)


def test_interrupt_breaks_archive():
    sink = InterruptingStream()
    writer = WarcWriter(sink)
    warcinfo_id = writer.write_warcinfo("f.warc.gz")
    sink.fail = True

    with pytest.raises(KeyboardInterrupt):
        writer.write_response(URL, None, DATE, warcinfo_id, None, content=bytes(range(256)) * 64)
    assert writer.broken

    # the sink works again, the archive stays broken
    with pytest.raises(BrokenArchiveError):
        writer.write_request(URL, None, DATE, warcinfo_id, REQUEST)


def test_open_owns_file(temp_dir):
    path = temp_dir / "owned.warc.gz"
    with WarcWriter.open(path) as writer:
        warcinfo_id = writer.write_warcinfo(path.name)
        writer.write_request(URL, None, DATE, warcinfo_id, REQUEST)
        fh = writer.out.fh
    assert fh.closed

    data = gzip.decompress(path.read_bytes())
    assert data.startswith(b"WARC/1.0\r\nWARC-Type: warcinfo\r\n")
    assert data.count(b"WARC/1.0\r\n") == 2


def test_close_leaves_caller_stream_open(writer, out):
    writer.write_warcinfo("f.warc.gz")
    writer.close()
    assert not out.closed
