"""Write records to a byte-counting stream, one gzip member per record.

WARC Format Specification References:
- Compression: See Annex D "Compression recommendations"
  https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/#annex-d-informative-compression-recommendations
"""

import gzip
import io
import logging
import tempfile
from contextlib import contextmanager

CHUNK_SIZE = 8192  # the size to copy in, make this bigger things go faster.

# record blocks larger than this are spooled to a temporary file
SPOOL_SIZE = 1024 * 1024


class CountingStream:
    """A write-only pass-through stream that counts the bytes it hands to
    the wrapped file handle.

    byte_count is the offset, in the final file, of the next byte to be
    written. It only moves forward, and only once the wrapped handle has
    accepted the bytes, so a failed write is never counted.
    """

    def __init__(self, file_handle):
        self.fh = file_handle
        self.byte_count = 0

    def write(self, data):
        view = memoryview(data).cast("B")
        total = 0
        while total < len(view):
            written = self.fh.write(view[total:])
            if written is None:
                # buffered and file-like objects that return nothing took it all
                written = len(view) - total
            total += written
            self.byte_count += written
        return total

    def tell(self):
        return self.byte_count

    def writable(self):
        return True

    def flush(self):
        self.fh.flush()

    def close(self):
        """Close the underlying file handle."""
        self.fh.close()


@contextmanager
def gzip_member(out, compresslevel=9):
    """Open a fresh gzip member on ``out`` for exactly one record.

    Record-at-a-time compression per WARC 1.1 Annex D.2: each record is a
    separate gzip member, so a reader can start decompressing at the offset
    a record begins at without touching its neighbours. The member is
    finished and ``out`` flushed before the block exits normally; no
    compressor state is shared between records.

    On an exception the member is closed on a best-effort basis and the
    exception propagates.
    """
    member = gzip.GzipFile(fileobj=out, mode="wb", compresslevel=compresslevel)
    try:
        yield member
    except BaseException:
        try:
            member.close()
        except Exception as e:
            logging.debug(f"closing gzip member after failed write: {e}")
        raise
    member.close()
    out.flush()


@contextmanager
def record_block(content, content_length=None):
    """Yield (file_handle, length) for the block of a record.

    ``content`` is bytes-like, None for an empty block, or a binary file
    handle. A file handle is read up to ``content_length`` bytes (to the end
    of the stream if None) and spooled, so that length is the exact number
    of bytes the block holds, whatever the stream delivers.
    """
    if content is None:
        content = b""
    if isinstance(content, (bytes, bytearray, memoryview)):
        data = bytes(content)
        if content_length is not None:
            data = data[:content_length]
        yield io.BytesIO(data), len(data)
        return

    with tempfile.SpooledTemporaryFile(max_size=SPOOL_SIZE) as spool:
        length = copy_stream(content, spool, content_length)
        spool.seek(0)
        yield spool, length


def copy_stream(src, dst, max_bytes=None):
    """Copy at most ``max_bytes`` (all if None) from src to dst, return the count."""
    count = 0
    while max_bytes is None or count < max_bytes:
        size = CHUNK_SIZE if max_bytes is None else min(CHUNK_SIZE, max_bytes - count)
        buf = src.read(size)
        if not buf:
            break
        dst.write(buf)
        count += len(buf)
    return count

