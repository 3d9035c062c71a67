#!/usr/bin/env python
"""warccdxcheck - check a WARC file against its CDX index

For every index line the byte range [offset, offset+length) of the WARC
file is decompressed on its own and must hold exactly one complete
record for the indexed URL.

WARC Format Specification: https://iipc.github.io/warc-specifications/specifications/warc-format/warc-1.1-annotated/
"""

import json
import logging
import re
import sys
import zlib

import click

header_rx = re.compile(rb"^(?P<name>[^:]+):\s?(?P<value>.*)$")


class CdxCheckError(Exception):
    pass


def parse_cdx_line(line: bytes) -> dict:
    """Split an index line into its key, timestamp and JSON fields."""
    try:
        key, timestamp, block = line.rstrip(b"\n").split(b" ", 2)
        data = json.loads(block)
    except ValueError as e:
        raise CdxCheckError(f"malformed index line: {e}") from e
    data["key"] = key.decode("utf-8")
    data["timestamp"] = timestamp.decode("ascii")
    return data


def read_record_range(fh, offset: int, length: int) -> bytes:
    """Decompress exactly the bytes [offset, offset+length) of ``fh``.

    The range must be one complete gzip member, nothing more.
    """
    fh.seek(offset)
    data = fh.read(length)
    if len(data) != length:
        raise CdxCheckError(f"expected {length} bytes at {offset}, file has {len(data)}")

    member = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        record = member.decompress(data)
    except zlib.error as e:
        raise CdxCheckError(f"bad gzip data at {offset}: {e}") from e
    if not member.eof:
        raise CdxCheckError(f"gzip member at {offset} ends after {offset + length}")
    if member.unused_data:
        raise CdxCheckError(f"{len(member.unused_data)} trailing bytes after gzip member at {offset}")
    return record


def parse_record(data: bytes) -> tuple[bytes, list[tuple[bytes, bytes]], bytes]:
    """Split one uncompressed WARC record into (version, headers, block).

    Checks that Content-Length matches the block and that the record ends
    with the CRLF CRLF trailer and nothing after it.
    """
    head, sep, rest = data.partition(b"\r\n\r\n")
    if not sep:
        raise CdxCheckError("no end of header block")
    lines = head.split(b"\r\n")
    version = lines[0]
    headers = []
    for line in lines[1:]:
        match = header_rx.match(line)
        if not match:
            raise CdxCheckError(f"bad header line {line!r}")
        headers.append((match.group("name"), match.group("value")))

    lengths = [v for k, v in headers if k.lower() == b"content-length"]
    if len(lengths) != 1 or not lengths[0].isdigit():
        raise CdxCheckError(f"bad Content-Length {lengths!r}")
    content_length = int(lengths[0])

    block, trailer = rest[:content_length], rest[content_length:]
    if len(block) != content_length:
        raise CdxCheckError(f"block is {len(block)} bytes, Content-Length is {content_length}")
    if trailer != b"\r\n\r\n":
        raise CdxCheckError(f"bad record trailer {trailer[:16]!r}")
    return version, headers, block


def check_gap(fh, start: int, end: int) -> None:
    """Check that [start, end) holds only whole records none of which is a response.

    Requests, metadata, revisits and the warcinfo record are not indexed and
    sit between the indexed ranges.
    """
    fh.seek(start)
    data = fh.read(end - start)
    if len(data) != end - start:
        raise CdxCheckError(f"expected {end - start} bytes at {start}, file has {len(data)}")

    pos = start
    while data:
        member = zlib.decompressobj(16 + zlib.MAX_WBITS)
        try:
            record = member.decompress(data)
        except zlib.error as e:
            raise CdxCheckError(f"bad gzip data at {pos}: {e}") from e
        if not member.eof:
            raise CdxCheckError(f"gzip member at {pos} runs past {end}")
        _version, headers, _block = parse_record(record)
        if (b"WARC-Type", b"response") in headers:
            raise CdxCheckError(f"unindexed response record at {pos}")
        data = member.unused_data
        pos = end - len(data)


def check_entry(fh, entry: dict) -> None:
    offset, length = int(entry["offset"]), int(entry["length"])
    version, headers, _block = parse_record(read_record_range(fh, offset, length))
    if version != b"WARC/1.0":
        raise CdxCheckError(f"unexpected version line {version!r}")
    target = [v for k, v in headers if k.lower() == b"warc-target-uri"]
    if target != [entry["url"].encode("utf-8")]:
        raise CdxCheckError(f"record at {offset} is for {target!r}, index says {entry['url']!r}")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "-c",
    "--contiguous",
    "contiguous",
    is_flag=True,
    help="also require the index to cover the file in order: the bytes between "
    "indexed records must be whole records other than responses",
    default=False,
)
@click.option(
    "-L",
    "--log-level",
    "log_level",
    help="Log level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
)
@click.argument("warc_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("cdx_file", type=click.Path(exists=True, dir_okay=False))
def main(contiguous: bool, log_level: str, warc_file: str, cdx_file: str) -> None:
    """Check a gzipped WARC file against its CDX index."""
    logging.basicConfig(level=log_level.upper())

    correct = True
    # end of the last good indexed record, None after a bad line
    previous_end = 0
    with open(warc_file, "rb") as warc, open(cdx_file, "rb") as cdx:
        for lineno, line in enumerate(cdx, 1):
            if not line.strip():
                continue
            try:
                entry = parse_cdx_line(line)
                check_entry(warc, entry)
                offset, length = int(entry["offset"]), int(entry["length"])
                if contiguous and previous_end is not None:
                    if offset < previous_end:
                        raise CdxCheckError(f"record at {offset}, previous one ended at {previous_end}")
                    check_gap(warc, previous_end, offset)
                previous_end = offset + length
            except (CdxCheckError, KeyError, ValueError) as e:
                print(f"{cdx_file}:{lineno}: {e}", file=sys.stderr)
                correct = False
                previous_end = None
            else:
                logging.info(f"{cdx_file}:{lineno}: ok {entry['url']} at {offset}")

        if contiguous and previous_end is not None:
            warc.seek(0, 2)
            try:
                check_gap(warc, previous_end, warc.tell())
            except (CdxCheckError, KeyError, ValueError) as e:
                print(f"{warc_file}: {e}", file=sys.stderr)
                correct = False

    sys.exit(0 if correct else 1)


def run() -> None:
    """Entry point for the command-line interface."""
    main()


if __name__ == "__main__":
    run()
