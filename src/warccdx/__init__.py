"""warccdx - write WARC files and a CDX index over them for a web crawler."""
