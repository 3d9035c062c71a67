"""Sort-friendly URI Reordering Transform (SURT) keys for the CDX index.

``make_surt`` is the default canonicalizer of WarcCdxWriter. Any callable
taking a URL string and returning a key string can replace it; it should
raise ValueError for URLs it cannot handle.

Reference: http://crawler.archive.org/articles/user_manual/glossary.html#surt
"""

import re
from urllib.parse import quote, urlsplit

DEFAULT_PORTS = {"http": 80, "https": 443, "ftp": 21}

# characters left as they are in paths and query arguments; whitespace,
# controls and non-ASCII are percent-encoded so a key never holds a space
PATH_SAFE = "/%;:@&=+$,!~*'()"
QUERY_SAFE = PATH_SAFE + "?"

www_rx = re.compile(r"^www\d*\.")
ipv4_rx = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
bad_host_rx = re.compile(r"[\s<>\"{}|\\^`]")


def make_surt(url):
    """Return the SURT key of ``url``.

    Host labels are reversed and comma-joined (IPv6 addresses keep their
    brackets), ``www`` prefixes, default ports, user info and fragments are
    dropped, whitespace and non-ASCII in the path and query are
    percent-encoded, query arguments are sorted and the whole key is
    lower-cased:

        >>> make_surt("http://www.Example.org:80/A?b=2&a=1#top")
        'org,example)/a?a=1&b=2'

    Raises:
        ValueError: url is not an absolute URL with a usable host and port
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if not scheme or not parts.netloc:
        raise ValueError(f"not an absolute URL: {url!r}")

    host = parts.hostname
    if not host:
        raise ValueError(f"no host in URL: {url!r}")
    port = parts.port  # raises ValueError for a bad port

    if bad_host_rx.search(host):
        raise ValueError(f"invalid host in URL: {url!r}")
    if not host.isascii():
        host = host.encode("idna").decode("ascii")

    host = www_rx.sub("", host.rstrip("."))
    if ":" in host:
        key = f"[{host}]"
    elif ipv4_rx.match(host):
        key = host
    else:
        key = ",".join(reversed(host.split(".")))

    if port is not None and port != DEFAULT_PORTS.get(scheme):
        key += f":{port}"

    key += ")" + quote(parts.path or "/", safe=PATH_SAFE)
    if parts.query:
        args = [quote(arg, safe=QUERY_SAFE) for arg in parts.query.split("&")]
        key += "?" + "&".join(sorted(args))

    return key.lower()
