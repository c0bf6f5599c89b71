"""
Header rules for upstream-bound requests and caller-bound responses.

Headers are handled as ordered (name, value) lists so repeated headers
(Set-Cookie, Via, multiple Accept lines) survive the hop unchanged.
"""

from typing import Iterable, List, Set, Tuple

# RFC 9110 §7.6.1 connection-specific headers, never forwarded by intermediaries
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

HeaderList = List[Tuple[str, str]]


def _connection_tokens(headers: Iterable[Tuple[str, str]]) -> Set[str]:
    """Header names listed in Connection, which are hop-by-hop for this message."""
    tokens = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def strip_hop_by_hop(headers: Iterable[Tuple[str, str]]) -> HeaderList:
    headers = list(headers)
    dropped = HOP_BY_HOP_HEADERS | _connection_tokens(headers)
    return [(name, value) for name, value in headers if name.lower() not in dropped]


def build_upstream_headers(
    request_headers: Iterable[Tuple[str, str]],
    credential_header: str,
    upstream_authority: str,
) -> HeaderList:
    """
    Build the header list to send to the upstream.

    Rules applied (in order):
      1. Strip the credential header. The shared secret is consumed at the
         proxy boundary and is NEVER sent upstream.
      2. Strip hop-by-hop headers, including any named in Connection.
      3. Drop the inbound Host and send the upstream's authority instead.
      4. Forward everything else unchanged and in order, Content-Length
         included, so the upstream sees the caller's framing.

    Args:
        request_headers: (name, value) pairs from the inbound request
        credential_header: Name of the credential header
        upstream_authority: host[:port] of the upstream

    Returns:
        Ordered header list with Host first
    """
    credential = credential_header.lower()
    headers = [("host", upstream_authority)]

    for name, value in strip_hop_by_hop(request_headers):
        lower_name = name.lower()
        if lower_name == credential or lower_name == "host":
            continue
        headers.append((name, value))

    return headers


def build_response_headers(upstream_headers: Iterable[Tuple[bytes, bytes]]) -> List[Tuple[bytes, bytes]]:
    """
    Build the raw header list returned to the caller.

    Everything the upstream sent is copied verbatim except hop-by-hop
    headers, which belong to the upstream connection; the server adds its
    own framing for the caller's connection.

    Args:
        upstream_headers: Raw header pairs from the upstream response
                          (``httpx.Response.headers.raw``)

    Returns:
        Raw header pairs suitable for an ASGI ``http.response.start`` message
    """
    decoded = [(name.decode("latin-1"), value.decode("latin-1")) for name, value in upstream_headers]
    return [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in strip_hop_by_hop(decoded)
    ]
