"""
Forwarding Engine
=================

Relays an authorized request to the single configured upstream and streams
the upstream's response back to the caller.

Request flow:
-------------
1. Rebuild the request-target: upstream base path + raw inbound path + raw
   query, sent on the request line without resolving dot segments
2. Rewrite headers (credential and hop-by-hop stripped, Host replaced)
3. Stream the inbound body to the upstream without buffering it, enforcing
   MAX_BODY_BYTES on the way when it is set
4. Wait for the upstream status line and headers (bounded by the client's
   per-phase timeouts)
5. Return a StreamingResponse that relays the upstream body as raw bytes

Failures before step 5 are raised as ProxyError subclasses and rendered as
401/400/413/502/504 by the application's exception handlers. Failures while
relaying the body are raised as MidStreamError, which is never rendered: the
server drops the caller's connection instead. Nothing is retried.
"""

import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from ..config import Settings
from ..errors import (
    BadRequestError,
    BodyTooLargeError,
    MidStreamError,
    ProxyError,
    UpstreamConnectError,
    UpstreamTimeoutError,
    status_for,
)
from .headers import build_response_headers, build_upstream_headers

logger = logging.getLogger(__name__)


def create_upstream_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the pooled HTTP client shared by every request.

    Args:
        settings: Application settings (timeouts, pool size)
        transport: Optional transport override (tests inject httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient; the caller owns closing it
    """
    return httpx.AsyncClient(
        transport=transport,
        timeout=settings.upstream_timeout,
        limits=httpx.Limits(
            max_connections=settings.MAX_CONNECTIONS,
            max_keepalive_connections=settings.MAX_CONNECTIONS,
        ),
        follow_redirects=False,
        # No proxy env vars or .netrc credentials leaking into forwarded requests
        trust_env=False,
        # Upstream Set-Cookie headers belong to the caller, not to a jar shared by all callers
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
    )


def translate_upstream_error(exc: httpx.HTTPError) -> ProxyError:
    """
    Map an httpx failure raised before response headers arrived.

    ConnectTimeout counts as "unreachable" (502): the connection was never
    established. The remaining timeouts mean the upstream accepted the request
    but was too slow (504). Every other transport failure is a 502.
    """
    if isinstance(exc, httpx.ConnectTimeout):
        return UpstreamConnectError()
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeoutError()
    return UpstreamConnectError()


class Forwarder:
    """
    Stateless request relay bound to one upstream and one shared client.

    Safe to use from any number of concurrent requests; the only shared
    resource is the client's connection pool.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self._client = client
        self._base_url = settings.upstream_base_url_str
        self._base_path = httpx.URL(self._base_url).raw_path.rstrip(b"/")
        self._authority = settings.upstream_authority
        self._credential_header = settings.AUTH_HEADER
        self._max_body_bytes = settings.MAX_BODY_BYTES

    def request_target(self, raw_path: bytes, query_string: bytes = b"") -> bytes:
        """
        Build the request-target sent on the upstream request line.

        The upstream base path is prefixed to the inbound path exactly as
        received. Dot segments and percent-escapes are left alone, so
        ``/a/../b`` reaches the upstream as ``<base>/a/../b``.
        """
        target = self._base_path + (raw_path or b"/")
        if query_string:
            target += b"?" + query_string
        return target

    def upstream_url(self, raw_path: bytes, query_string: bytes = b"") -> httpx.URL:
        """
        Join the upstream base URL with an inbound path and query.

        Used to open the connection (scheme, host, port). httpx
        normalizes dot segments in it; the bytes actually sent come from
        ``request_target``.
        """
        url = self._base_url + (raw_path.decode("latin-1") or "/")
        if query_string:
            url = f"{url}?{query_string.decode('latin-1')}"
        return httpx.URL(url)

    def check_declared_length(self, request: Request) -> Optional[int]:
        """
        Validate the inbound Content-Length against MAX_BODY_BYTES.

        Runs before the credential check, so an oversized upload is refused
        without reading any of it.

        Returns:
            The declared length, or None if the request declares none

        Raises:
            BadRequestError: If Content-Length is not a non-negative integer
            BodyTooLargeError: If the declared length exceeds the limit
        """
        value = request.headers.get("content-length")
        if value is None:
            return None
        try:
            length = int(value)
        except ValueError:
            raise BadRequestError("Invalid Content-Length header") from None
        if length < 0:
            raise BadRequestError("Invalid Content-Length header")
        if self._max_body_bytes and length > self._max_body_bytes:
            raise BodyTooLargeError()
        return length

    async def _limited_body(self, request: Request) -> AsyncIterator[bytes]:
        """Yield the inbound body chunk by chunk, enforcing MAX_BODY_BYTES."""
        received = 0
        try:
            async for chunk in request.stream():
                received += len(chunk)
                if self._max_body_bytes and received > self._max_body_bytes:
                    raise BodyTooLargeError()
                if chunk:
                    yield chunk
        except ClientDisconnect as exc:
            raise BadRequestError("Client disconnected during upload") from exc

    def build_outbound_request(self, request: Request) -> httpx.Request:
        """
        Build the upstream request for an authorized inbound request.

        Args:
            request: Inbound request (body not yet read)

        Returns:
            httpx.Request whose body streams from the inbound connection

        Raises:
            BodyTooLargeError: If the declared Content-Length exceeds the limit
            BadRequestError: If Content-Length is malformed
        """
        declared = self.check_declared_length(request)
        has_body = declared is not None or "transfer-encoding" in request.headers
        content = self._limited_body(request) if has_body and declared != 0 else None

        raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
        raw_path = raw_path.split(b"?", 1)[0]
        query_string = request.scope.get("query_string", b"")
        url = self.upstream_url(raw_path, query_string)

        headers = build_upstream_headers(
            request.headers.items(),
            credential_header=self._credential_header,
            upstream_authority=self._authority,
        )

        # Constructed directly rather than via client.build_request so the
        # client's default headers (User-Agent, Accept, ...) are not injected.
        return httpx.Request(
            request.method,
            url,
            headers=[(name.encode("latin-1"), value.encode("latin-1")) for name, value in headers],
            content=content,
            # httpcore writes this on the request line verbatim
            extensions={"target": self.request_target(raw_path, query_string)},
        )

    async def relay(self, request: Request) -> StreamingResponse:
        """
        Forward the request and return the upstream's response as a stream.

        Args:
            request: Authorized inbound request

        Returns:
            StreamingResponse carrying the upstream status, headers and body

        Raises:
            UpstreamConnectError: Upstream unreachable or connection failed
            UpstreamTimeoutError: Upstream too slow to respond
            BodyTooLargeError: Inbound body over the configured limit
            BadRequestError: Malformed inbound request or caller hung up during upload
        """
        outbound = self.build_outbound_request(request)

        try:
            upstream = await self._client.send(outbound, stream=True)
        except httpx.HTTPError as exc:
            error = translate_upstream_error(exc)
            logger.error(
                f"Upstream request failed: {type(exc).__name__}: {exc}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_for(error),
                    "error": error.code,
                },
            )
            raise error from exc

        logger.info(
            "Proxied request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": upstream.status_code,
            },
        )

        response = StreamingResponse(
            self._relay_body(upstream, request),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = build_response_headers(upstream.headers.raw)
        return response

    async def _relay_body(self, upstream: httpx.Response, request: Request) -> AsyncIterator[bytes]:
        # Raw bytes: Content-Encoding and Content-Length stay as the upstream sent them.
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as exc:
            logger.error(
                f"Upstream failed mid-response: {type(exc).__name__}: {exc}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": upstream.status_code,
                },
            )
            raise MidStreamError() from exc
        finally:
            await upstream.aclose()
