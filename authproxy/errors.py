"""
Proxy Error Taxonomy
====================

Every per-request failure the proxy can produce is one of the classes below.
``ERROR_STATUS`` is the single table mapping each class to the status code
sent back to the caller.

    AuthError             -> 401  missing or mismatched credential
    UpstreamConnectError  -> 502  upstream unreachable / connection failed
    UpstreamTimeoutError  -> 504  upstream too slow
    BadRequestError       -> 400  malformed inbound request
    BodyTooLargeError     -> 413  inbound body over MAX_BODY_BYTES
    MidStreamError        -> (none) response already started, connection is aborted

Messages on these exceptions are sent to the caller verbatim, so they stay
generic. Underlying exception detail is kept on ``__cause__`` for logging.
"""

from typing import Dict, Optional, Type


class ProxyError(Exception):
    """Base class for all per-request proxy failures"""

    code: str = "proxy_error"
    message: str = "Proxy error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class AuthError(ProxyError):
    """Credential missing or not equal to the configured secret"""

    code = "unauthorized"
    message = "Invalid auth token"


class UpstreamConnectError(ProxyError):
    code = "bad_gateway"
    message = "Bad Gateway"


class UpstreamTimeoutError(ProxyError):
    code = "gateway_timeout"
    message = "Gateway Timeout"


class TransportError(ProxyError):
    """Problem with the inbound request itself, detected before forwarding"""

    code = "bad_request"
    message = "Bad Request"


class BadRequestError(TransportError):
    pass


class BodyTooLargeError(TransportError):
    code = "payload_too_large"
    message = "Request body too large"


class MidStreamError(ProxyError):
    """
    Upstream failed after the response to the caller had already started.

    There is no status line left to rewrite; the error propagates to the
    server, which drops the caller's connection.
    """

    code = "upstream_aborted"
    message = "Upstream connection lost mid-response"


ERROR_STATUS: Dict[Type[ProxyError], Optional[int]] = {
    AuthError: 401,
    UpstreamConnectError: 502,
    UpstreamTimeoutError: 504,
    BadRequestError: 400,
    BodyTooLargeError: 413,
    MidStreamError: None,
}


def status_for(error: ProxyError) -> Optional[int]:
    """
    Look up the response status for an error.

    Args:
        error: Any ProxyError instance

    Returns:
        HTTP status code, or None if the error cannot be turned into a response

    Raises:
        KeyError: If the error's class is not part of the taxonomy
    """
    return ERROR_STATUS[type(error)]
