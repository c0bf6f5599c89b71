"""
Proxy Routes - Upstream Request Forwarding
==========================================

This module mounts the catch-all route that forwards authorized requests to
the configured upstream.

Security Model:
---------------
1. Every request must carry the shared secret in AUTH_HEADER
2. A malformed or oversized declared body is refused first (400/413)
3. The credential is validated before the body is read or the upstream is
   contacted; rejected requests get a 401 and nothing else happens
4. The credential header is explicitly dropped (never forwarded)
5. The upstream sees the caller's method, path, query, headers and body

Endpoints:
----------
- ANY /{path}: Forward to UPSTREAM_URL + path
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..errors import AuthError
from ..models import Rejected, RejectionReason
from ..auth import CredentialValidator
from .forwarder import Forwarder

logger = logging.getLogger(__name__)

# Create router
proxy_router = APIRouter()

REJECTION_MESSAGES = {
    RejectionReason.MISSING: "Missing credential header",
    RejectionReason.INVALID: "Invalid auth token",
}


# ============================================================================
# Dependencies
# ============================================================================

def get_app_state(request: Request):
    return request.app.state.app_state


def get_validator(request: Request) -> CredentialValidator:
    return get_app_state(request).validator


def get_forwarder(request: Request) -> Forwarder:
    """
    Dependency to get the forwarding engine from app state.

    The forwarder (and its upstream client) only exists while the
    application lifespan is running.

    Returns:
        Forwarder bound to the shared upstream client
    """
    forwarder = get_app_state(request).forwarder
    if forwarder is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not available"
        )
    return forwarder


async def reject_malformed_body(
    request: Request,
    forwarder: Forwarder = Depends(get_forwarder),
) -> None:
    """
    Dependency refusing a bad or oversized declared body up front.

    Raises:
        BadRequestError: Malformed Content-Length (400)
        BodyTooLargeError: Declared length over MAX_BODY_BYTES (413)
    """
    forwarder.check_declared_length(request)


async def require_credential(
    request: Request,
    validator: CredentialValidator = Depends(get_validator),
) -> None:
    """
    Dependency enforcing the shared-secret check.

    Raises:
        AuthError: If the credential header is missing or does not match
    """
    result = validator.check(request.headers)

    if isinstance(result, Rejected):
        logger.warning(
            "Rejected request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "reason": result.reason.value,
            }
        )
        raise AuthError(REJECTION_MESSAGES[result.reason])


# ============================================================================
# Proxy Endpoints
# ============================================================================

# An empty method set matches every method, extension methods included.
@proxy_router.api_route(
    "/{path:path}",
    methods=[],
    operation_id="proxy_request",
    include_in_schema=False,
    dependencies=[Depends(reject_malformed_body), Depends(require_credential)],
)
async def proxy_request(
    request: Request,
    forwarder: Forwarder = Depends(get_forwarder),
) -> Response:
    """
    Forward an authorized request to the upstream.

    Flow:
    1. Refuse a bad declared body, then validate the shared secret
       (done by dependencies; 400/413 or 401 on failure)
    2. Build the upstream request from the inbound one
    3. Relay the upstream response back, streaming the body

    Returns:
        The upstream's response (status, headers, body) as a stream

    Raises:
        ProxyError: Rendered as 400/413/502/504 by the app's exception handlers
    """
    return await forwarder.relay(request)
