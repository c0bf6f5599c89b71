"""
Proxy Package
=============

This package implements the forwarding half of the proxy: every request that
passes the credential check is relayed to the single configured upstream.

Main Components:
----------------
- routes.py: FastAPI router with the catch-all proxy endpoint
- forwarder.py: Forwarder (request rebuild, streaming relay, error mapping)
- headers.py: Header rewriting rules for both directions

Security Features:
------------------
- Shared-secret enforcement before anything is forwarded
- Credential header never forwarded upstream
- Hop-by-hop header stripping
- Generic error bodies (upstream failure detail only goes to the logs)

Usage:
------
    from authproxy.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .forwarder import Forwarder, create_upstream_client
from .routes import proxy_router

__all__ = ["Forwarder", "create_upstream_client", "proxy_router"]
