"""
Authentication Package

This package decides whether an inbound request may be forwarded.

Key responsibilities:
- Extract the designated credential header (AUTH_HEADER, default ``Authorization``)
- Compare it against the shared secret (AUTH_TOKEN) in constant time
- Report a two-variant outcome: Authorized or Rejected(reason)

Modules:
- validator: CredentialValidator, the pure accept/reject check

There is a single static secret; there are no users, sessions or token
scopes. The credential header is consumed here and never forwarded upstream.
"""

from .validator import CredentialValidator

__all__ = [
    "CredentialValidator",
]
