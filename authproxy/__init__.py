"""
Authenticating reverse proxy.

Checks a shared secret on every inbound request and forwards the ones that
match to a single configured upstream, streaming the response back.
"""

__version__ = "1.0.0"
