"""
Shared-secret credential validation.

The check is a pure function of (headers, secret): no I/O and no state
beyond the immutable configuration, so one validator instance is shared by
every in-flight request.
"""

import logging
import secrets
from typing import Iterable, List, Mapping, Tuple, Union

from ..models import Authorized, Rejected, RejectionReason, ValidationResult

logger = logging.getLogger(__name__)

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _header_bytes(value: str) -> bytes:
    # ASGI servers decode header bytes as latin-1; re-encoding restores the wire bytes.
    try:
        return value.encode("latin-1")
    except UnicodeEncodeError:
        return value.encode("utf-8")


def _header_items(headers: HeaderSource) -> Iterable[Tuple[str, str]]:
    # Starlette's Headers.items() keeps duplicates, a plain dict cannot have any.
    if hasattr(headers, "items"):
        return headers.items()
    return headers


class CredentialValidator:
    """
    Decides whether a request carries the configured shared secret.

    The header value is compared byte-for-byte against the secret with
    ``secrets.compare_digest``. No scheme prefix (``Bearer ...``) is parsed.

    Attributes:
        header_name: Designated credential header (matched case-insensitively)
    """

    def __init__(self, secret: str, header_name: str = "Authorization"):
        if not secret:
            raise ValueError("Shared secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.header_name = header_name

    def __repr__(self) -> str:
        return f"CredentialValidator(header_name={self.header_name!r})"

    def extract(self, headers: HeaderSource) -> List[str]:
        """Return every value of the credential header, in order."""
        wanted = self.header_name.lower()
        return [value for name, value in _header_items(headers) if name.lower() == wanted]

    def check(self, headers: HeaderSource) -> ValidationResult:
        """
        Validate the credential carried in ``headers``.

        Args:
            headers: Inbound header mapping, or (name, value) pairs

        Returns:
            Authorized() if exactly one credential header is present and its
            value equals the secret, otherwise Rejected(reason)
        """
        values = self.extract(headers)

        if not values:
            return Rejected(reason=RejectionReason.MISSING)

        # Repeated credential headers are ambiguous; never pick one.
        if len(values) > 1:
            logger.debug("Multiple credential headers presented", extra={"count": len(values)})
            return Rejected(reason=RejectionReason.INVALID)

        if secrets.compare_digest(_header_bytes(values[0]), self._secret):
            return Authorized()

        return Rejected(reason=RejectionReason.INVALID)
