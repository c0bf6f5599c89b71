"""
Configuration module for the authenticating proxy.

This module uses Pydantic Settings to load and validate environment variables
for the shared secret, the upstream origin, the listening address and the
upstream client limits.

Environment variables are loaded from .env file or system environment.
Any invalid or missing required value raises ``pydantic.ValidationError``;
the service refuses to start in that case.
"""

import ipaddress
from functools import lru_cache
from typing import Tuple

import httpx
from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BIND_ADDR = "127.0.0.1:3000"

# RFC 9110 token characters, used to validate AUTH_HEADER
_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789"
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
)


def parse_bind_addr(value: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` string into its parts.

    IPv6 hosts must be bracketed (``[::1]:3000``).

    Raises:
        ValueError: If the address is not ``host:port`` or the port is out of range
    """
    host, sep, port_str = value.strip().rpartition(":")
    if not sep or not host or not port_str:
        raise ValueError(f"Invalid bind address '{value}'. Expected format: 'host:port'")

    if host.startswith("["):
        if not host.endswith("]"):
            raise ValueError(f"Invalid bind address '{value}': unbalanced brackets")
        host = host[1:-1]
        ipaddress.IPv6Address(host)
    elif ":" in host:
        raise ValueError(
            f"Invalid bind address '{value}'. IPv6 hosts must be bracketed, e.g. '[::1]:3000'"
        )

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in bind address '{value}'") from None

    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range in bind address '{value}'")

    return host, port


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Immutable once loaded: the proxy reads these for the whole process
    lifetime and never writes to them.
    """

    # =========================================================================
    # Credential Configuration
    # =========================================================================

    AUTH_TOKEN: str = Field(
        ...,
        description="Shared secret every caller must present in AUTH_HEADER",
        min_length=1,
    )

    AUTH_HEADER: str = Field(
        default="Authorization",
        description="Name of the request header carrying the shared secret",
        min_length=1,
    )

    # =========================================================================
    # Upstream Configuration
    # =========================================================================

    UPSTREAM_URL: HttpUrl = Field(
        ...,
        description="Upstream base URL (e.g., http://backend:8000)",
    )

    CONNECT_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Timeout for establishing the upstream connection",
        gt=0,
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout waiting for upstream response headers and between body chunks",
        gt=0,
    )

    WRITE_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout for each write of the request body to the upstream",
        gt=0,
    )

    POOL_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Timeout waiting for a free connection in the upstream pool",
        gt=0,
    )

    MAX_CONNECTIONS: int = Field(
        default=100,
        description="Maximum number of concurrent upstream connections",
        ge=1,
    )

    MAX_BODY_BYTES: int = Field(
        default=0,
        description="Maximum inbound request body size in bytes (0, the default, means no limit)",
        ge=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    BIND_ADDR: str = Field(
        default=DEFAULT_BIND_ADDR,
        description="Address the proxy listens on, as host:port",
    )

    HEALTH_PATH: str = Field(
        default="/__authproxy/health",
        description="Local liveness endpoint, never forwarded (empty disables it)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def upstream_base_url_str(self) -> str:
        """
        Get upstream URL as string (for HTTP client usage).

        Returns:
            Upstream URL as string without trailing slash.
        """
        return str(self.UPSTREAM_URL).rstrip("/")

    @property
    def upstream_authority(self) -> str:
        """Host (and non-default port) of the upstream, as sent in the Host header."""
        return httpx.URL(self.upstream_base_url_str).netloc.decode("ascii")

    @property
    def bind_host(self) -> str:
        return parse_bind_addr(self.BIND_ADDR)[0]

    @property
    def bind_port(self) -> int:
        return parse_bind_addr(self.BIND_ADDR)[1]

    @property
    def upstream_timeout(self) -> httpx.Timeout:
        """Per-phase timeouts for the upstream client."""
        return httpx.Timeout(
            connect=self.CONNECT_TIMEOUT_SECONDS,
            read=self.UPSTREAM_TIMEOUT_SECONDS,
            write=self.WRITE_TIMEOUT_SECONDS,
            pool=self.POOL_TIMEOUT_SECONDS,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("AUTH_TOKEN")
    @classmethod
    def validate_auth_token(cls, v: str) -> str:
        """
        Reject secrets that no request could ever match.

        An empty secret must never mean "allow everyone", and HTTP parsers
        strip surrounding whitespace from header values, so a secret with
        leading or trailing whitespace can never be presented.

        Raises:
            ValueError: If the secret is blank or padded with whitespace
        """
        if not v.strip():
            raise ValueError("AUTH_TOKEN must not be empty or blank")

        if v != v.strip():
            raise ValueError("AUTH_TOKEN must not have leading or trailing whitespace")

        return v

    @field_validator("AUTH_HEADER")
    @classmethod
    def validate_auth_header(cls, v: str) -> str:
        if any(ch not in _TOKEN_CHARS for ch in v):
            raise ValueError(f"AUTH_HEADER is not a valid header name: '{v}'")
        if v.lower() == "host":
            raise ValueError("AUTH_HEADER cannot be the Host header")
        return v

    @field_validator("UPSTREAM_URL")
    @classmethod
    def validate_upstream_url(cls, v: HttpUrl) -> HttpUrl:
        """
        Validate that the upstream URL is a plain base URL.

        Raises:
            ValueError: If the URL carries a query string or fragment
        """
        if v.query:
            raise ValueError("UPSTREAM_URL must not contain a query string")
        if v.fragment:
            raise ValueError("UPSTREAM_URL must not contain a fragment")
        return v

    @field_validator("BIND_ADDR")
    @classmethod
    def validate_bind_addr(cls, v: str) -> str:
        parse_bind_addr(v)
        return v.strip()

    @field_validator("HEALTH_PATH")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        if v and not v.startswith("/"):
            raise ValueError("HEALTH_PATH must start with '/'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.

    Example:
        >>> from authproxy.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.upstream_base_url_str)
    """
    return Settings()
