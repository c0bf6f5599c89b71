"""
FastAPI Proxy Application Factory
=================================

This is the main entry point for the authenticating reverse proxy that sits
in front of a single upstream HTTP origin.

Architecture:
    Callers → authproxy (this service) → Upstream

Routes:
    - HEALTH_PATH   : Local liveness check (default /__authproxy/health)
    - /*            : Everything else, forwarded to UPSTREAM_URL once the
                      shared secret has been validated

Environment Variables Required:
    - AUTH_TOKEN: Shared secret callers must send in AUTH_HEADER
    - UPSTREAM_URL: Upstream base URL (e.g., "http://localhost:8000")

Optional:
    - BIND_ADDR: host:port to listen on (default: 127.0.0.1:3000)
    - AUTH_HEADER: Credential header name (default: Authorization)
    - LOG_LEVEL: Logging level (default: INFO)
    - See authproxy/config.py for timeouts and limits

Running the Service:
    authproxy

    Or equivalently:
        python -m authproxy.main

    With custom log level:
        LOG_LEVEL=DEBUG authproxy
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .auth import CredentialValidator
from .config import Settings, get_settings
from .errors import ERROR_STATUS, ProxyError, status_for
from .models import ErrorResponse, HealthResponse
from .proxy import Forwarder, create_upstream_client, proxy_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "authproxy"
SERVICE_VERSION = "1.0.0"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


class AppState:
    """
    Application state container.

    Holds the request-independent collaborators shared by every request:
    the settings, the credential validator and (while the lifespan runs)
    the forwarder with its pooled upstream client.
    """
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.validator = CredentialValidator(settings.AUTH_TOKEN, settings.AUTH_HEADER)
        self.transport = transport
        self.upstream_client: Optional[httpx.AsyncClient] = None
        self.forwarder: Optional[Forwarder] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Create the shared upstream client (connection pool, timeouts)
        - Bind the forwarder to it

    Shutdown:
        - Close the upstream client and its pooled connections
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    app_state.upstream_client = create_upstream_client(settings, transport=app_state.transport)
    app_state.forwarder = Forwarder(settings, app_state.upstream_client)

    logger.info(
        "Proxy started",
        extra={
            "upstream": settings.upstream_base_url_str,
            "auth_header": settings.AUTH_HEADER,
            "max_body_bytes": settings.MAX_BODY_BYTES,
        }
    )

    try:
        yield
    finally:
        logger.info("Shutting down proxy")
        app_state.forwarder = None
        await app_state.upstream_client.aclose()
        app_state.upstream_client = None
        logger.info("Upstream client closed")


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """
    Render a ProxyError as its mapped status and a generic JSON body.

    Only registered for errors that have a status; MidStreamError is left to
    propagate so the server aborts the connection.
    """
    body = ErrorResponse(error=exc.code, message=exc.message)
    return JSONResponse(status_code=status_for(exc), content=body.model_dump())


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (upstream client)
        - Health route
        - Catch-all proxy route
        - Exception handlers

    Args:
        settings: Settings to use (default: loaded from the environment)
        transport: Optional upstream transport override, for tests

    Returns:
        FastAPI: Configured application instance

    Raises:
        ValidationError: If settings are loaded here and the environment is invalid
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Authenticating Proxy",
        description="Shared-secret authenticating reverse proxy for a single upstream",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        # Every path belongs to the upstream
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.app_state = AppState(settings, transport=transport)

    for error_class, status_code in ERROR_STATUS.items():
        if status_code is not None:
            app.add_exception_handler(error_class, proxy_error_handler)

    # Health check endpoint
    if settings.HEALTH_PATH:
        @app.get(settings.HEALTH_PATH, tags=["System"], response_model=HealthResponse)
        async def health_check() -> HealthResponse:
            """
            Health check endpoint.

            Answers locally; needs no credential and never contacts the upstream.
            """
            return HealthResponse(
                status="ok",
                service=SERVICE_NAME,
                upstream=settings.upstream_base_url_str,
            )

    # Proxy router: must come last, it matches every path
    app.include_router(proxy_router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
            ).model_dump(),
        )

    return app


def load_settings() -> Settings:
    """
    Load settings, exiting the process if they are invalid.

    Called before anything binds, so a misconfigured proxy never serves.
    Only field locations and messages are logged; input values (which may
    include the secret) are not.
    """
    try:
        return get_settings()
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "settings"
            logger.critical(f"Invalid configuration for {field}: {error['msg']}")
        logger.critical("Refusing to start with invalid configuration")
        raise SystemExit(1)


def main() -> None:
    """Console entry point: validate configuration, then serve."""
    setup_logging()
    settings = load_settings()
    setup_logging(settings.LOG_LEVEL)

    app = create_app(settings)

    logger.info(f"Listening on http://{settings.BIND_ADDR}")
    uvicorn.run(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
        # Date/Server come from the upstream, not from this hop
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()
