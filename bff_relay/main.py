"""
FastAPI BFF Relay Application Factory
=====================================

This is the main entry point for the relay that sits between the public
frontend edge and the internal API service.

Architecture:
    Browser → Outer TLS ingress → BFF relay (this service) → Internal API (private network)

Routers:
    - {PUBLIC_PREFIX}/* : Relayed to the internal API (default prefix /api)
    - /health           : Health check endpoint
    - /debug/origin     : Public origin diagnostics (development only)

Environment Variables:
    - INTERNAL_API_URL (or services__server__http__0 / services__server__https__0 / ApiUrl)
    - PUBLIC_HOSTNAME, PUBLIC_PROTO: Public origin overrides
    - PROXY_TRUST_POLICY, TRUSTED_PROXIES: Forwarded header trust boundary
    - PUBLIC_PREFIX, CALLBACK_PATHS, INTERNAL_HOST_PATTERNS: Path and rewrite rules
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn bff_relay.main:app --reload --host 0.0.0.0 --port 3000 --no-proxy-headers

    Production:
        python -m bff_relay.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, get_settings, validate_configuration
from .models import ErrorResponse, HealthResponse
from .proxy import create_proxy_router
from .proxy.errors import UntrustedOriginError, UpstreamUnavailableError
from .proxy.relay import create_upstream_client
from .proxy.trust import is_trusted_peer, resolve_public_origin

SERVICE_NAME = "bff-relay"

logger = logging.getLogger("bff_relay.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Report configuration problems
        - Create the shared upstream client (unless one was injected)

    Shutdown tasks:
        - Close the upstream client if this lifespan created it
    """
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL)

    logger.info(
        "Starting BFF relay",
        extra={
            "internal_api_url": settings.internal_api_url_str,
            "public_prefix": settings.PUBLIC_PREFIX,
            "trust_policy": settings.PROXY_TRUST_POLICY,
            "environment": settings.ENVIRONMENT,
        }
    )

    report = validate_configuration(settings)
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    owns_client = app.state.upstream_client is None
    if owns_client:
        app.state.upstream_client = create_upstream_client(settings)
        logger.info("Created upstream client for internal API")

    yield

    logger.info("Shutting down BFF relay")
    if owns_client:
        await app.state.upstream_client.aclose()
        app.state.upstream_client = None


def _error_response(
    status_code: int,
    error: str,
    message: str,
    detail: Optional[str],
    settings: Settings,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        detail=None if settings.is_production else detail,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


# Create FastAPI application
def create_application(
    settings: Optional[Settings] = None,
    upstream_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Relay settings; read from the environment when omitted
        upstream_client: Client for the internal API; created by the
            lifespan when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="BFF Relay",
        description="Backend-for-frontend relay in front of a private API service",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.upstream_client = upstream_client

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(create_proxy_router(settings.PUBLIC_PREFIX))

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service=SERVICE_NAME, version=__version__)

    if not settings.is_production:
        @app.get("/debug/origin", tags=["System"])
        async def debug_origin(request: Request) -> Dict[str, Any]:
            """
            Show how the trust gate sees this request.

            Mirrors what the internal service will receive in X-Public-*.
            """
            client_address = request.client.host if request.client else None
            origin = resolve_public_origin(
                request.headers.items(), client_address, request.url.scheme, settings
            )
            return {
                "public_origin": origin.model_dump(),
                "base_url": origin.base_url,
                "client_address": client_address,
                "trusted_peer": is_trusted_peer(client_address, settings),
                "trust_policy": settings.PROXY_TRUST_POLICY,
            }

    @app.exception_handler(UpstreamUnavailableError)
    async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailableError) -> JSONResponse:
        logger.error(
            f"Upstream unavailable: {exc}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "target_url": exc.target_url,
                "exception_type": type(exc.cause).__name__,
            },
        )
        return _error_response(
            502, "upstream_unavailable", "Upstream service unavailable", str(exc), settings
        )

    @app.exception_handler(UntrustedOriginError)
    async def untrusted_origin_handler(request: Request, exc: UntrustedOriginError) -> JSONResponse:
        logger.warning(
            f"Rejected request without a trustworthy origin: {exc}",
            extra={"path": request.url.path, "method": request.method},
        )
        return _error_response(
            400, "untrusted_origin", "Cannot determine the public origin of this request", str(exc), settings
        )

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
        return _error_response(
            500, "internal_server_error", "An unexpected error occurred", str(exc), settings
        )

    return app


# Create app instance for uvicorn
app = create_application()


def main() -> None:
    settings = get_settings()
    # The trust gate needs the real socket peer, so uvicorn must not apply
    # X-Forwarded-* to the scope itself.
    uvicorn.run(
        app,
        host=settings.RELAY_HOST,
        port=settings.RELAY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        proxy_headers=False,
    )


if __name__ == "__main__":
    main()
