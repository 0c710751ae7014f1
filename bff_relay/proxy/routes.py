"""
Proxy Routes - Internal API Forwarding
======================================

Catch-all routes under the public prefix that relay every request to the
internal API service.

Pipeline per request:
---------------------
1. Capture the inbound request (method, raw path, query, headers, body)
2. Resolve the trusted public origin (HeaderTrustGate)
3. Map the public path to the internal path (CallbackPathRouter)
4. Send exactly one outbound request, redirects not followed (ProxyRelay)
5. Rewrite internal Location headers and stream the reply (ResponseRelay)

Errors raised here (UpstreamUnavailableError, UntrustedOriginError) are
turned into responses by the handlers registered in ``bff_relay.main``.
"""

import logging

import httpx
from fastapi import APIRouter, HTTPException, Request, Response, status
from starlette.routing import Route

from ..config import Settings
from .relay import (
    ClientDisconnectedError,
    build_internal_target,
    build_outbound_headers,
    build_request_context,
    cancel_on_disconnect,
    relay_response,
    send_upstream,
)
from .trust import resolve_public_origin

logger = logging.getLogger("bff_relay.proxy.routes")


# ============================================================================
# App State
# ============================================================================

def get_relay_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_upstream_client(request: Request) -> httpx.AsyncClient:
    """
    Dependency to get the upstream HTTP client from app state.

    Raises:
        HTTPException: 503 if the client was not initialized (lifespan not run)
    """
    client = getattr(request.app.state, "upstream_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not initialized",
        )
    return client


# ============================================================================
# Relay
# ============================================================================

async def forward_to_internal(
    request: Request,
    settings: Settings,
    client: httpx.AsyncClient,
) -> Response:
    """Relay one inbound request to the internal service and back."""
    ctx = await build_request_context(request)
    origin = resolve_public_origin(ctx.headers, ctx.client_address, request.url.scheme, settings)
    target = build_internal_target(ctx, settings)
    headers = build_outbound_headers(ctx, origin)

    logger.debug(
        f"Proxying {ctx.method} {ctx.path} -> {target.url}",
        extra={
            "target_url": target.url,
            "public_host": origin.host,
            "public_proto": origin.scheme,
            "original_path": ctx.path,
            "forwarded_path": target.path,
            "method": ctx.method,
        },
    )

    try:
        response_ctx = await cancel_on_disconnect(
            request, send_upstream(client, target, ctx, headers, settings)
        )
    except ClientDisconnectedError:
        logger.info(
            "Client disconnected, upstream request cancelled",
            extra={"target_url": target.url, "method": ctx.method},
        )
        # Nobody is listening any more; the status is never delivered.
        return Response(status_code=status.HTTP_502_BAD_GATEWAY)

    return relay_response(response_ctx, origin, settings)


def create_proxy_router(prefix: str) -> APIRouter:
    """
    Build the catch-all router for a public prefix.

    Both ``{prefix}`` and ``{prefix}/...`` are relayed for any method,
    extension methods included, so the routes carry no method list.
    """
    router = APIRouter()

    async def proxy_all(request: Request) -> Response:
        """Catch-all route that relays the request to the internal service."""
        return await forward_to_internal(
            request, get_relay_settings(request), get_upstream_client(request)
        )

    for path in (prefix, prefix + "/{path:path}"):
        router.routes.append(Route(path, proxy_all, methods=None, include_in_schema=False))

    return router
