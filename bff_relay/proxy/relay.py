"""
Proxy relay and response relay.

Every inbound request produces exactly one outbound request on the shared
httpx client. Redirects are never followed: a 3xx goes back to the public
client untouched apart from the Location rewrite, because following it here
would either leak an internal URL or complete a login step the browser has
to see. Failures are not retried.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Iterable, Set, Tuple

import httpx
from fastapi import Request
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from ..config import Settings
from ..models import (
    HeaderList,
    InternalTarget,
    ProxyRequestContext,
    ProxyResponseContext,
    PublicOrigin,
)
from .errors import RelayError, UpstreamUnavailableError
from .paths import to_internal_path
from .rewrite import rewrite_location
from .trust import (
    FORWARDED_FOR_HEADER,
    FORWARDED_HOST_HEADER,
    FORWARDED_PROTO_HEADER,
    PUBLIC_HOST_HEADER,
    PUBLIC_PROTO_HEADER,
)

logger = logging.getLogger("bff_relay.proxy.relay")

BODYLESS_METHODS = {"GET", "HEAD"}

LOOPBACK_ADDRESS = "::1"

DISCONNECT_POLL_SECONDS = 0.5

# Connection management, never copied onto the outbound request
REQUEST_EXCLUDED_HEADERS = {
    "host",
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "te",
    "upgrade",
    "content-length",
}

# Always replaced by the relay's own values
RELAY_OWNED_HEADERS = {
    FORWARDED_HOST_HEADER.lower(),
    FORWARDED_PROTO_HEADER.lower(),
    FORWARDED_FOR_HEADER.lower(),
    PUBLIC_HOST_HEADER.lower(),
    PUBLIC_PROTO_HEADER.lower(),
}

# Hop-by-hop headers (RFC 7230 section 6.1) dropped from relayed responses
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


class ClientDisconnectedError(RelayError):
    """The public client went away before the internal service answered."""


def _connection_tokens(headers: Iterable[Tuple[str, str]]) -> Set[str]:
    """Header names listed in Connection, which are hop-by-hop as well."""
    tokens = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(token.strip().lower() for token in value.split(",") if token.strip())
    return tokens


def create_upstream_client(settings: Settings) -> httpx.AsyncClient:
    """
    Build the shared client for the internal service.

    Accept-Encoding defaults to identity so the relay never receives a
    compression the public client did not ask for; an inbound
    Accept-Encoding still overrides it per request.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.PROXY_TIMEOUT_SECONDS, connect=settings.CONNECT_TIMEOUT_SECONDS),
        follow_redirects=False,
        verify=settings.VERIFY_UPSTREAM_TLS,
        headers={"Accept-Encoding": "identity"},
    )


# ============================================================================
# Proxy Relay
# ============================================================================

async def build_request_context(request: Request) -> ProxyRequestContext:
    """Capture the inbound request once; the rest of the pipeline reads this."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
    else:
        path = request.url.path

    return ProxyRequestContext(
        method=request.method.upper(),
        path=path,
        query=request.url.query,
        headers=list(request.headers.items()),
        body=await request.body(),
        client_address=request.client.host if request.client else None,
    )


def build_internal_target(ctx: ProxyRequestContext, settings: Settings) -> InternalTarget:
    return InternalTarget(
        base_url=settings.internal_api_url_str,
        path=to_internal_path(ctx.path, settings),
        query=ctx.query,
    )


def build_outbound_headers(ctx: ProxyRequestContext, origin: PublicOrigin) -> HeaderList:
    """
    Headers for the outbound request.

    Inbound headers are copied in order (Cookie included) minus connection
    management and any client-supplied forwarded values. The public origin
    is then sent under both the standard X-Forwarded-* names and the
    dedicated X-Public-* pair the internal service trusts.
    """
    excluded = REQUEST_EXCLUDED_HEADERS | RELAY_OWNED_HEADERS | _connection_tokens(ctx.headers)
    headers = [(name, value) for name, value in ctx.headers if name.lower() not in excluded]

    headers.extend([
        (FORWARDED_HOST_HEADER, origin.host),
        (FORWARDED_PROTO_HEADER, origin.scheme),
        (FORWARDED_FOR_HEADER, ctx.client_address or LOOPBACK_ADDRESS),
        (PUBLIC_HOST_HEADER, origin.host),
        (PUBLIC_PROTO_HEADER, origin.scheme),
    ])
    return headers


async def _stream_body(upstream_response: httpx.Response, target_url: str) -> AsyncIterator[bytes]:
    """Yield the body exactly as received (no decompression)."""
    try:
        async for chunk in upstream_response.aiter_raw():
            yield chunk
    except httpx.RequestError as e:
        # Status and headers are already on the wire; the connection is aborted.
        logger.error(
            f"Upstream body stream failed: {e}",
            extra={"target_url": target_url, "exception_type": type(e).__name__},
        )
        raise
    finally:
        await upstream_response.aclose()


async def send_upstream(
    client: httpx.AsyncClient,
    target: InternalTarget,
    ctx: ProxyRequestContext,
    headers: HeaderList,
    settings: Settings,
) -> ProxyResponseContext:
    """
    Issue the single outbound call and capture the response head.

    Args:
        client: Shared upstream client
        target: Resolved internal destination
        ctx: Captured inbound request
        headers: Outbound headers from build_outbound_headers
        settings: Relay settings

    Returns:
        ProxyResponseContext whose body is still streaming

    Raises:
        UpstreamUnavailableError: On connect, TLS, protocol or timeout
            failure, or when no response head arrives within
            PROXY_TIMEOUT_SECONDS
    """
    content = None if ctx.method in BODYLESS_METHODS else ctx.body
    upstream_request = client.build_request(
        ctx.method,
        target.url,
        headers=headers,
        content=content,
    )

    try:
        upstream_response = await asyncio.wait_for(
            client.send(upstream_request, stream=True, follow_redirects=False),
            timeout=settings.PROXY_TIMEOUT_SECONDS,
        )
    except (httpx.RequestError, asyncio.TimeoutError) as e:
        raise UpstreamUnavailableError(target.url, e) from e

    return ProxyResponseContext(
        status_code=upstream_response.status_code,
        headers=upstream_response.headers.multi_items(),
        body=_stream_body(upstream_response, target.url),
        close=upstream_response.aclose,
    )


async def cancel_on_disconnect(request: Request, pending: Awaitable[ProxyResponseContext]) -> ProxyResponseContext:
    """
    Await the upstream call, cancelling it if the public client disconnects.

    Raises:
        ClientDisconnectedError: If the client went away first
    """
    task = asyncio.ensure_future(pending)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                break
    except BaseException:
        task.cancel()
        raise

    task.cancel()
    # The call may have finished while we checked; release its connection.
    outcome = (await asyncio.gather(task, return_exceptions=True))[0]
    if isinstance(outcome, ProxyResponseContext) and outcome.close:
        await outcome.close()
    raise ClientDisconnectedError("Client disconnected before upstream responded")


# ============================================================================
# Response Relay
# ============================================================================

def filter_response_headers(
    headers: Iterable[Tuple[str, str]],
    origin: PublicOrigin,
    settings: Settings,
) -> HeaderList:
    """
    Drop hop-by-hop headers and rewrite Location; keep order and duplicates.
    """
    headers = list(headers)
    excluded = HOP_BY_HOP_HEADERS | _connection_tokens(headers)

    relayed = []
    for name, value in headers:
        name_lower = name.lower()
        if name_lower in excluded:
            continue
        if name_lower == "location":
            value = rewrite_location(value, origin, settings)
        relayed.append((name, value))
    return relayed


def relay_response(
    response_ctx: ProxyResponseContext,
    origin: PublicOrigin,
    settings: Settings,
) -> StreamingResponse:
    """
    Build the client response: verbatim status, filtered headers, raw body.

    Content-Length from the internal service is relayed as is and never
    recomputed; the body is passed through without transformation.
    """
    response = StreamingResponse(
        response_ctx.body,
        status_code=response_ctx.status_code,
        background=BackgroundTask(response_ctx.close) if response_ctx.close else None,
    )
    for name, value in filter_response_headers(response_ctx.headers, origin, settings):
        response.headers.append(name, value)
    return response
