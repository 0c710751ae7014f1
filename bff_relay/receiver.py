"""
Public Origin Middleware (receiving side)
=========================================

ASGI middleware for an internal Python service sitting behind the relay.
It applies the private ``X-Public-Proto`` / ``X-Public-Host`` pair to the
request scope, so URL generation in the service (OIDC redirect URIs in
particular) uses the public origin instead of its private hostname.

Only connections from ``trusted_hosts`` (the relay's addresses) are
honoured; ``"*"`` trusts every peer.

Usage:
------
    from bff_relay.receiver import PublicOriginMiddleware
    app.add_middleware(PublicOriginMiddleware, trusted_hosts=["10.0.0.5"])
"""

import logging
from typing import Iterable, List, Union

from starlette.types import ASGIApp, Receive, Scope, Send

from .config import PUBLIC_SCHEMES

logger = logging.getLogger("bff_relay.receiver")

_WS_SCHEME_MAP = {"https": "wss", "http": "ws"}


class PublicOriginMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        trusted_hosts: Union[str, Iterable[str]] = "127.0.0.1",
    ) -> None:
        self.app = app
        if isinstance(trusted_hosts, str):
            self.trusted_hosts: List[str] = [h.strip() for h in trusted_hosts.split(",") if h.strip()]
        else:
            self.trusted_hosts = list(trusted_hosts)
        self.always_trust = "*" in self.trusted_hosts

    def _is_trusted(self, scope: Scope) -> bool:
        if self.always_trust:
            return True
        client = scope.get("client")
        return bool(client) and client[0] in self.trusted_hosts

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket") or not self._is_trusted(scope):
            await self.app(scope, receive, send)
            return

        headers = dict(scope["headers"])
        proto = headers.get(b"x-public-proto", b"").decode("latin-1").strip().lower()
        host = headers.get(b"x-public-host", b"").decode("latin-1").strip()

        if proto in PUBLIC_SCHEMES:
            scope["scheme"] = _WS_SCHEME_MAP[proto] if scope["type"] == "websocket" else proto

        if host:
            scope["headers"] = [
                (name, value) for name, value in scope["headers"] if name != b"host"
            ] + [(b"host", host.encode("latin-1"))]

        if proto or host:
            logger.debug(
                "Applied public origin headers",
                extra={"public_proto": proto, "public_host": host},
            )

        await self.app(scope, receive, send)
