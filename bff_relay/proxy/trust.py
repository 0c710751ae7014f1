"""
Header Trust Gate
=================

Decides which public origin (scheme + host) a request is attributed to.
The internal service builds its OIDC redirect URIs from this origin, so it
must never come from a header an external client could forge.

Precedence, evaluated separately for host and scheme:
---------------------------------------------------
1. Static configuration (PUBLIC_HOSTNAME / PUBLIC_PROTO)
2. X-Public-Host / X-Public-Proto, only from a trusted peer
3. X-Forwarded-Host / X-Forwarded-Proto, only from a trusted peer and only
   when TRUST_FORWARDED_HEADERS is enabled
4. The request's own Host header and scheme (https in production)

The dedicated X-Public-* pair is preferred over the X-Forwarded-* set
because mesh ingress layers rewrite or strip the standard names but leave
unknown headers alone. Which peers count as trusted is PROXY_TRUST_POLICY:
'none' (default), 'allowlist' (TRUSTED_PROXIES) or 'all'.
"""

import ipaddress
import logging
from typing import Iterable, Optional, Tuple

from ..config import PUBLIC_SCHEMES, Settings
from ..models import PublicOrigin
from .errors import UntrustedOriginError

logger = logging.getLogger("bff_relay.proxy.trust")

# Private relay <-> internal service protocol. Names are bit-exact.
PUBLIC_HOST_HEADER = "X-Public-Host"
PUBLIC_PROTO_HEADER = "X-Public-Proto"

FORWARDED_HOST_HEADER = "X-Forwarded-Host"
FORWARDED_PROTO_HEADER = "X-Forwarded-Proto"
FORWARDED_FOR_HEADER = "X-Forwarded-For"


def _first_header(headers: Iterable[Tuple[str, str]], name: str) -> Optional[str]:
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            value = value.strip()
            return value or None
    return None


def _first_list_entry(value: Optional[str]) -> Optional[str]:
    """First element of a comma-separated forwarded value (client-most hop)."""
    if not value:
        return None
    entry = value.split(",", 1)[0].strip()
    return entry or None


def _clean_scheme(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.lower()
    return value if value in PUBLIC_SCHEMES else None


def is_trusted_peer(client_address: Optional[str], settings: Settings) -> bool:
    """
    Apply PROXY_TRUST_POLICY to the immediate socket peer.

    Args:
        client_address: Peer IP as reported by the server, may be None
        settings: Relay settings

    Returns:
        True if the peer may supply X-Public-*/X-Forwarded-* headers
    """
    policy = settings.PROXY_TRUST_POLICY
    if policy == "all":
        return True
    if policy == "none" or not client_address:
        return False

    try:
        address = ipaddress.ip_address(client_address)
    except ValueError:
        return False
    return any(address in network for network in settings.trusted_proxy_networks)


def resolve_public_origin(
    headers: Iterable[Tuple[str, str]],
    client_address: Optional[str],
    request_scheme: str,
    settings: Settings,
) -> PublicOrigin:
    """
    Compute the PublicOrigin for one inbound request.

    Args:
        headers: Inbound header multimap
        client_address: Immediate socket peer address
        request_scheme: Scheme the relay itself was reached with
        settings: Relay settings

    Returns:
        PublicOrigin used for the forwarded headers and Location rewriting

    Raises:
        UntrustedOriginError: If no host can be derived and
            UNTRUSTED_ORIGIN_POLICY is 'reject'
    """
    headers = list(headers)
    trusted = is_trusted_peer(client_address, settings)

    host = settings.PUBLIC_HOSTNAME
    scheme = settings.PUBLIC_PROTO

    if trusted:
        host = host or _first_header(headers, PUBLIC_HOST_HEADER)
        scheme = scheme or _clean_scheme(_first_header(headers, PUBLIC_PROTO_HEADER))

        if settings.TRUST_FORWARDED_HEADERS:
            host = host or _first_list_entry(_first_header(headers, FORWARDED_HOST_HEADER))
            scheme = scheme or _clean_scheme(
                _first_list_entry(_first_header(headers, FORWARDED_PROTO_HEADER))
            )
    elif _first_header(headers, PUBLIC_HOST_HEADER) or _first_header(headers, PUBLIC_PROTO_HEADER):
        logger.debug(
            "Ignoring X-Public-* headers from untrusted peer",
            extra={"client_address": client_address},
        )

    host = host or _first_header(headers, "host")
    if not scheme:
        scheme = "https" if settings.is_production else (_clean_scheme(request_scheme) or "http")

    if not host:
        if settings.UNTRUSTED_ORIGIN_POLICY == "fallback":
            host = settings.FALLBACK_PUBLIC_HOST
        else:
            raise UntrustedOriginError(client_address)

    return PublicOrigin(scheme=scheme, host=host)
