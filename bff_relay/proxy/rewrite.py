"""
Location header rewriting.

The internal service addresses redirects to itself, using hostnames that
only resolve inside the private network. Those are rewritten to the public
origin and moved back under the public prefix; everything else, notably
redirects to the identity provider, passes through byte for byte.
"""

import logging
from typing import Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from ..config import Settings
from ..models import PublicOrigin
from .errors import MalformedRedirectError
from .paths import to_public_path

logger = logging.getLogger("bff_relay.proxy.rewrite")


def _split_authority(location: str) -> Tuple[str, str]:
    """Lowercased (host, netloc) of an absolute URL; empty for relative references."""
    try:
        parts = urlsplit(location.strip())
        return (parts.hostname or "").lower(), parts.netloc.lower()
    except ValueError:
        # urlsplit rejects e.g. unbalanced IPv6 brackets; fall back to the raw authority
        rest = location.strip().split("//", 1)
        if len(rest) != 2:
            return "", ""
        netloc = rest[1].split("/", 1)[0].lower()
        return netloc, netloc


def is_internal_location(
    location: str,
    settings: Settings,
    origin: Optional[PublicOrigin] = None,
) -> bool:
    """
    True if the Location points at an internal-only address.

    A Location already on the public origin is never internal, even when
    the public host matches an internal host pattern.
    """
    host, netloc = _split_authority(location)
    if not host:
        return False
    if origin is not None and netloc == origin.host.lower():
        return False
    if netloc == settings.internal_api_netloc:
        return True
    return any(
        pattern in host or host == pattern.strip(".")
        for pattern in settings.internal_host_patterns_list
    )


def _rewrite(location: str, origin: PublicOrigin, settings: Settings) -> str:
    try:
        parts = urlsplit(location.strip())
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError as e:
        raise MalformedRedirectError(location, str(e))

    if parts.scheme and parts.scheme.lower() not in ("http", "https"):
        raise MalformedRedirectError(location, f"unsupported scheme {parts.scheme!r}")

    path = to_public_path(parts.path or "/", settings)
    return urlunsplit((origin.scheme, origin.host, path, parts.query, parts.fragment))


def rewrite_location(location: str, origin: PublicOrigin, settings: Settings) -> str:
    """
    Rewrite an internal Location to the public origin.

    Only scheme and host are replaced; the public prefix is re-added when
    the path lacks it; query and fragment are preserved exactly.

    Args:
        location: Raw Location header value
        origin: Public origin of the current request
        settings: Relay settings

    Returns:
        The rewritten value, or the original string if it is not internal
        or cannot be parsed
    """
    if not is_internal_location(location, settings, origin):
        return location

    try:
        rewritten = _rewrite(location, origin, settings)
    except MalformedRedirectError as e:
        logger.warning(
            "Leaving malformed internal redirect unrewritten",
            extra={"location": location, "reason": e.reason},
        )
        return location

    logger.info(
        "Rewrote internal Location header",
        extra={"original": location, "rewritten": rewritten},
    )
    return rewritten
