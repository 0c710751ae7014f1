"""
Path mapping between the public prefix and the internal service.

Ingress strips the public prefix (``/api/foo`` -> ``/foo``) except for the
authentication callbacks, which the internal service registers with the
prefix (``/api/signin-oidc``). Redirect rewriting applies the inverse so a
rewritten Location routes back through ``to_internal_path`` to the same
internal path.
"""

import posixpath
from typing import Tuple

from ..config import Settings


def normalize_path(path: str) -> str:
    """
    Normalize a path: leading slash, no empty or dot segments, no query.

    A trailing slash is kept because it is significant to most backends.
    """
    path = path.split("?", 1)[0].split("#", 1)[0]
    if not path:
        return "/"
    trailing = path.endswith("/")
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    if trailing and normalized != "/":
        normalized += "/"
    return normalized


def _strip_prefix(path: str, prefix: str) -> Tuple[bool, str]:
    """Return (had_prefix, remainder); the prefix only matches a whole segment."""
    if path == prefix:
        return True, "/"
    if path.startswith(prefix + "/"):
        return True, path[len(prefix):]
    return False, path


def has_public_prefix(path: str, settings: Settings) -> bool:
    return _strip_prefix(normalize_path(path), settings.PUBLIC_PREFIX)[0]


def is_callback_path(path: str, settings: Settings) -> bool:
    """True for sign-in/sign-out completion paths, with or without the prefix."""
    _, remainder = _strip_prefix(normalize_path(path), settings.PUBLIC_PREFIX)
    return remainder.strip("/") in settings.callback_paths_list


def to_internal_path(public_path: str, settings: Settings) -> str:
    """
    Map a public path to the path the internal service expects.

    Examples:
        /api/signin-oidc -> /api/signin-oidc
        /api/foo         -> /foo
        /api             -> /
    """
    path = normalize_path(public_path)
    if is_callback_path(path, settings):
        return path
    _, remainder = _strip_prefix(path, settings.PUBLIC_PREFIX)
    return remainder or "/"


def to_public_path(internal_path: str, settings: Settings) -> str:
    """
    Map an internal path back into the public URL space.

    The path is kept exactly as given (no dot-segment or slash folding);
    only the prefix is added when it is missing.

    Examples:
        /signin-oidc     -> /api/signin-oidc
        /                -> /api/
        /api/signin-oidc -> /api/signin-oidc
    """
    path = internal_path or "/"
    if not path.startswith("/"):
        path = "/" + path
    if _strip_prefix(path, settings.PUBLIC_PREFIX)[0]:
        return path
    return settings.PUBLIC_PREFIX + path
