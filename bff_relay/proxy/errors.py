"""
Relay error types.

All three are handled at the relay boundary: the route or the exception
handlers in ``bff_relay.main`` turn them into well-formed HTTP responses.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for errors raised inside the relay pipeline."""


class UpstreamUnavailableError(RelayError):
    """The internal service could not be reached, timed out, or failed TLS."""

    def __init__(self, target_url: str, cause: Optional[BaseException] = None):
        self.target_url = target_url
        self.cause = cause
        reason = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Upstream {target_url} unavailable ({reason})")


class MalformedRedirectError(RelayError):
    """A Location header matched an internal address but is not a usable URL."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Malformed redirect {location!r}: {reason}")


class UntrustedOriginError(RelayError):
    """No trustworthy basis to compute the public origin of a request."""

    def __init__(self, client_address: Optional[str]):
        self.client_address = client_address
        super().__init__(f"Cannot derive a public origin for request from {client_address or 'unknown peer'}")
