"""
Data Models Module

This module defines the Pydantic models that flow through the relay
pipeline, plus the JSON bodies of the few responses the relay produces
itself.

Models are organized by functional area:
- Origin and target models (who the client sees, where the request goes)
- Request/response context models (captured once per request)
- System models (health check, error responses)
"""

from typing import Any, Awaitable, Callable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


HeaderList = List[Tuple[str, str]]


# ============================================================================
# Origin and Target Models
# ============================================================================

class PublicOrigin(BaseModel):
    """Scheme and host the public client actually uses."""

    model_config = ConfigDict(frozen=True)

    scheme: Literal["http", "https"] = Field(..., description="Public scheme")
    host: str = Field(..., description="Public host[:port]", min_length=1)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


class InternalTarget(BaseModel):
    """Resolved destination of one request on the internal service."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(..., description="Internal base URL without trailing slash")
    path: str = Field(..., description="Internal path, always starting with '/'")
    query: str = Field(default="", description="Raw query string without '?'")

    @property
    def url(self) -> str:
        url = f"{self.base_url.rstrip('/')}{self.path}"
        if self.query:
            url = f"{url}?{self.query}"
        return url


# ============================================================================
# Request/Response Context Models
# ============================================================================

class ProxyRequestContext(BaseModel):
    """Inbound request as captured at the relay boundary."""

    model_config = ConfigDict(frozen=True)

    method: str = Field(..., description="HTTP method, upper case")
    path: str = Field(..., description="Raw public path, still percent-encoded")
    query: str = Field(default="", description="Raw query string without '?'")
    headers: HeaderList = Field(default_factory=list, description="Ordered header multimap")
    body: bytes = Field(default=b"", description="Buffered request body")
    client_address: Optional[str] = Field(None, description="Immediate socket peer address")


class ProxyResponseContext(BaseModel):
    """Internal service reply; the body is still being streamed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status_code: int = Field(..., description="Upstream status code")
    headers: HeaderList = Field(default_factory=list, description="Ordered header multimap")
    body: Any = Field(..., description="Async iterator over the raw body bytes")
    close: Optional[Callable[[], Awaitable[None]]] = Field(
        None, description="Releases the upstream connection"
    )


# ============================================================================
# System Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Body of every error response the relay creates itself."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Diagnostic detail (development only)")
