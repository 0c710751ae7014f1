"""
BFF Relay Package

Backend-for-frontend reverse proxy that forwards public API traffic to an
internal service on a private network, keeping its OpenID Connect redirect
flow intact.

Modules:
- config: Settings loaded once from the environment
- models: Pydantic models passed through the relay pipeline
- proxy: The relay itself (trust gate, path router, relay, rewriter)
- receiver: ASGI middleware for internal services consuming X-Public-*
- main: FastAPI application factory and entry point
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
