"""
Proxy Package
=============

This package implements the relay between the public edge and the internal
API service.

Main Components:
----------------
- trust.py: HeaderTrustGate, which public origin to believe
- paths.py: CallbackPathRouter, public prefix <-> internal path
- relay.py: ProxyRelay and ResponseRelay, the outbound call and its reply
- rewrite.py: RedirectRewriter, internal Location -> public Location
- routes.py: FastAPI catch-all router wiring the pipeline together
- errors.py: error types handled at the relay boundary

Usage:
------
    from bff_relay.proxy import create_proxy_router
    app.include_router(create_proxy_router(settings.PUBLIC_PREFIX))
"""

from .routes import create_proxy_router

__all__ = ["create_proxy_router"]
