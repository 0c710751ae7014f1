"""
Unit Tests for Location Rewriting
=================================

Tests for bff_relay/proxy/rewrite.py
"""

import logging

import pytest

from bff_relay.config import Settings
from bff_relay.models import PublicOrigin
from bff_relay.proxy.rewrite import is_internal_location, rewrite_location


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        INTERNAL_API_URL="http://api-server:8080",
        PUBLIC_PREFIX="/api",
    )


@pytest.fixture
def origin():
    return PublicOrigin(scheme="https", host="app.example.com")


# ============================================================================
# Internal Detection
# ============================================================================

@pytest.mark.parametrize("location", [
    "http://api-server:8080/signin-oidc",
    "https://server.internal.example.net/foo",
    "https://myapi.purplesea-123.eastus.azurecontainerapps.io/signin-oidc",
    "HTTP://API-SERVER:8080/",
])
def test_internal_locations_detected(settings, location):
    assert is_internal_location(location, settings)


@pytest.mark.parametrize("location", [
    "https://login.microsoftonline.com/tenant/oauth2/v2.0/authorize",
    "https://app.example.com/api/foo",
    "/relative/path",
    "http://api-server:9999/other-port",
    "https://evilazurecontainerapps.io.attacker.example/",
])
def test_external_locations_not_detected(settings, location):
    assert not is_internal_location(location, settings)


# ============================================================================
# Rewriting
# ============================================================================

def test_rewrites_internal_redirect_with_prefix(settings, origin):
    result = rewrite_location("http://api-server:8080/signin-oidc?state=abc&code=1", origin, settings)
    assert result == "https://app.example.com/api/signin-oidc?state=abc&code=1"


def test_rewrite_keeps_existing_prefix(settings, origin):
    result = rewrite_location(
        "https://server.internal.example.net/api/signin-oidc", origin, settings
    )
    assert result == "https://app.example.com/api/signin-oidc"


def test_rewrite_preserves_query_and_fragment_exactly(settings, origin):
    location = "https://x.azurecontainerapps.io/cb?redirect_uri=http%3A%2F%2Fa%2Fb&x=%20#frag/part"
    result = rewrite_location(location, origin, settings)
    assert result == "https://app.example.com/api/cb?redirect_uri=http%3A%2F%2Fa%2Fb&x=%20#frag/part"


def test_rewrite_root_path(settings, origin):
    assert rewrite_location("http://api-server:8080", origin, settings) == "https://app.example.com/api/"


def test_identity_provider_redirect_passes_unchanged(settings, origin):
    location = (
        "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
        "?redirect_uri=https%3A%2F%2Fapp.example.com%2Fapi%2Fsignin-oidc"
    )
    assert rewrite_location(location, origin, settings) == location


def test_relative_location_unchanged(settings, origin):
    assert rewrite_location("/signin-oidc", origin, settings) == "/signin-oidc"


def test_malformed_internal_location_kept_and_logged(settings, origin, caplog):
    location = "http://svc.internal.example.net:notaport/signin-oidc"
    with caplog.at_level(logging.WARNING, logger="bff_relay.proxy.rewrite"):
        result = rewrite_location(location, origin, settings)

    assert result == location
    assert "malformed" in caplog.text.lower()


def test_non_http_internal_scheme_kept(settings, origin):
    location = "ftp://files.internal.example.net/report"
    assert rewrite_location(location, origin, settings) == location


def test_rewrite_uses_public_port(settings):
    origin = PublicOrigin(scheme="http", host="localhost:3000")
    result = rewrite_location("http://api-server:8080/", origin, settings)
    assert result == "http://localhost:3000/api/"


def test_internal_mesh_callback_rewritten(settings, origin):
    result = rewrite_location("https://svc.internal.mesh/signin-oidc?code=abc", origin, settings)
    assert result == "https://app.example.com/api/signin-oidc?code=abc"


def test_redirect_path_kept_exactly(settings, origin):
    result = rewrite_location("http://api-server:8080//files/../report/", origin, settings)
    assert result == "https://app.example.com/api//files/../report/"


# ============================================================================
# Public Origin on an Internal-Looking Domain
# ============================================================================

@pytest.fixture
def container_apps_origin():
    return PublicOrigin(scheme="https", host="webapp.purplesea.eastus.azurecontainerapps.io")


def test_location_on_public_origin_unchanged(settings, container_apps_origin):
    location = "https://webapp.purplesea.eastus.azurecontainerapps.io/dashboard"

    assert not is_internal_location(location, settings, container_apps_origin)
    assert rewrite_location(location, container_apps_origin, settings) == location


def test_sibling_internal_app_still_rewritten(settings, container_apps_origin):
    result = rewrite_location(
        "https://server.internal.purplesea.eastus.azurecontainerapps.io/signin-oidc",
        container_apps_origin,
        settings,
    )
    assert result == "https://webapp.purplesea.eastus.azurecontainerapps.io/api/signin-oidc"
