"""
Unit Tests for Configuration
============================

Tests for bff_relay/config.py: defaults, environment aliases, empty-value
fallback, validation and the startup configuration report.
"""

import ipaddress

import pytest
from pydantic import ValidationError

from bff_relay.config import Settings, validate_configuration


RELAY_ENV_VARS = [
    "INTERNAL_API_URL",
    "services__server__http__0",
    "services__server__https__0",
    "ApiUrl",
    "PUBLIC_HOSTNAME",
    "PUBLIC_HOST",
    "PUBLIC_PROTO",
    "PUBLIC_SCHEME",
    "PUBLIC_PREFIX",
    "CALLBACK_PATHS",
    "INTERNAL_HOST_PATTERNS",
    "PROXY_TRUST_POLICY",
    "TRUSTED_PROXIES",
    "ENVIRONMENT",
    "NODE_ENV",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an environment without relay variables"""
    for name in RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ============================================================================
# Defaults and Aliases
# ============================================================================

def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.internal_api_url_str == "http://localhost:5105"
    assert settings.PUBLIC_PREFIX == "/api"
    assert settings.callback_paths_list == ["signin-oidc", "signout-callback-oidc"]
    assert settings.internal_host_patterns_list == [".internal.", ".azurecontainerapps.io"]
    assert settings.PROXY_TRUST_POLICY == "none"
    assert settings.UNTRUSTED_ORIGIN_POLICY == "reject"
    assert settings.PUBLIC_HOSTNAME is None
    assert settings.VERIFY_UPSTREAM_TLS is True
    assert not settings.is_production


def test_internal_url_alias_order(monkeypatch):
    monkeypatch.setenv("ApiUrl", "http://apiurl:1")
    monkeypatch.setenv("services__server__https__0", "https://server:7001")

    assert Settings(_env_file=None).INTERNAL_API_URL == "https://server:7001"

    monkeypatch.setenv("services__server__http__0", "http://server:5000")
    assert Settings(_env_file=None).INTERNAL_API_URL == "http://server:5000"

    monkeypatch.setenv("INTERNAL_API_URL", "http://explicit:80/")
    settings = Settings(_env_file=None)
    assert settings.INTERNAL_API_URL == "http://explicit:80/"
    assert settings.internal_api_url_str == "http://explicit:80"
    assert settings.internal_api_netloc == "explicit:80"


def test_public_overrides_aliases(monkeypatch):
    monkeypatch.setenv("PUBLIC_HOST", "app.example.com")
    monkeypatch.setenv("PUBLIC_SCHEME", "HTTPS")

    settings = Settings(_env_file=None)

    assert settings.PUBLIC_HOSTNAME == "app.example.com"
    assert settings.PUBLIC_PROTO == "https"


def test_node_env_alias(monkeypatch):
    monkeypatch.setenv("NODE_ENV", "production")
    assert Settings(_env_file=None).is_production


def test_empty_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("INTERNAL_API_URL", "")
    monkeypatch.setenv("PUBLIC_PREFIX", "")
    monkeypatch.setenv("PUBLIC_HOSTNAME", "")
    monkeypatch.setenv("PROXY_TRUST_POLICY", "")

    settings = Settings(_env_file=None)

    assert settings.INTERNAL_API_URL == "http://localhost:5105"
    assert settings.PUBLIC_PREFIX == "/api"
    assert settings.PUBLIC_HOSTNAME is None
    assert settings.PROXY_TRUST_POLICY == "none"


def test_whitespace_values_fall_back_to_defaults():
    settings = Settings(_env_file=None, PUBLIC_PREFIX="   ", CALLBACK_PATHS=" ")
    assert settings.PUBLIC_PREFIX == "/api"
    assert settings.callback_paths_list == ["signin-oidc", "signout-callback-oidc"]


# ============================================================================
# Validation
# ============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("api", "/api"),
    ("/api/", "/api"),
    ("/backend/v1", "/backend/v1"),
])
def test_prefix_normalized(raw, expected):
    assert Settings(_env_file=None, PUBLIC_PREFIX=raw).PUBLIC_PREFIX == expected


@pytest.mark.parametrize("field, value", [
    ("PUBLIC_PREFIX", "/"),
    ("PUBLIC_PREFIX", "/api?x=1"),
    ("INTERNAL_API_URL", "api-server:8080"),
    ("INTERNAL_API_URL", "ftp://api-server"),
    ("PUBLIC_PROTO", "ws"),
    ("PROXY_TRUST_POLICY", "sometimes"),
    ("UNTRUSTED_ORIGIN_POLICY", "guess"),
    ("TRUSTED_PROXIES", "10.0.0.1, not-an-ip"),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_trusted_proxy_networks_parsed():
    settings = Settings(_env_file=None, TRUSTED_PROXIES="10.0.0.0/8, 192.168.1.1")
    assert settings.trusted_proxy_networks == [
        ipaddress.ip_network("10.0.0.0/8"),
        ipaddress.ip_network("192.168.1.1/32"),
    ]


def test_settings_are_frozen():
    settings = Settings(_env_file=None)
    with pytest.raises(ValidationError):
        settings.PUBLIC_PREFIX = "/other"


# ============================================================================
# Configuration Report
# ============================================================================

def test_default_configuration_is_valid():
    report = validate_configuration(Settings(_env_file=None))

    assert report["valid"] is True
    assert report["errors"] == []
    assert report["trust_policy"] == "none"
    assert report["public_prefix"] == "/api"


def test_allowlist_without_proxies_is_an_error():
    report = validate_configuration(Settings(_env_file=None, PROXY_TRUST_POLICY="allowlist"))

    assert report["valid"] is False
    assert any("TRUSTED_PROXIES" in error for error in report["errors"])


def test_trust_all_is_a_warning():
    report = validate_configuration(Settings(_env_file=None, PROXY_TRUST_POLICY="all"))

    assert report["valid"] is True
    assert any("'all'" in warning for warning in report["warnings"])


def test_production_without_tls_verification_is_an_error():
    settings = Settings(_env_file=None, ENVIRONMENT="prod", VERIFY_UPSTREAM_TLS=False)
    report = validate_configuration(settings)

    assert report["valid"] is False
    assert any("VERIFY_UPSTREAM_TLS" in error for error in report["errors"])
    assert any("PUBLIC_HOSTNAME" in warning for warning in report["warnings"])
