"""
Configuration module for the BFF relay.

This module uses Pydantic Settings to load and validate environment variables
for the internal API location, the public origin overrides, the forwarded
header trust policy, and the path rules shared by ingress routing and
redirect rewriting.

Environment variables are loaded from .env file or system environment.
Values are only checked for being non-empty: an empty variable behaves
exactly like an absent one and falls back to the documented default.
"""

import ipaddress
from functools import lru_cache
from typing import Any, List, Optional, Union
from urllib.parse import urlsplit

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

TRUST_POLICIES = ("none", "allowlist", "all")
UNTRUSTED_ORIGIN_POLICIES = ("reject", "fallback")
PUBLIC_SCHEMES = ("http", "https")


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Relay settings loaded from environment variables.

    The instance is frozen: it is built once at startup and handed to every
    component explicitly, so request handling never reads the environment.
    """

    # =========================================================================
    # Internal Service
    # =========================================================================

    INTERNAL_API_URL: str = Field(
        default="http://localhost:5105",
        description="Base URL (scheme + host) of the internal API service",
        validation_alias=AliasChoices(
            "INTERNAL_API_URL",
            "services__server__http__0",
            "services__server__https__0",
            "ApiUrl",
        ),
    )

    VERIFY_UPSTREAM_TLS: bool = Field(
        default=True,
        description="Verify the internal service's TLS certificate (disable only for self-signed dev certs)",
    )

    PROXY_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Upper bound for waiting on the internal service's response headers",
        gt=0,
    )

    CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Connect timeout for the internal service",
        gt=0,
    )

    # =========================================================================
    # Public Origin
    # =========================================================================

    PUBLIC_HOSTNAME: Optional[str] = Field(
        default=None,
        description="Public host[:port] clients use; overrides every header-derived value",
        validation_alias=AliasChoices("PUBLIC_HOSTNAME", "PUBLIC_HOST"),
    )

    PUBLIC_PROTO: Optional[str] = Field(
        default=None,
        description="Public scheme (http or https); overrides every header-derived value",
        validation_alias=AliasChoices("PUBLIC_PROTO", "PUBLIC_SCHEME"),
    )

    FALLBACK_PUBLIC_HOST: str = Field(
        default="localhost:3000",
        description="Host used when no origin can be derived and UNTRUSTED_ORIGIN_POLICY is 'fallback'",
    )

    UNTRUSTED_ORIGIN_POLICY: str = Field(
        default="reject",
        description="What to do when no public host can be derived: 'reject' or 'fallback'",
    )

    # =========================================================================
    # Forwarded Header Trust
    # =========================================================================

    PROXY_TRUST_POLICY: str = Field(
        default="none",
        description="Which peers may supply X-Public-*/X-Forwarded-* headers: 'none', 'allowlist' or 'all'",
    )

    TRUSTED_PROXIES: Optional[str] = Field(
        default=None,
        description="Comma-separated proxy IPs or CIDR networks trusted under the 'allowlist' policy",
    )

    TRUST_FORWARDED_HEADERS: bool = Field(
        default=False,
        description="Also accept standard X-Forwarded-Host/Proto from trusted peers",
    )

    # =========================================================================
    # Path Rules
    # =========================================================================

    PUBLIC_PREFIX: str = Field(
        default="/api",
        description="Path prefix separating proxied API traffic from frontend-owned traffic",
    )

    CALLBACK_PATHS: str = Field(
        default="signin-oidc,signout-callback-oidc",
        description="Comma-separated authentication callback names that keep the public prefix",
    )

    INTERNAL_HOST_PATTERNS: str = Field(
        default=".internal.,.azurecontainerapps.io",
        description="Comma-separated host fragments identifying internal-only addresses",
    )

    # =========================================================================
    # Relay Server Configuration
    # =========================================================================

    ENVIRONMENT: str = Field(
        default="development",
        description="'development' or 'production'",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    RELAY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the relay server",
    )

    RELAY_PORT: int = Field(
        default=3000,
        description="Port to bind the relay server",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        default=None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_ignore_empty=True,
        frozen=True,
        populate_by_name=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def internal_api_url_str(self) -> str:
        """Internal base URL without trailing slash."""
        return self.INTERNAL_API_URL.rstrip("/")

    @property
    def internal_api_netloc(self) -> str:
        """Lowercased host[:port] of the internal base URL."""
        return urlsplit(self.INTERNAL_API_URL).netloc.lower()

    @property
    def callback_paths_list(self) -> List[str]:
        return [name.strip("/") for name in _split_csv(self.CALLBACK_PATHS)]

    @property
    def internal_host_patterns_list(self) -> List[str]:
        return [pattern.lower() for pattern in _split_csv(self.INTERNAL_HOST_PATTERNS)]

    @property
    def trusted_proxy_networks(self) -> List[IPNetwork]:
        """
        Parse TRUSTED_PROXIES into networks.

        A bare address becomes a single-host network.
        """
        return [
            ipaddress.ip_network(entry, strict=False)
            for entry in _split_csv(self.TRUSTED_PROXIES)
        ]

    @property
    def allowed_origins_list(self) -> List[str]:
        return _split_csv(self.ALLOWED_ORIGINS)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator(
        "INTERNAL_API_URL",
        "PUBLIC_HOSTNAME",
        "PUBLIC_PROTO",
        "FALLBACK_PUBLIC_HOST",
        "UNTRUSTED_ORIGIN_POLICY",
        "PROXY_TRUST_POLICY",
        "TRUSTED_PROXIES",
        "PUBLIC_PREFIX",
        "CALLBACK_PATHS",
        "INTERNAL_HOST_PATTERNS",
        "ENVIRONMENT",
        "LOG_LEVEL",
        "ALLOWED_ORIGINS",
        mode="before",
    )
    @classmethod
    def empty_means_default(cls, v: Any, info: ValidationInfo) -> Any:
        """Treat empty or whitespace-only values as absent."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("INTERNAL_API_URL")
    @classmethod
    def validate_internal_api_url(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme not in PUBLIC_SCHEMES or not parts.netloc:
            raise ValueError(
                f"INTERNAL_API_URL must be an absolute http(s) URL, got: {v}"
            )
        return v

    @field_validator("PUBLIC_PROTO")
    @classmethod
    def validate_public_proto(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower()
        if v not in PUBLIC_SCHEMES:
            raise ValueError(f"PUBLIC_PROTO must be one of {list(PUBLIC_SCHEMES)}, got: {v}")
        return v

    @field_validator("PROXY_TRUST_POLICY")
    @classmethod
    def validate_trust_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in TRUST_POLICIES:
            raise ValueError(
                f"PROXY_TRUST_POLICY must be one of {list(TRUST_POLICIES)}, got: {v}"
            )
        return v

    @field_validator("UNTRUSTED_ORIGIN_POLICY")
    @classmethod
    def validate_untrusted_origin_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in UNTRUSTED_ORIGIN_POLICIES:
            raise ValueError(
                f"UNTRUSTED_ORIGIN_POLICY must be one of {list(UNTRUSTED_ORIGIN_POLICIES)}, got: {v}"
            )
        return v

    @field_validator("TRUSTED_PROXIES")
    @classmethod
    def validate_trusted_proxies(cls, v: Optional[str]) -> Optional[str]:
        """
        Validate that every TRUSTED_PROXIES entry is an IP address or network.

        Raises:
            ValueError: If an entry cannot be parsed
        """
        for entry in _split_csv(v):
            try:
                ipaddress.ip_network(entry, strict=False)
            except ValueError:
                raise ValueError(
                    f"Invalid TRUSTED_PROXIES entry: '{entry}'. "
                    "Expected an IP address or CIDR network"
                )
        return v

    @field_validator("PUBLIC_PREFIX")
    @classmethod
    def validate_public_prefix(cls, v: str) -> str:
        """
        Validate the public prefix: leading slash, no trailing slash, not root.

        Raises:
            ValueError: If the prefix is the root path or contains a query
        """
        v = "/" + v.strip("/")
        if v == "/":
            raise ValueError("PUBLIC_PREFIX must not be the root path")
        if "?" in v or "#" in v:
            raise ValueError(f"PUBLIC_PREFIX must be a plain path, got: {v}")
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return "production" if v.lower() in ("production", "prod") else "development"

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create the process-wide Settings instance.

    Cached so the environment is read exactly once; the result is frozen.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If an environment variable holds an invalid value.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate security-relevant settings and return a status report.

    Called during application startup; errors are logged, not raised, so
    a misconfigured relay still starts and reports itself.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if settings.PROXY_TRUST_POLICY == "allowlist" and not settings.trusted_proxy_networks:
        errors.append("PROXY_TRUST_POLICY is 'allowlist' but TRUSTED_PROXIES is empty")

    if settings.PROXY_TRUST_POLICY == "all":
        warnings.append(
            "PROXY_TRUST_POLICY is 'all': X-Public-*/X-Forwarded-* headers from any peer are trusted"
        )

    if settings.TRUST_FORWARDED_HEADERS and settings.PROXY_TRUST_POLICY == "none":
        warnings.append("TRUST_FORWARDED_HEADERS has no effect while PROXY_TRUST_POLICY is 'none'")

    if settings.is_production:
        if not settings.PUBLIC_HOSTNAME:
            warnings.append("PUBLIC_HOSTNAME is not set in production; redirect URIs follow the Host header")
        if not settings.VERIFY_UPSTREAM_TLS:
            errors.append("VERIFY_UPSTREAM_TLS is disabled in production")

    if not settings.callback_paths_list:
        warnings.append("CALLBACK_PATHS is empty; OIDC callbacks will lose the public prefix")

    if not settings.internal_host_patterns_list:
        warnings.append(
            "INTERNAL_HOST_PATTERNS is empty; only Location headers naming the internal API host are rewritten"
        )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "trust_policy": settings.PROXY_TRUST_POLICY,
        "public_prefix": settings.PUBLIC_PREFIX,
    }
