"""
Shared configuration management for the portal platform gateway.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8080

    # Observability
    enable_tracing: bool = False
    otel_exporter: str = "http://localhost:4317"


class GatewayConfig(BaseConfig):
    """Configuration for the platform gateway.

    Upstream credentials are optional here on purpose: a missing value only
    becomes an error when the gateway first needs it.
    """

    service_name: str = "gateway"

    # Upstream platform
    platform_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_PLATFORM_BASE_URL", "MINISTRY_PLATFORM_BASE_URL"),
    )
    platform_token_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_PLATFORM_TOKEN_URL", "MINISTRY_PLATFORM_TOKEN_URL"),
    )
    platform_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_PLATFORM_CLIENT_ID", "MINISTRY_PLATFORM_CLIENT_ID"),
    )
    platform_client_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_PLATFORM_CLIENT_SECRET", "MINISTRY_PLATFORM_CLIENT_SECRET"),
    )
    platform_scope: str = "http://www.thinkministry.com/dataplatform/scopes/all"
    token_safety_margin_seconds: float = Field(default=300.0, gt=0)
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)

    # Route authorization
    application_cache_ttl_seconds: float = Field(default=60.0, gt=0)
    session_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_SESSION_SECRET", "NEXTAUTH_SECRET"),
    )
    session_algorithm: str = "HS256"
    session_cookie_names: List[str] = [
        "__Secure-next-auth.session-token",
        "next-auth.session-token",
    ]
    simulation_cookie_name: str = "admin-simulation"
    app_simulation_cookie_name: str = "admin-app-simulation"
    simulation_max_age_seconds: int = 60 * 60 * 4
    administrator_role: str = "Administrators"
    public_path_prefixes: List[str] = ["/api", "/_next", "/assets", "/favicon.ico", "/manifest.json"]
    public_exact_paths: List[str] = ["/", "/signin", "/403", "/health", "/metrics"]
    public_app_routes: List[str] = ["/prayer"]
    landing_path: str = "/"
    access_denied_path: str = "/403"

    # Permissions store
    permissions_dsn: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_PERMISSIONS_DSN", "DATABASE_URL"),
    )

    @property
    def secure_cookies(self) -> bool:
        return self.env == "production"


def get_config(**overrides) -> GatewayConfig:
    """Build gateway configuration from the environment plus explicit overrides."""
    return GatewayConfig(**overrides)
