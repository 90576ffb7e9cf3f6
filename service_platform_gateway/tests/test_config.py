"""
Unit tests for gateway configuration and error mapping.
"""

import pytest

from shared.config import GatewayConfig
from shared.errors import (
    AuthenticationFailure,
    ConfigurationError,
    MalformedUpstreamPayload,
    PermissionStoreUnavailable,
    PortalGatewayError,
    ProcedureNoData,
    SessionDecodeError,
    UpstreamRequestFailure,
    http_status_for,
)


class TestGatewayConfig:
    """Test cases for GatewayConfig."""

    def test_platform_environment_names_accepted(self, monkeypatch):
        monkeypatch.setenv("MINISTRY_PLATFORM_BASE_URL", "https://mp.example.org/ministryplatformapi")
        monkeypatch.setenv("MINISTRY_PLATFORM_CLIENT_ID", "portal-client")
        monkeypatch.setenv("NEXTAUTH_SECRET", "from-env")

        config = GatewayConfig(_env_file=None)

        assert config.platform_base_url == "https://mp.example.org/ministryplatformapi"
        assert config.platform_client_id == "portal-client"
        assert config.session_secret == "from-env"

    def test_prefixed_names(self, monkeypatch):
        monkeypatch.setenv("PORTAL_TOKEN_SAFETY_MARGIN_SECONDS", "120")
        monkeypatch.setenv("PORTAL_ENV", "production")

        config = GatewayConfig(_env_file=None)

        assert config.token_safety_margin_seconds == 120.0
        assert config.secure_cookies

    def test_defaults(self):
        config = GatewayConfig(_env_file=None)

        assert config.simulation_cookie_name == "admin-simulation"
        assert config.app_simulation_cookie_name == "admin-app-simulation"
        assert config.simulation_max_age_seconds == 4 * 60 * 60
        assert config.administrator_role == "Administrators"
        assert not config.secure_cookies


class TestHttpStatusFor:
    """Test cases for http_status_for."""

    @pytest.mark.parametrize("error, status", [
        (UpstreamRequestFailure("read", 404), 404),
        (UpstreamRequestFailure("read", 403), 403),
        (UpstreamRequestFailure("read", 500), 502),
        (UpstreamRequestFailure("read", None), 502),
        (AuthenticationFailure(), 503),
        (ConfigurationError(), 503),
        (MalformedUpstreamPayload("api_X"), 502),
        (ProcedureNoData("api_X"), 404),
        (SessionDecodeError(), 401),
        (PermissionStoreUnavailable("PERMISSION_STORE_QUERY_FAILED", "connection refused"), 503),
        (PortalGatewayError("OTHER", "other"), 400),
    ])
    def test_mapping(self, error, status):
        assert http_status_for(error) == status

    def test_error_response_body(self):
        body = ConfigurationError(details={"missing": ["session_secret"]}).to_response().model_dump()

        assert body["code"] == "CONFIGURATION_ERROR"
        assert body["details"] == {"missing": ["session_secret"]}
        assert body["trace_id"] is None
