"""
Test helper functions and factory methods for the portal platform gateway.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import unquote

import httpx
from jose import jwt

from shared.config import GatewayConfig

TEST_SESSION_SECRET = "portal-test-session-secret"
TEST_PLATFORM_BASE_URL = "https://mp.example.org/ministryplatformapi"


@dataclass
class PortalUser:
    """Portal user as seen by the session token."""
    email: str
    roles: List[str]
    user_id: str = "1"
    name: str = "Portal User"


class PortalDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def create_users() -> Dict[str, PortalUser]:
        """Create test users keyed by persona."""
        return {
            "admin": PortalUser(
                email="admin@church.example",
                roles=["Administrators", "Staff"],
                user_id="100",
                name="Ada Admin",
            ),
            "staff": PortalUser(
                email="staff@church.example",
                roles=["Staff", "Budget Viewers"],
                user_id="200",
                name="Sam Staff",
            ),
            "editor": PortalUser(
                email="editor@church.example",
                roles=["Budget Editors"],
                user_id="300",
                name="Eve Editor",
            ),
            "member": PortalUser(
                email="member@church.example",
                roles=[],
                user_id="400",
                name="Morgan Member",
            ),
        }


class SessionTokenGenerator:
    """Generate signed session tokens for testing."""

    def __init__(self, secret: str = TEST_SESSION_SECRET, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def generate(self, user: PortalUser, expires_in: int = 3600, **extra_claims: Any) -> str:
        """Generate a session token for ``user``."""
        now = int(time.time())
        payload = {
            "sub": user.user_id,
            "userId": user.user_id,
            "email": user.email,
            "name": user.name,
            "roles": user.roles,
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(extra_claims)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)


PlatformReply = Union[Any, Callable[[httpx.Request], httpx.Response]]


@dataclass
class FakePlatform:
    """In-process stand-in for the upstream platform, served through httpx.MockTransport."""

    base_url: str = TEST_PLATFORM_BASE_URL
    expires_in: int = 3600
    token_status: int = 200
    tables: Dict[str, PlatformReply] = field(default_factory=dict)
    procedures: Dict[str, PlatformReply] = field(default_factory=dict)
    requests: List[httpx.Request] = field(default_factory=list)
    token_grants: int = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def add_table(self, name: str, reply: PlatformReply) -> None:
        self.tables[name] = reply

    def add_procedure(self, name: str, reply: PlatformReply) -> None:
        self.procedures[name] = reply

    def upstream_requests(self) -> List[httpx.Request]:
        """Requests other than token grants."""
        return [r for r in self.requests if not r.url.path.endswith("/oauth/connect/token")]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/oauth/connect/token"):
            self.token_grants += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={
                "access_token": f"service-token-{self.token_grants}",
                "token_type": "Bearer",
                "expires_in": self.expires_in,
            })

        for marker, registry in (("/tables/", self.tables), ("/procs/", self.procedures)):
            if marker in path:
                name = unquote(path.split(marker, 1)[1])
                if name not in registry:
                    return httpx.Response(404, text=f"{name} not found")
                reply = registry[name]
                if callable(reply):
                    return reply(request)
                return httpx.Response(200, json=reply)

        return httpx.Response(404, text="unknown endpoint")


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content.decode() or "null")


def make_gateway_config(**overrides: Any) -> GatewayConfig:
    """Gateway configuration pointing at the fake platform."""
    values: Dict[str, Any] = {
        "env": "test",
        "log_level": "warning",
        "platform_base_url": TEST_PLATFORM_BASE_URL,
        "platform_client_id": "portal-client",
        "platform_client_secret": "portal-client-secret",
        "session_secret": TEST_SESSION_SECRET,
        "permissions_dsn": None,
    }
    values.update(overrides)
    return GatewayConfig(**values)


def token_response(access_token: str = "service-token", expires_in: Optional[int] = 3600) -> httpx.Response:
    payload: Dict[str, Any] = {"access_token": access_token, "token_type": "Bearer"}
    if expires_in is not None:
        payload["expires_in"] = expires_in
    return httpx.Response(200, json=payload)


# Global instances for easy access
portal_data_factory = PortalDataFactory()
session_token_generator = SessionTokenGenerator()
