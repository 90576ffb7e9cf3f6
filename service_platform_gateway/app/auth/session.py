"""
Session token decoding for portal requests.
"""

from typing import Any, Dict, List, Optional, Sequence

from fastapi import Request
from jose import JWTError, jwt

from shared.errors import ConfigurationError, SessionDecodeError
from shared.logging import get_logger

from ..domain.models import Identity

DEFAULT_SESSION_COOKIES = (
    "__Secure-next-auth.session-token",
    "next-auth.session-token",
)


def _extract_roles(claims: Dict[str, Any]) -> List[str]:
    roles = claims.get("roles")
    if isinstance(roles, str):
        return [role.strip() for role in roles.split(",") if role.strip()]
    if isinstance(roles, (list, tuple)):
        return [str(role) for role in roles if role]
    return []


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class SessionDecoder:
    """Turns the signed session token of a request into an Identity."""

    def __init__(
        self,
        secret: Optional[str],
        *,
        algorithm: str = "HS256",
        cookie_names: Sequence[str] = DEFAULT_SESSION_COOKIES,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.cookie_names = tuple(cookie_names)
        self.logger = get_logger("gateway.auth.session")

    def token_from_request(self, request: Request) -> Optional[str]:
        """Find the session token in the session cookies or a bearer header."""
        for name in self.cookie_names:
            token = request.cookies.get(name)
            if token:
                return token

        authorization = request.headers.get("Authorization")
        if authorization and authorization.startswith("Bearer "):
            token = authorization[7:].strip()
            return token or None
        return None

    def decode(self, token: str) -> Identity:
        """Verify ``token`` and build an Identity from its claims."""
        if not self.secret:
            raise ConfigurationError("Session secret is not configured", details={"missing": ["session_secret"]})

        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise SessionDecodeError("Session token could not be verified", details={"reason": str(exc)}) from exc

        user = claims.get("user") if isinstance(claims.get("user"), dict) else {}
        return Identity.of(
            _extract_roles(claims) or _extract_roles(user),
            email=_optional_str(claims.get("email") or user.get("email")),
            subject=_optional_str(claims.get("sub")),
            user_id=_optional_str(claims.get("userId") or claims.get("user_id") or user.get("id")),
            name=_optional_str(claims.get("name") or user.get("name")),
            claims=claims,
        )

    def identity_from_request(self, request: Request) -> Optional[Identity]:
        """Return the request's Identity, or None when there is no valid session."""
        token = self.token_from_request(request)
        if token is None:
            return None
        try:
            return self.decode(token)
        except SessionDecodeError as exc:
            self.logger.info("Rejected session token", reason=exc.details.get("reason"))
            return None
