"""
Core data models for the platform gateway.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class Identity:
    """Authenticated identity for one request."""

    roles: FrozenSet[str]
    email: Optional[str] = None
    subject: Optional[str] = None
    user_id: Optional[str] = None
    name: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def of(cls, roles: Iterable[str], email: Optional[str] = None, **kwargs) -> "Identity":
        return cls(roles=frozenset(role for role in roles if role), email=email, **kwargs)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def with_roles(self, roles: Iterable[str]) -> "Identity":
        """Return a copy of this identity carrying a different role set."""
        return Identity(
            roles=frozenset(role for role in roles if role),
            email=self.email,
            subject=self.subject,
            user_id=self.user_id,
            name=self.name,
            claims=self.claims,
        )


@dataclass(frozen=True)
class ApplicationRecord:
    """A gated sub-app of the portal."""

    key: str
    route: str
    requires_auth: bool = True
    is_active: bool = True
    id: Optional[int] = None
    name: Optional[str] = None
    sort_order: int = 0


@dataclass(frozen=True)
class PermissionRecord:
    """Grant of capabilities on one application to a role or an email."""

    application_key: str
    role_name: Optional[str] = None
    email: Optional[str] = None
    can_view: bool = True
    can_edit: bool = False
    can_delete: bool = False
    application_id: Optional[int] = None

    def matches(self, identity: Identity) -> bool:
        if self.role_name is not None and self.role_name in identity.roles:
            return True
        return self.email is not None and self.email == identity.email


class EffectivePermission(BaseModel):
    """Capabilities an identity holds on an application. Derived, never stored."""

    has_access: bool = Field(..., description="Whether the application may be viewed")
    can_edit: bool = Field(False, description="Whether records may be edited")
    can_delete: bool = Field(False, description="Whether records may be deleted")
    reason: str = Field("", description="Which resolution step produced the decision")

    @classmethod
    def full(cls, reason: str) -> "EffectivePermission":
        return cls(has_access=True, can_edit=True, can_delete=True, reason=reason)

    @classmethod
    def none(cls, reason: str) -> "EffectivePermission":
        return cls(has_access=False, can_edit=False, can_delete=False, reason=reason)


class RolePermissionSummary(BaseModel):
    """Merged grants for one role name on an application."""

    role_name: str
    can_view: bool = False
    can_edit: bool = False
    can_delete: bool = False
