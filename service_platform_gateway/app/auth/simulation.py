"""
Administrator role simulation and impersonation.

An administrator can browse the portal as if holding a literal set of
roles, or as if they were another contact. The override travels in a
short-lived cookie and is only honoured for administrators. A second
cookie narrows the administrator to a set of roles on one application
while every other application keeps the administrator bypass.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from shared.logging import get_logger

from ..domain.models import Identity

logger = get_logger("gateway.auth.simulation")


@dataclass(frozen=True)
class RoleSimulation:
    roles: Tuple[str, ...]
    admin_user_id: Optional[str] = None

    kind = "roles"

    @classmethod
    def of(cls, roles: Iterable[str], admin_user_id: Optional[str] = None) -> "RoleSimulation":
        return cls(roles=tuple(str(role) for role in roles if role), admin_user_id=admin_user_id)


@dataclass(frozen=True)
class ImpersonationSimulation:
    contact_id: int
    admin_user_id: Optional[str] = None

    kind = "impersonate"


@dataclass(frozen=True)
class AppSimulation:
    """Roles an administrator tries out on a single application."""

    application_key: str
    roles: Tuple[str, ...]
    admin_user_id: Optional[str] = None

    kind = "app"

    @classmethod
    def of(cls, application_key: str, roles: Iterable[str], admin_user_id: Optional[str] = None) -> "AppSimulation":
        return cls(
            application_key=application_key,
            roles=tuple(str(role) for role in roles if role),
            admin_user_id=admin_user_id,
        )


SimulationOverride = Union[RoleSimulation, ImpersonationSimulation]


class RoleLookup(Protocol):
    async def roles_for_contact(self, contact_id: Any) -> List[str]:
        ...


def _coerce_contact_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def parse_simulation_cookie(value: Optional[str]) -> Optional[SimulationOverride]:
    """Decode the simulation cookie. Unreadable cookies count as no override."""
    if not value:
        return None
    try:
        data = json.loads(value)
    except ValueError:
        logger.warning("Ignoring unreadable simulation cookie")
        return None
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    if kind == RoleSimulation.kind:
        roles = data.get("roles")
        if not isinstance(roles, list):
            return None
        return RoleSimulation.of(roles, _optional_str(data.get("adminUserId")))

    if kind == ImpersonationSimulation.kind:
        contact_id = _coerce_contact_id(data.get("contactId"))
        if contact_id is None:
            return None
        return ImpersonationSimulation(contact_id=contact_id, admin_user_id=_optional_str(data.get("adminUserId")))

    return None


def encode_simulation_cookie(override: SimulationOverride) -> str:
    if isinstance(override, RoleSimulation):
        payload: Dict[str, Any] = {"type": override.kind, "roles": list(override.roles)}
    else:
        payload = {"type": override.kind, "contactId": override.contact_id}
    if override.admin_user_id is not None:
        payload["adminUserId"] = override.admin_user_id
    return json.dumps(payload)


def parse_app_simulation_cookie(value: Optional[str]) -> Optional[AppSimulation]:
    """Decode the per-application simulation cookie."""
    if not value:
        return None
    try:
        data = json.loads(value)
    except ValueError:
        logger.warning("Ignoring unreadable application simulation cookie")
        return None
    if not isinstance(data, dict):
        return None

    application_key = data.get("applicationKey")
    roles = data.get("roles")
    if not isinstance(application_key, str) or not application_key or not isinstance(roles, list):
        return None
    return AppSimulation.of(application_key, roles, _optional_str(data.get("adminUserId")))


def encode_app_simulation_cookie(override: AppSimulation) -> str:
    payload: Dict[str, Any] = {"applicationKey": override.application_key, "roles": list(override.roles)}
    if override.admin_user_id is not None:
        payload["adminUserId"] = override.admin_user_id
    return json.dumps(payload)


def apply_app_simulation(
    identity: Identity,
    override: Optional[AppSimulation],
    application_key: str,
    *,
    administrator_role: str,
    session: Optional[Identity] = None,
) -> Identity:
    """Return the identity to authorize with on ``application_key``.

    The simulated roles replace the identity's roles on the named
    application only. ``session`` is the identity whose administrator role
    is checked; it defaults to ``identity``.
    """
    if override is None or override.application_key != application_key:
        return identity
    if not (session or identity).has_role(administrator_role):
        return identity
    return identity.with_roles(override.roles)


async def apply_simulation(
    identity: Identity,
    override: Optional[SimulationOverride],
    *,
    administrator_role: str,
    role_lookup: Optional[RoleLookup],
) -> Identity:
    """Return the identity whose roles authorization should use.

    Non-administrators are returned unchanged whatever the cookie says.
    An impersonation whose role lookup fails yields an identity with no
    roles, never the administrator's own.
    """
    if override is None or not identity.has_role(administrator_role):
        return identity

    if isinstance(override, RoleSimulation):
        logger.info("Applying role simulation", roles=list(override.roles))
        return identity.with_roles(override.roles)

    if role_lookup is None:
        logger.warning("Impersonation requested without a role lookup", contact_id=override.contact_id)
        return identity.with_roles(())

    try:
        roles = await role_lookup.roles_for_contact(override.contact_id)
    except Exception as exc:
        logger.warning(
            "Impersonation role lookup failed, continuing without roles",
            contact_id=override.contact_id,
            error=str(exc),
        )
        return identity.with_roles(())

    logger.info("Applying impersonation", contact_id=override.contact_id, role_count=len(roles))
    return identity.with_roles(roles)
