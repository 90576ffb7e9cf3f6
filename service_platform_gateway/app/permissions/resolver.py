"""
Effective permission resolution for portal applications.
"""

from typing import TYPE_CHECKING, Dict, List, Optional

from shared.logging import get_logger

from ..domain.models import ApplicationRecord, EffectivePermission, Identity, RolePermissionSummary
from .store import PermissionStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

DEFAULT_ADMINISTRATOR_ROLE = "Administrators"


class PermissionResolver:
    """Computes what an identity may do in one application.

    Resolution order, first match wins:

    1. unknown application key: permit (routes without a mapping stay open)
    2. application does not require authentication: full access
    3. application inactive: deny, administrators included
    4. administrator role: full access
    5. identity without roles: deny
    6. OR of the grants matching one of the roles or the email
    """

    def __init__(
        self,
        store: PermissionStore,
        *,
        administrator_role: str = DEFAULT_ADMINISTRATOR_ROLE,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.administrator_role = administrator_role
        self.metrics = metrics
        self.logger = get_logger("gateway.permissions.resolver")

    def is_administrator(self, identity: Optional[Identity]) -> bool:
        return identity is not None and identity.has_role(self.administrator_role)

    async def resolve(self, identity: Identity, application_key: str) -> EffectivePermission:
        application = await self.store.get_application(application_key)
        if application is None:
            return self._decide(EffectivePermission.full("unknown_application"), application_key)
        return await self.resolve_for(identity, application)

    async def resolve_for(self, identity: Identity, application: ApplicationRecord) -> EffectivePermission:
        """Resolve against an already loaded application record."""
        if not application.requires_auth:
            return self._decide(EffectivePermission.full("public_application"), application.key)

        if not application.is_active:
            return self._decide(EffectivePermission.none("inactive_application"), application.key)

        if self.is_administrator(identity):
            return self._decide(EffectivePermission.full("administrator"), application.key)

        if not identity.roles:
            return self._decide(EffectivePermission.none("no_roles"), application.key)

        grants = await self.store.find_permissions(application, identity.roles, identity.email)
        matching = [grant for grant in grants if grant.matches(identity)]

        permission = EffectivePermission(
            has_access=any(grant.can_view for grant in matching),
            can_edit=any(grant.can_edit for grant in matching),
            can_delete=any(grant.can_delete for grant in matching),
            reason="grants" if matching else "no_matching_grants",
        )
        return self._decide(permission, application.key)

    async def role_summaries(self, application_key: str) -> Optional[List[RolePermissionSummary]]:
        """Merged capabilities per role name, for the role simulation picker.

        Returns None when the application does not exist.
        """
        application = await self.store.get_application(application_key)
        if application is None:
            return None

        merged: Dict[str, RolePermissionSummary] = {}
        for grant in await self.store.list_permissions(application):
            if not grant.role_name:
                continue
            summary = merged.setdefault(grant.role_name, RolePermissionSummary(role_name=grant.role_name))
            summary.can_view = summary.can_view or grant.can_view
            summary.can_edit = summary.can_edit or grant.can_edit
            summary.can_delete = summary.can_delete or grant.can_delete

        return sorted(merged.values(), key=lambda summary: summary.role_name)

    def _decide(self, permission: EffectivePermission, application_key: str) -> EffectivePermission:
        if self.metrics:
            self.metrics.record_permission_decision(permission.has_access, permission.reason)
        self.logger.debug(
            "Permission resolved",
            application_key=application_key,
            has_access=permission.has_access,
            reason=permission.reason,
        )
        return permission
