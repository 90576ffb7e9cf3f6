"""
Permission storage: applications and their role/email grants.
"""

from typing import Dict, Iterable, List, Optional, Protocol

import asyncpg

from shared.errors import PermissionStoreUnavailable
from shared.logging import get_logger

from ..domain.models import ApplicationRecord, PermissionRecord


class PermissionStore(Protocol):
    """Read access to application records and permission grants."""

    async def get_application(self, key: str) -> Optional[ApplicationRecord]:
        ...

    async def list_applications(self) -> List[ApplicationRecord]:
        ...

    async def find_permissions(
        self,
        application: ApplicationRecord,
        roles: Iterable[str],
        email: Optional[str],
    ) -> List[PermissionRecord]:
        ...

    async def list_permissions(self, application: ApplicationRecord) -> List[PermissionRecord]:
        ...


class InMemoryPermissionStore:
    """Dictionary-backed store for development and tests."""

    def __init__(
        self,
        applications: Optional[Iterable[ApplicationRecord]] = None,
        permissions: Optional[Iterable[PermissionRecord]] = None,
    ):
        self._applications: Dict[str, ApplicationRecord] = {}
        self._permissions: List[PermissionRecord] = []
        for application in applications or ():
            self.add_application(application)
        for permission in permissions or ():
            self.add_permission(permission)

    def add_application(self, application: ApplicationRecord) -> None:
        self._applications[application.key] = application

    def add_permission(self, permission: PermissionRecord) -> None:
        self._permissions.append(permission)

    async def get_application(self, key: str) -> Optional[ApplicationRecord]:
        return self._applications.get(key)

    async def list_applications(self) -> List[ApplicationRecord]:
        return sorted(self._applications.values(), key=lambda app: (app.sort_order, app.key))

    async def find_permissions(
        self,
        application: ApplicationRecord,
        roles: Iterable[str],
        email: Optional[str],
    ) -> List[PermissionRecord]:
        role_set = set(roles)
        return [
            permission
            for permission in self._permissions
            if permission.application_key == application.key
            and (
                (permission.role_name is not None and permission.role_name in role_set)
                or (email is not None and permission.email == email)
            )
        ]

    async def list_permissions(self, application: ApplicationRecord) -> List[PermissionRecord]:
        return [p for p in self._permissions if p.application_key == application.key]


_APPLICATION_COLUMNS = "id, key, name, route, requires_auth, is_active, sort_order"
_DATABASE_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PostgresPermissionStore:
    """asyncpg-backed store over the ``applications`` and ``app_permissions`` tables."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 5, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("gateway.permissions.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
            )
            self.logger.info("Permission store started")
        except _DATABASE_ERRORS as e:
            self.logger.error("Failed to start permission store", error=str(e))
            raise PermissionStoreUnavailable("PERMISSION_STORE_START_FAILED", str(e))

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Permission store stopped")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise PermissionStoreUnavailable("PERMISSION_STORE_NOT_STARTED", "Permission store has not been started")
        return self.pool

    async def _query(self, operation: str, query: str, *args, single: bool = False):
        """Run one query, raising ``PermissionStoreUnavailable`` on database failures."""
        try:
            async with self._require_pool().acquire() as conn:
                if single:
                    return await conn.fetchrow(query, *args)
                return await conn.fetch(query, *args)
        except _DATABASE_ERRORS as e:
            self.logger.error("Permission store query failed", operation=operation, error=str(e))
            raise PermissionStoreUnavailable(
                "PERMISSION_STORE_QUERY_FAILED", str(e), {"operation": operation}
            )

    async def get_application(self, key: str) -> Optional[ApplicationRecord]:
        row = await self._query(
            "get_application",
            f"SELECT {_APPLICATION_COLUMNS} FROM applications WHERE key = $1",
            key,
            single=True,
        )
        return self._row_to_application(row) if row else None

    async def list_applications(self) -> List[ApplicationRecord]:
        rows = await self._query(
            "list_applications",
            f"SELECT {_APPLICATION_COLUMNS} FROM applications ORDER BY sort_order, key",
        )
        return [self._row_to_application(row) for row in rows]

    async def find_permissions(
        self,
        application: ApplicationRecord,
        roles: Iterable[str],
        email: Optional[str],
    ) -> List[PermissionRecord]:
        rows = await self._query(
            "find_permissions",
            """
            SELECT application_id, role_name, user_email, can_view, can_edit, can_delete
            FROM app_permissions
            WHERE application_id = $1
              AND (role_name = ANY($2::text[]) OR ($3::text IS NOT NULL AND user_email = $3))
            """,
            application.id,
            list(roles),
            email,
        )
        return [self._row_to_permission(application, row) for row in rows]

    async def list_permissions(self, application: ApplicationRecord) -> List[PermissionRecord]:
        rows = await self._query(
            "list_permissions",
            """
            SELECT application_id, role_name, user_email, can_view, can_edit, can_delete
            FROM app_permissions
            WHERE application_id = $1
            """,
            application.id,
        )
        return [self._row_to_permission(application, row) for row in rows]

    @staticmethod
    def _row_to_application(row) -> ApplicationRecord:
        return ApplicationRecord(
            id=row["id"],
            key=row["key"],
            name=row["name"],
            route=row["route"],
            requires_auth=bool(row["requires_auth"]),
            is_active=bool(row["is_active"]),
            sort_order=row["sort_order"] or 0,
        )

    @staticmethod
    def _row_to_permission(application: ApplicationRecord, row) -> PermissionRecord:
        return PermissionRecord(
            application_key=application.key,
            application_id=row["application_id"],
            role_name=row["role_name"],
            email=row["user_email"],
            can_view=bool(row["can_view"]),
            can_edit=bool(row["can_edit"]),
            can_delete=bool(row["can_delete"]),
        )
