"""
Gateway context: owns the caches, clients and stores of one gateway instance.
"""

import time
from typing import Any, Callable, List, Optional

import httpx

from shared.config import GatewayConfig
from shared.errors import ConfigurationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector

from .adapters.platform_client import PlatformClient
from .adapters.procedure_gateway import ProcedureGateway
from .adapters.record_gateway import RecordGateway
from .adapters.role_lookup import PlatformRoleLookup
from .auth.session import SessionDecoder
from .auth.token_cache import ServiceCredential, TokenCache, TokenCacheRegistry
from .caching.application_cache import ApplicationCache
from .domain.route_authorization import RouteAuthorization
from .permissions.resolver import PermissionResolver
from .permissions.store import InMemoryPermissionStore, PermissionStore, PostgresPermissionStore


class GatewayContext:
    """Everything a gateway instance shares across requests.

    Upstream credentials are resolved on first use, so a context can be
    built (and the permission side used) without platform configuration.
    Tests build a fresh context per case.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        store: Optional[PermissionStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.logger = get_logger("gateway.context")
        self.metrics = metrics or get_metrics_collector(config.service_name)

        if store is None:
            if config.permissions_dsn:
                store = PostgresPermissionStore(config.permissions_dsn)
            else:
                self.logger.warning("No permissions DSN configured, using an empty in-memory store")
                store = InMemoryPermissionStore()
        self.store = store

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.upstream_timeout_seconds)

        self.token_caches = TokenCacheRegistry(
            client=self.http_client,
            safety_margin=config.token_safety_margin_seconds,
            timeout=config.upstream_timeout_seconds,
            clock=clock,
            metrics=self.metrics,
        )
        self.applications = ApplicationCache(
            self.store,
            ttl=config.application_cache_ttl_seconds,
            clock=clock,
            metrics=self.metrics,
        )
        self.resolver = PermissionResolver(
            self.store,
            administrator_role=config.administrator_role,
            metrics=self.metrics,
        )
        self.sessions = SessionDecoder(
            config.session_secret,
            algorithm=config.session_algorithm,
            cookie_names=config.session_cookie_names,
        )
        self.route_authorization = RouteAuthorization(
            sessions=self.sessions,
            resolver=self.resolver,
            applications=self.applications,
            role_lookup=self,
            simulation_cookie_name=config.simulation_cookie_name,
            app_simulation_cookie_name=config.app_simulation_cookie_name,
            public_path_prefixes=config.public_path_prefixes,
            public_exact_paths=config.public_exact_paths,
            public_app_routes=config.public_app_routes,
            landing_path=config.landing_path,
            access_denied_path=config.access_denied_path,
        )

        self._platform_client: Optional[PlatformClient] = None

    @property
    def credential(self) -> ServiceCredential:
        return ServiceCredential.from_config(self.config)

    @property
    def token_cache(self) -> TokenCache:
        return self.token_caches.get(self.credential)

    @property
    def platform_client(self) -> PlatformClient:
        if self._platform_client is None:
            if not self.config.platform_base_url:
                raise ConfigurationError(
                    "Upstream platform base URL is not configured",
                    details={"missing": ["platform_base_url"]},
                )
            self._platform_client = PlatformClient(
                self.config.platform_base_url,
                self.token_cache,
                client=self.http_client,
                timeout=self.config.upstream_timeout_seconds,
                metrics=self.metrics,
            )
        return self._platform_client

    @property
    def records(self) -> RecordGateway:
        return RecordGateway(self.platform_client)

    @property
    def procedures(self) -> ProcedureGateway:
        return ProcedureGateway(self.platform_client)

    @property
    def role_lookup(self) -> PlatformRoleLookup:
        return PlatformRoleLookup(self.records)

    async def roles_for_contact(self, contact_id: Any) -> List[str]:
        """Role lookup used by the impersonation override."""
        return await self.role_lookup.roles_for_contact(contact_id)

    async def start(self) -> None:
        if isinstance(self.store, PostgresPermissionStore):
            await self.store.start()
        self.logger.info("Gateway context started", store=type(self.store).__name__)

    async def aclose(self) -> None:
        await self.token_caches.aclose()
        if isinstance(self.store, PostgresPermissionStore):
            await self.store.stop()
        if self._owns_http_client:
            await self.http_client.aclose()
        self.logger.info("Gateway context closed")
