"""
Per-request route authorization for portal pages.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse

from shared.errors import PortalGatewayError
from shared.logging import get_logger, set_user_context

from ..auth.session import SessionDecoder
from ..auth.simulation import (
    AppSimulation,
    RoleLookup,
    SimulationOverride,
    apply_app_simulation,
    apply_simulation,
    parse_app_simulation_cookie,
    parse_simulation_cookie,
)
from ..caching.application_cache import ApplicationCache
from ..permissions.resolver import PermissionResolver
from .models import ApplicationRecord, EffectivePermission, Identity


def path_matches(path: str, prefix: str) -> bool:
    """True when ``path`` is ``prefix`` itself or lies underneath it."""
    if path == prefix:
        return True
    return path.startswith(prefix.rstrip("/") + "/")


@dataclass(frozen=True)
class RouteDecision:
    """Outcome of authorizing one request. Denials are values, not exceptions."""

    allowed: bool
    reason: str
    redirect_to: Optional[str] = None
    identity: Optional[Identity] = None
    session_identity: Optional[Identity] = None
    simulation: Optional[SimulationOverride] = None
    app_simulation: Optional[AppSimulation] = None
    application: Optional[ApplicationRecord] = None
    permission: Optional[EffectivePermission] = None


@dataclass(frozen=True)
class RequestIdentity:
    """Identity of a request before and after the simulation override."""

    session: Identity
    effective: Identity
    simulation: Optional[SimulationOverride]
    app_simulation: Optional[AppSimulation] = None


class RouteAuthorization:
    """Decides whether a page request proceeds or is redirected.

    Installed as HTTP middleware; ``decide`` holds the logic so it can be
    exercised without a running app.
    """

    def __init__(
        self,
        *,
        sessions: SessionDecoder,
        resolver: PermissionResolver,
        applications: ApplicationCache,
        role_lookup: Optional[RoleLookup] = None,
        simulation_cookie_name: str = "admin-simulation",
        app_simulation_cookie_name: str = "admin-app-simulation",
        public_path_prefixes: Sequence[str] = ("/api",),
        public_exact_paths: Sequence[str] = ("/", "/signin", "/403"),
        public_app_routes: Sequence[str] = ("/prayer",),
        landing_path: str = "/",
        access_denied_path: str = "/403",
    ):
        self.sessions = sessions
        self.resolver = resolver
        self.applications = applications
        self.role_lookup = role_lookup
        self.simulation_cookie_name = simulation_cookie_name
        self.app_simulation_cookie_name = app_simulation_cookie_name
        self.public_path_prefixes = tuple(public_path_prefixes)
        self.public_exact_paths = frozenset(public_exact_paths)
        self.public_app_routes = frozenset(public_app_routes)
        self.landing_path = landing_path
        self.access_denied_path = access_denied_path
        self.logger = get_logger("gateway.route_authorization")

    def is_static_public(self, path: str) -> bool:
        if path in self.public_exact_paths:
            return True
        if any(path_matches(path, prefix) for prefix in self.public_path_prefixes):
            return True
        return path in self.public_app_routes

    def denied_location(self, path: str) -> str:
        return f"{self.access_denied_path}?{urlencode({'path': path})}"

    async def identify(self, request: Request) -> Optional[RequestIdentity]:
        """Decode the session and apply any administrator simulation override."""
        identity = self.sessions.identity_from_request(request)
        if identity is None:
            return None

        simulation = parse_simulation_cookie(request.cookies.get(self.simulation_cookie_name))
        effective = await apply_simulation(
            identity,
            simulation,
            administrator_role=self.resolver.administrator_role,
            role_lookup=self.role_lookup,
        )
        if effective is identity:
            simulation = None

        app_simulation = None
        if identity.has_role(self.resolver.administrator_role):
            app_simulation = parse_app_simulation_cookie(request.cookies.get(self.app_simulation_cookie_name))
        return RequestIdentity(
            session=identity,
            effective=effective,
            simulation=simulation,
            app_simulation=app_simulation,
        )

    def identity_for(self, request_identity: RequestIdentity, application_key: str) -> Identity:
        """Identity to resolve permissions with on one application."""
        return apply_app_simulation(
            request_identity.effective,
            request_identity.app_simulation,
            application_key,
            administrator_role=self.resolver.administrator_role,
            session=request_identity.session,
        )

    async def decide(self, request: Request) -> RouteDecision:
        path = request.url.path

        if self.is_static_public(path):
            return RouteDecision(allowed=True, reason="public_path")

        public_routes: Iterable[str] = await self.applications.public_routes()
        if any(path_matches(path, route) for route in public_routes):
            return RouteDecision(allowed=True, reason="public_application")

        request_identity = await self.identify(request)
        if request_identity is None:
            return RouteDecision(allowed=False, reason="no_session", redirect_to=self.landing_path)

        base = dict(
            identity=request_identity.effective,
            session_identity=request_identity.session,
            simulation=request_identity.simulation,
        )

        application = await self.applications.application_for_path(path)
        if application is None:
            return RouteDecision(allowed=True, reason="unmapped_route", **base)

        identity = self.identity_for(request_identity, application.key)
        app_simulation = request_identity.app_simulation if identity is not request_identity.effective else None
        base.update(identity=identity, app_simulation=app_simulation)

        permission = await self.resolver.resolve_for(identity, application)
        if not permission.has_access:
            self.logger.info(
                "Route access denied",
                path=path,
                application_key=application.key,
                reason=permission.reason,
                simulated=request_identity.simulation is not None or app_simulation is not None,
            )
            return RouteDecision(
                allowed=False,
                reason=permission.reason,
                redirect_to=self.denied_location(path),
                application=application,
                permission=permission,
                **base,
            )

        return RouteDecision(
            allowed=True,
            reason=permission.reason,
            application=application,
            permission=permission,
            **base,
        )

    async def __call__(self, request: Request, call_next):
        try:
            decision = await self.decide(request)
        except PortalGatewayError as exc:
            self.logger.error("Route authorization failed", path=request.url.path, code=exc.code)
            return JSONResponse(status_code=503, content=exc.to_response().model_dump())

        request.state.identity = decision.identity
        request.state.session_identity = decision.session_identity
        request.state.simulation = decision.simulation
        request.state.app_simulation = decision.app_simulation
        request.state.application = decision.application
        request.state.permission = decision.permission
        if decision.session_identity is not None:
            set_user_context(decision.session_identity.email)

        if not decision.allowed:
            return RedirectResponse(decision.redirect_to, status_code=307)
        return await call_next(request)
