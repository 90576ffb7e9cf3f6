"""
Platform gateway service for the portal.
"""

from typing import Any, Dict, List, Optional

from fastapi import Depends, HTTPException, Query, Request, Response
from pydantic import AliasChoices, BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from shared.base_service import BaseService
from shared.config import GatewayConfig, get_config
from shared.errors import ConfigurationError
from shared.metrics import get_metrics_collector

from .auth.simulation import (
    AppSimulation,
    ImpersonationSimulation,
    RoleSimulation,
    encode_app_simulation_cookie,
    encode_simulation_cookie,
    parse_simulation_cookie,
)
from .context import GatewayContext
from .domain.route_authorization import RequestIdentity


class SimulationRolesRequest(BaseModel):
    roles: List[str]


class ImpersonationRequest(BaseModel):
    contact_id: int = Field(..., gt=0, validation_alias=AliasChoices("contact_id", "contactId"))


class AppSimulationRequest(BaseModel):
    application_key: str = Field(..., min_length=1, validation_alias=AliasChoices("application_key", "applicationKey"))
    roles: List[str] = []


class PermissionResponse(BaseModel):
    application_key: str
    has_access: bool
    can_edit: bool
    can_delete: bool
    reason: str
    simulated: bool = False


class PortalGatewayService(BaseService):
    """Platform gateway service implementation."""

    def __init__(self, config: Optional[GatewayConfig] = None, *, context: Optional[GatewayContext] = None):
        if context is not None:
            config = context.config
        config = config or get_config()
        metrics = context.metrics if context is not None else get_metrics_collector(config.service_name)
        self.context = context or GatewayContext(config, metrics=metrics)
        super().__init__(config.service_name, config=config, metrics=metrics)

    async def startup(self):
        await self.context.start()

    async def shutdown(self):
        await self.context.aclose()

    def _setup_middleware(self):
        # Added first so the timing middleware wraps it and records redirects.
        self.app.add_middleware(BaseHTTPMiddleware, dispatch=self.context.route_authorization)
        super()._setup_middleware()

    async def _check_dependencies(self) -> Dict[str, Any]:
        dependencies: Dict[str, Any] = {}
        try:
            await self.context.store.list_applications()
            dependencies["permission_store"] = "ok"
        except Exception as e:
            self.logger.warning("Permission store check failed", error=str(e))
            dependencies["permission_store"] = "error"

        try:
            token_cache = self.context.token_cache
            dependencies["platform"] = "configured"
            dependencies["service_token"] = "cached" if token_cache.cached_token else "empty"
        except ConfigurationError:
            dependencies["platform"] = "unconfigured"

        return dependencies

    def _setup_routes(self):
        """Set up gateway routes."""
        super()._setup_routes()

        context = self.context
        config: GatewayConfig = self.config

        async def require_identity(request: Request) -> RequestIdentity:
            request_identity = await context.route_authorization.identify(request)
            if request_identity is None:
                raise HTTPException(status_code=401, detail="Authentication required")
            return request_identity

        async def require_administrator(
            request_identity: RequestIdentity = Depends(require_identity),
        ) -> RequestIdentity:
            # The session's own roles decide, not the simulated ones.
            if not context.resolver.is_administrator(request_identity.session):
                raise HTTPException(status_code=403, detail="Administrator access required")
            return request_identity

        def set_simulation_cookie(response: Response, value: str, name: Optional[str] = None) -> None:
            response.set_cookie(
                name or config.simulation_cookie_name,
                value,
                max_age=config.simulation_max_age_seconds,
                httponly=True,
                samesite="lax",
                secure=config.secure_cookies,
                path="/",
            )

        @self.app.get("/api/permissions", response_model=PermissionResponse)
        async def get_permissions(
            application_key: str = Query(..., min_length=1),
            request_identity: RequestIdentity = Depends(require_identity),
        ):
            """Effective permission of the caller on one application."""
            identity = context.route_authorization.identity_for(request_identity, application_key)
            permission = await context.resolver.resolve(identity, application_key)
            return PermissionResponse(
                application_key=application_key,
                has_access=permission.has_access,
                can_edit=permission.can_edit,
                can_delete=permission.can_delete,
                reason=permission.reason,
                simulated=request_identity.simulation is not None or identity is not request_identity.effective,
            )

        @self.app.get("/api/applications")
        async def list_applications(request: Request):
            """Active applications the caller may open, in display order."""
            request_identity = await context.route_authorization.identify(request)
            if request_identity is None:
                return []

            visible = []
            for application in await context.store.list_applications():
                if not application.is_active:
                    continue
                identity = context.route_authorization.identity_for(request_identity, application.key)
                permission = await context.resolver.resolve_for(identity, application)
                if permission.has_access:
                    visible.append({
                        "id": application.id,
                        "key": application.key,
                        "name": application.name,
                        "route": application.route,
                        "sort_order": application.sort_order,
                        "can_edit": permission.can_edit,
                        "can_delete": permission.can_delete,
                    })
            return visible

        @self.app.post("/api/admin/simulation/roles")
        async def simulate_roles(
            body: SimulationRolesRequest,
            response: Response,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            """Browse as a literal set of roles."""
            simulation = RoleSimulation.of(body.roles, request_identity.session.user_id)
            set_simulation_cookie(response, encode_simulation_cookie(simulation))
            self.logger.info("Role simulation started", roles=list(simulation.roles))
            return {"success": True}

        @self.app.post("/api/admin/simulation/impersonate")
        async def impersonate(
            body: ImpersonationRequest,
            response: Response,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            """Browse as another contact, with that contact's roles."""
            simulation = ImpersonationSimulation(
                contact_id=body.contact_id,
                admin_user_id=request_identity.session.user_id,
            )
            set_simulation_cookie(response, encode_simulation_cookie(simulation))
            self.logger.info("Impersonation started", contact_id=body.contact_id)
            return {"success": True}

        @self.app.get("/api/admin/simulation/status")
        async def simulation_status(
            request: Request,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            simulation = parse_simulation_cookie(request.cookies.get(config.simulation_cookie_name))
            if simulation is None:
                return {"active": False}

            if isinstance(simulation, RoleSimulation):
                return {"active": True, "type": simulation.kind, "roles": list(simulation.roles)}

            contact = await context.role_lookup.contact_summary(simulation.contact_id)
            if contact is None:
                return {"active": False}
            return {
                "active": True,
                "type": simulation.kind,
                "user": contact,
                "roles": sorted(request_identity.effective.roles),
            }

        @self.app.delete("/api/admin/simulation")
        async def clear_simulation(
            response: Response,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            response.delete_cookie(config.simulation_cookie_name, path="/")
            self.logger.info("Simulation cleared")
            return {"success": True}

        @self.app.post("/api/admin/simulation/app")
        async def simulate_application(
            body: AppSimulationRequest,
            response: Response,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            """Try a set of roles on one application, keeping full access elsewhere."""
            application = await context.store.get_application(body.application_key)
            if application is None:
                raise HTTPException(status_code=404, detail="Application not found")

            simulation = AppSimulation.of(application.key, body.roles, request_identity.session.user_id)
            set_simulation_cookie(
                response,
                encode_app_simulation_cookie(simulation),
                name=config.app_simulation_cookie_name,
            )
            self.logger.info(
                "Application simulation started",
                application_key=application.key,
                roles=list(simulation.roles),
            )
            return {"success": True, "application_key": application.key}

        @self.app.get("/api/admin/simulation/app")
        async def application_simulation_status(
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            simulation = request_identity.app_simulation
            if simulation is None:
                return {"active": False}
            return {
                "active": True,
                "application_key": simulation.application_key,
                "roles": list(simulation.roles),
            }

        @self.app.delete("/api/admin/simulation/app")
        async def clear_application_simulation(
            response: Response,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            response.delete_cookie(config.app_simulation_cookie_name, path="/")
            self.logger.info("Application simulation cleared")
            return {"success": True}

        @self.app.get("/api/admin/applications/{application_key}/roles")
        async def application_roles(
            application_key: str,
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            """Role names holding grants on an application, for the simulation picker."""
            summaries = await context.resolver.role_summaries(application_key)
            if summaries is None:
                raise HTTPException(status_code=404, detail="Application not found")
            return [summary.model_dump() for summary in summaries]

        @self.app.get("/api/admin/contacts/search")
        async def search_contacts(
            q: str = Query(..., min_length=2),
            request_identity: RequestIdentity = Depends(require_administrator),
        ):
            """Contacts with a user account matching a name or email fragment."""
            return await context.role_lookup.search_contacts(q)


def create_app(config: Optional[GatewayConfig] = None, *, context: Optional[GatewayContext] = None):
    """Build the gateway FastAPI application."""
    return PortalGatewayService(config, context=context).app


if __name__ == "__main__":
    PortalGatewayService().run()
