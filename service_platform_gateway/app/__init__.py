"""
Platform gateway service package for the portal.

The gateway sits between portal pages and the upstream church-management
platform, providing:
- Service credentials: cached client-credentials bearer tokens
- Record and procedure access with envelope unwrapping
- Per-application permissions with administrator simulation

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.context: GatewayContext owning caches, clients and stores.
- app.auth: Token cache, session decoding, simulation override.
- app.adapters: Upstream platform client and gateways.
- app.permissions: Permission store and resolver.
- app.caching: Application route cache.
- app.domain: Models, query dialect, payload unwrapping, route authorization.
"""
