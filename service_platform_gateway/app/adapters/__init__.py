"""
Adapters package for the platform gateway.

Contains the HTTP client for the upstream platform and the gateways built
on it. Adapters map upstream failures to shared errors and never retry.
"""

from .platform_client import PlatformClient
from .procedure_gateway import NO_DATA, ProcedureGateway
from .record_gateway import RecordGateway
from .role_lookup import PlatformRoleLookup

__all__ = [
    "NO_DATA",
    "PlatformClient",
    "PlatformRoleLookup",
    "ProcedureGateway",
    "RecordGateway",
]
