"""
Authentication helpers for the platform gateway.
"""

from .session import SessionDecoder
from .simulation import ImpersonationSimulation, RoleSimulation, apply_simulation
from .token_cache import CachedToken, ServiceCredential, TokenCache, TokenCacheRegistry

__all__ = [
    "CachedToken",
    "ImpersonationSimulation",
    "RoleSimulation",
    "ServiceCredential",
    "SessionDecoder",
    "TokenCache",
    "TokenCacheRegistry",
    "apply_simulation",
]
