"""
Application permissions: storage and resolution.
"""

from .resolver import PermissionResolver
from .store import InMemoryPermissionStore, PermissionStore, PostgresPermissionStore

__all__ = [
    "InMemoryPermissionStore",
    "PermissionResolver",
    "PermissionStore",
    "PostgresPermissionStore",
]
