"""
Short-lived cache of application records keyed by route.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List, Optional

from shared.logging import get_logger

from ..domain.models import ApplicationRecord
from ..permissions.store import PermissionStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

DEFAULT_APPLICATION_TTL = 60.0


def _normalize_route(route: str) -> str:
    return "/" + route.strip().strip("/")


@dataclass(frozen=True)
class ApplicationSnapshot:
    """Immutable view of all applications at one load."""

    by_route: Dict[str, ApplicationRecord]
    by_key: Dict[str, ApplicationRecord]
    loaded_at: float

    @property
    def public_routes(self) -> FrozenSet[str]:
        return frozenset(route for route, app in self.by_route.items() if not app.requires_auth)

    def match(self, path: str) -> Optional[ApplicationRecord]:
        """Return the application whose route is the longest prefix of ``path``."""
        best: Optional[ApplicationRecord] = None
        best_length = -1
        for route, application in self.by_route.items():
            if route == "/":
                continue
            if path == route or path.startswith(route + "/"):
                if len(route) > best_length:
                    best, best_length = application, len(route)
        return best


class ApplicationCache:
    """Route to application lookup refreshed at most once per TTL.

    A valid snapshot is read without waiting. Expired snapshots are
    replaced by one shared load that concurrent callers all await.
    """

    def __init__(
        self,
        store: PermissionStore,
        *,
        ttl: float = DEFAULT_APPLICATION_TTL,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.ttl = ttl
        self.metrics = metrics
        self.logger = get_logger("gateway.cache.applications")
        self._clock = clock
        self._snapshot: Optional[ApplicationSnapshot] = None
        self._load_task: Optional[asyncio.Task] = None

    def _is_fresh(self, snapshot: Optional[ApplicationSnapshot]) -> bool:
        return snapshot is not None and self._clock() - snapshot.loaded_at < self.ttl

    async def snapshot(self) -> ApplicationSnapshot:
        snapshot = self._snapshot
        if self._is_fresh(snapshot):
            self._record(hit=True)
            return snapshot

        self._record(hit=False)
        task = self._load_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._load())
            task.add_done_callback(self._on_load_done)
            self._load_task = task
        return await asyncio.shield(task)

    async def application_for_path(self, path: str) -> Optional[ApplicationRecord]:
        snapshot = await self.snapshot()
        return snapshot.match(path)

    async def get(self, key: str) -> Optional[ApplicationRecord]:
        snapshot = await self.snapshot()
        return snapshot.by_key.get(key)

    async def public_routes(self) -> FrozenSet[str]:
        snapshot = await self.snapshot()
        return snapshot.public_routes

    def invalidate(self) -> None:
        self._snapshot = None

    def _on_load_done(self, task: asyncio.Task) -> None:
        if self._load_task is task:
            self._load_task = None
        if not task.cancelled():
            task.exception()

    async def _load(self) -> ApplicationSnapshot:
        applications: List[ApplicationRecord] = await self.store.list_applications()
        by_route: Dict[str, ApplicationRecord] = {}
        by_key: Dict[str, ApplicationRecord] = {}
        for application in applications:
            by_key[application.key] = application
            if application.route:
                by_route[_normalize_route(application.route)] = application

        snapshot = ApplicationSnapshot(by_route=by_route, by_key=by_key, loaded_at=self._clock())
        self._snapshot = snapshot
        self.logger.info("Application cache refreshed", count=len(by_key))
        return snapshot

    def _record(self, hit: bool) -> None:
        if self.metrics:
            self.metrics.record_cache("applications", hit)
