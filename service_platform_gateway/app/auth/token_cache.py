"""
Client-credentials token cache for the upstream platform.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

import httpx

from shared.errors import AuthenticationFailure, ConfigurationError, UpstreamRequestFailure
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import GatewayConfig
    from shared.metrics import MetricsCollector


DEFAULT_SAFETY_MARGIN = 300.0
DEFAULT_TIMEOUT = 30.0
TOKEN_PATH = "/oauth/connect/token"


@dataclass(frozen=True)
class ServiceCredential:
    """Service-level OAuth client credentials for the upstream platform."""

    client_id: str
    client_secret: str = field(repr=False)
    token_url: str
    scope: str

    @classmethod
    def from_config(cls, config: "GatewayConfig") -> "ServiceCredential":
        """Build the credential, raising ConfigurationError when values are missing."""
        missing = []
        if not config.platform_client_id:
            missing.append("platform_client_id")
        if not config.platform_client_secret:
            missing.append("platform_client_secret")
        if not config.platform_token_url and not config.platform_base_url:
            missing.append("platform_base_url")
        if missing:
            raise ConfigurationError(
                "Upstream platform credentials are not configured",
                details={"missing": missing},
            )

        token_url = config.platform_token_url
        if not token_url:
            token_url = config.platform_base_url.rstrip("/") + TOKEN_PATH

        return cls(
            client_id=config.platform_client_id,
            client_secret=config.platform_client_secret,
            token_url=token_url,
            scope=config.platform_scope,
        )


@dataclass(frozen=True)
class CachedToken:
    access_token: str = field(repr=False)
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """Caches one bearer token per credential.

    Reads of a valid token never wait. When the token is missing or stale,
    exactly one grant runs; every concurrent caller awaits that same task,
    and a caller being cancelled leaves the shared grant running.
    """

    def __init__(
        self,
        credential: ServiceCredential,
        *,
        client: Optional[httpx.AsyncClient] = None,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        if safety_margin <= 0:
            raise ValueError("safety_margin must be positive")

        self.credential = credential
        self.safety_margin = safety_margin
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.auth.token_cache")

        self._clock = clock
        self._token: Optional[CachedToken] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def cached_token(self) -> Optional[CachedToken]:
        return self._token

    async def get_token(self, timeout: Optional[float] = None) -> str:
        """Return a bearer token that is valid now, granting a new one if needed."""
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            if self.metrics:
                self.metrics.record_cache("service_token", hit=True)
            return token.access_token

        if self.metrics:
            self.metrics.record_cache("service_token", hit=False)

        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._grant(timeout))
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task

        token = await asyncio.shield(task)
        return token.access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next call performs a fresh grant."""
        if self._token is not None:
            self.logger.info("Service token invalidated", client_id=self.credential.client_id)
        self._token = None

    async def aclose(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        if self._owns_client:
            await self._client.aclose()

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the outcome as observed when every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    async def _grant(self, timeout: Optional[float]) -> CachedToken:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.credential.client_id,
            "client_secret": self.credential.client_secret,
            "scope": self.credential.scope,
        }

        self.logger.debug("Requesting service token", token_url=self.credential.token_url)
        try:
            response = await self._client.post(
                self.credential.token_url,
                data=form,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.HTTPError as exc:
            self._record("error")
            self.logger.error(
                "Token endpoint unreachable",
                token_url=self.credential.token_url,
                error=str(exc),
            )
            raise UpstreamRequestFailure(
                "token_grant",
                None,
                message=f"Token endpoint unreachable: {exc.__class__.__name__}",
            ) from exc

        if not response.is_success:
            self._record("rejected")
            self.logger.error(
                "Token grant rejected",
                token_url=self.credential.token_url,
                status_code=response.status_code,
            )
            raise AuthenticationFailure(
                f"Token grant rejected with status {response.status_code}",
                details={"status_code": response.status_code},
            )

        access_token, expires_in = self._parse_grant(response)
        now = self._clock()
        # Short-lived grants keep half their lifetime rather than expiring at once.
        margin = min(self.safety_margin, expires_in / 2)
        token = CachedToken(access_token=access_token, expires_at=now + expires_in - margin)
        self._token = token

        self._record("success")
        self.logger.info(
            "Service token granted",
            client_id=self.credential.client_id,
            expires_in=expires_in,
        )
        return token

    def _parse_grant(self, response: httpx.Response) -> Tuple[str, float]:
        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            self._record("invalid")
            raise AuthenticationFailure("Token endpoint returned a non-JSON body") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            self._record("invalid")
            raise AuthenticationFailure("Token response missing access_token")

        try:
            expires_in = float(payload.get("expires_in"))
        except (TypeError, ValueError) as exc:
            self._record("invalid")
            raise AuthenticationFailure("Token response missing expires_in") from exc

        if expires_in <= 0:
            self._record("invalid")
            raise AuthenticationFailure(
                "Token response carried a non-positive lifetime",
                details={"expires_in": expires_in},
            )
        return access_token, expires_in

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.record_token_grant(status)


class TokenCacheRegistry:
    """One TokenCache per distinct credential, sharing a single HTTP client."""

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.safety_margin = safety_margin
        self.timeout = timeout
        self.metrics = metrics
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._caches: Dict[ServiceCredential, TokenCache] = {}

    def get(self, credential: ServiceCredential) -> TokenCache:
        cache = self._caches.get(credential)
        if cache is None:
            cache = TokenCache(
                credential,
                client=self._client,
                safety_margin=self.safety_margin,
                timeout=self.timeout,
                clock=self._clock,
                metrics=self.metrics,
            )
            self._caches[credential] = cache
        return cache

    async def get_token(self, credential: ServiceCredential, timeout: Optional[float] = None) -> str:
        return await self.get(credential).get_token(timeout=timeout)

    def __len__(self) -> int:
        return len(self._caches)

    async def aclose(self) -> None:
        for cache in self._caches.values():
            await cache.aclose()
        if self._owns_client:
            await self._client.aclose()
