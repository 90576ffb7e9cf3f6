"""
HTTP client for the upstream church-management platform REST API.
"""

import time
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import quote

import httpx

from shared.errors import UpstreamRequestFailure
from shared.logging import get_logger
from shared.tracing import trace_operation

from ..auth.token_cache import TokenCache
from ..domain.query_dialect import QueryParams

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class PlatformClient:
    """Authenticated requests against the upstream platform.

    Every request carries a bearer token from the TokenCache and an explicit
    timeout. Failures surface as UpstreamRequestFailure; nothing is retried.
    """

    def __init__(
        self,
        base_url: str,
        token_cache: TokenCache,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_cache = token_cache
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.platform_client")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def table_path(table: str) -> str:
        return f"/tables/{quote(table, safe='')}"

    @staticmethod
    def procedure_path(procedure: str) -> str:
        return f"/procs/{quote(procedure, safe='')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: Optional[QueryParams] = None,
        json: Any = None,
        table: Optional[str] = None,
        procedure: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body."""
        with trace_operation(f"platform.{operation}", table=table, procedure=procedure):
            return await self._send(
                method,
                path,
                operation=operation,
                params=params,
                json=json,
                table=table,
                procedure=procedure,
                timeout=timeout,
            )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: Optional[QueryParams],
        json: Any,
        table: Optional[str],
        procedure: Optional[str],
        timeout: Optional[float],
    ) -> Any:
        effective_timeout = timeout if timeout is not None else self.timeout
        token = await self.token_cache.get_token(timeout=effective_timeout)
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

        url = f"{self.base_url}{path}"
        start_time = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                url,
                params=params or None,
                json=json,
                headers=headers,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException as exc:
            self._record(operation, "timeout", start_time)
            self.logger.error("Upstream request timed out", operation=operation, path=path,
                              timeout=effective_timeout)
            raise UpstreamRequestFailure(
                operation, None, table=table, procedure=procedure,
                message=f"{operation} {table or procedure} timed out after {effective_timeout}s",
            ) from exc
        except httpx.HTTPError as exc:
            self._record(operation, "error", start_time)
            self.logger.error("Upstream transport error", operation=operation, path=path, error=str(exc))
            raise UpstreamRequestFailure(
                operation, None, table=table, procedure=procedure,
                message=f"{operation} {table or procedure} failed: {exc.__class__.__name__}",
            ) from exc

        self._record(operation, str(response.status_code), start_time)

        if response.status_code == 401:
            self.token_cache.invalidate()

        if not response.is_success:
            self.logger.warning(
                "Upstream request failed",
                operation=operation,
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamRequestFailure(
                operation,
                response.status_code,
                table=table,
                procedure=procedure,
                raw_body=response.text,
            )

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamRequestFailure(
                operation,
                response.status_code,
                table=table,
                procedure=procedure,
                raw_body=response.text,
                message=f"{operation} {table or procedure} returned a non-JSON body",
            ) from exc

    def _record(self, operation: str, status: str, start_time: float) -> None:
        if self.metrics:
            self.metrics.record_upstream_request(operation, status, time.perf_counter() - start_time)
