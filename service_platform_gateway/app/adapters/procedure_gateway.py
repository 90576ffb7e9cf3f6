"""
Stored procedure invocation with envelope unwrapping.
"""

from typing import Any, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from shared.errors import MalformedUpstreamPayload, ProcedureNoData
from shared.logging import get_logger

from ..domain.payload import unwrap_envelope
from ..domain.query_dialect import build_procedure_body
from .platform_client import PlatformClient

# Returned by call_and_unwrap when the procedure produced no rows.
NO_DATA = None


class ProcedureGateway:
    """Calls named upstream procedures."""

    def __init__(self, client: PlatformClient):
        self.client = client
        self.logger = get_logger("gateway.procedure_gateway")

    async def call(
        self,
        procedure: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke ``procedure`` and return the raw result-set envelope."""
        envelope = await self.client.request(
            "POST",
            PlatformClient.procedure_path(procedure),
            operation="call",
            json=build_procedure_body(params),
            procedure=procedure,
            timeout=timeout,
        )
        return envelope if envelope is not None else []

    async def call_and_unwrap(
        self,
        procedure: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        payload_column: Optional[str] = None,
        raw: bool = False,
        require_data: bool = False,
        model: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke ``procedure`` and return its fully materialized JSON payload.

        With ``raw=True`` the envelope is returned untouched. When the
        procedure yields no rows the result is NO_DATA, or ProcedureNoData is
        raised if ``require_data`` is set. ``model`` may be any type pydantic
        can validate against (a model class, ``List[Model]``, ...).
        """
        envelope = await self.call(procedure, params, timeout=timeout)
        if raw:
            return envelope

        value = unwrap_envelope(envelope, procedure, payload_column)
        if value is None:
            if require_data:
                raise ProcedureNoData(procedure)
            self.logger.debug("Procedure returned no data", procedure=procedure)
            return NO_DATA

        if model is None:
            return value

        try:
            return TypeAdapter(model).validate_python(value)
        except ValidationError as exc:
            self.logger.warning("Procedure payload failed validation", procedure=procedure,
                                errors=exc.error_count())
            raise MalformedUpstreamPayload(
                procedure,
                payload_column,
                message=f"Procedure payload does not match {getattr(model, '__name__', model)}",
            ) from exc
