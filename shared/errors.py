"""
Shared error handling for the portal platform gateway.
"""

from typing import Any, Dict, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class PortalGatewayError(Exception):
    """Base exception for gateway components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(PortalGatewayError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str = "Gateway configuration missing", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class AuthenticationFailure(PortalGatewayError):
    """The upstream token endpoint rejected the client-credentials grant."""

    def __init__(self, message: str = "Authentication with upstream platform failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_FAILURE", message, details)


class UpstreamRequestFailure(PortalGatewayError):
    """Non-success response (or transport failure) from the upstream platform."""

    def __init__(self, operation: str, status_code: Optional[int] = None, *,
                 table: Optional[str] = None, procedure: Optional[str] = None,
                 raw_body: Optional[str] = None, message: Optional[str] = None):
        self.operation = operation
        self.status_code = status_code
        self.table = table
        self.procedure = procedure
        self.raw_body = raw_body
        target = table or procedure or "upstream"
        details: Dict[str, Any] = {"operation": operation, "status_code": status_code}
        if table:
            details["table"] = table
        if procedure:
            details["procedure"] = procedure
        super().__init__(
            "UPSTREAM_REQUEST_FAILURE",
            message or f"{operation} {target} failed with status {status_code}",
            details,
        )

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_forbidden(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_server_error(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class MalformedUpstreamPayload(PortalGatewayError):
    """A procedure payload column could not be parsed as JSON."""

    def __init__(self, procedure: str, column: Optional[str] = None, message: str = "Malformed upstream payload"):
        self.procedure = procedure
        self.column = column
        super().__init__(
            "MALFORMED_UPSTREAM_PAYLOAD",
            message,
            {"procedure": procedure, "column": column},
        )


class ProcedureNoData(PortalGatewayError):
    """A procedure returned no result set or no rows when data was required."""

    def __init__(self, procedure: str):
        self.procedure = procedure
        super().__init__("PROCEDURE_NO_DATA", f"Procedure {procedure} returned no data", {"procedure": procedure})


class ImpersonationLookupFailure(PortalGatewayError):
    """Roles for an impersonated identity could not be resolved."""

    def __init__(self, contact_id: Any, message: str = "Impersonation role lookup failed",
                 details: Optional[Dict[str, Any]] = None):
        self.contact_id = contact_id
        merged = {"contact_id": contact_id}
        merged.update(details or {})
        super().__init__("IMPERSONATION_LOOKUP_FAILURE", message, merged)


class SessionDecodeError(PortalGatewayError):
    """The session token is missing or cannot be decoded."""

    def __init__(self, message: str = "Session token invalid", details: Optional[Dict[str, Any]] = None):
        super().__init__("SESSION_DECODE_ERROR", message, details)


class PermissionStoreUnavailable(PortalGatewayError):
    """The permissions database could not be reached or queried."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


def http_status_for(exc: PortalGatewayError) -> int:
    """HTTP status an API handler answers with for a gateway error."""
    if isinstance(exc, UpstreamRequestFailure):
        if exc.is_not_found:
            return 404
        if exc.is_forbidden:
            return 403
        return 502
    if isinstance(exc, (AuthenticationFailure, ConfigurationError, PermissionStoreUnavailable)):
        return 503
    if isinstance(exc, MalformedUpstreamPayload):
        return 502
    if isinstance(exc, ProcedureNoData):
        return 404
    if isinstance(exc, SessionDecodeError):
        return 401
    return 400
