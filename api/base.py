"""Response envelope shared by the actions and data routers."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from api.middleware import get_request_id
from utils.timezone import now_utc


class APIError(BaseModel):
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(None, description="Structured data a client can re-prompt with")


class APIMeta(BaseModel):
    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Matches the X-Request-ID response header")


class APIResponse(BaseModel):
    """
    Envelope returned by every billing endpoint.

    Exactly one of ``data`` and ``error`` is populated. A 409 carries the
    guard details in ``error.details`` so the caller can ask the operator to
    confirm and resend with ``confirm_shorten``.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta() -> APIMeta:
    return APIMeta(timestamp=now_utc(), request_id=get_request_id() or str(uuid4()))


def success_response(data: Any) -> APIResponse:
    return APIResponse(success=True, data=data, meta=_meta())


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> APIResponse:
    return APIResponse(
        success=False,
        error=APIError(code=code, message=message, details=details),
        meta=_meta(),
    )


class ErrorCodes:
    """Error codes returned in ``error.code``. One per exception the API maps."""

    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    COVERAGE_WOULD_SHORTEN = "COVERAGE_WOULD_SHORTEN"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"

    INTERNAL_ERROR = "INTERNAL_ERROR"
