"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    CapacityExceededError,
    CoverageWouldShortenError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _json(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, details).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(ValidationError)
    async def billing_validation_handler(request: Request, exc: ValidationError):
        return _json(400, ErrorCodes.VALIDATION_ERROR, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _json(404, ErrorCodes.NOT_FOUND, str(exc))

    @app.exception_handler(CapacityExceededError)
    async def capacity_handler(request: Request, exc: CapacityExceededError):
        return _json(409, ErrorCodes.CAPACITY_EXCEEDED, str(exc), exc.to_details())

    @app.exception_handler(CoverageWouldShortenError)
    async def shorten_handler(request: Request, exc: CoverageWouldShortenError):
        return _json(409, ErrorCodes.COVERAGE_WOULD_SHORTEN, str(exc), exc.to_details())

    @app.exception_handler(InvariantViolation)
    async def invariant_handler(request: Request, exc: InvariantViolation):
        logger.error("Invariant violation: %s", exc)
        return _json(422, ErrorCodes.INVARIANT_VIOLATION, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _json(400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
