"""Request-scoped middleware for API requests."""

from contextvars import ContextVar
from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from utils.actor_context import actor_context

ACTOR_HEADER = "X-Actor-Id"
REQUEST_ID_HEADER = "X-Request-ID"

_current_request_id: ContextVar[str | None] = ContextVar("current_request_id", default=None)


def get_request_id() -> str | None:
    """Request ID of the request being handled, None outside a request."""
    return _current_request_id.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an ID for log correlation.

    A caller-supplied X-Request-ID is kept so a retried payment can be traced
    across attempts. Otherwise a fresh UUID is issued.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        token = _current_request_id.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _current_request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ActorContextMiddleware(BaseHTTPMiddleware):
    """
    Sets the acting staff member from the X-Actor-Id header.

    Audit rows written while handling the request pick the actor up from
    context. A missing or malformed header leaves the actor unset.
    """

    async def dispatch(self, request: Request, call_next):
        actor_id = None
        raw = request.headers.get(ACTOR_HEADER)
        if raw:
            try:
                actor_id = UUID(raw)
            except ValueError:
                actor_id = None

        request.state.actor_id = actor_id
        with actor_context(actor_id):
            return await call_next(request)
