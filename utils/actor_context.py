"""Propagate the acting staff member through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_actor_id: ContextVar[UUID | None] = ContextVar("current_actor_id", default=None)


def get_current_actor_id() -> UUID | None:
    """
    Get the current actor ID from context.

    Returns None for system-triggered work (recalculations fired by a
    holiday import or a background job). Audit rows record the None.
    """
    return _current_actor_id.get()


def set_current_actor_id(actor_id: UUID) -> None:
    """
    Set the current actor ID in context.

    Called by the API middleware when a request carries an actor header.
    """
    _current_actor_id.set(actor_id)


def clear_current_actor_id() -> None:
    """
    Clear actor context.

    Must be called in finally block to prevent context leakage.
    """
    _current_actor_id.set(None)


@contextmanager
def actor_context(actor_id: UUID | None):
    """
    Context manager for temporarily setting the actor.

    Example:
        with actor_context(staff_id):
            payment_service.undo_payment(payment_id)
    """
    token = _current_actor_id.set(actor_id)
    try:
        yield
    finally:
        _current_actor_id.reset(token)
