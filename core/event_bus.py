"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Services publish from inside a ``deferred()``
scope wrapped around their transaction: events queue up while the
transaction runs, are delivered once it has committed, and are dropped if it
rolls back. Handler errors are logged but never propagate, because the
primary operation has already committed.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Dict, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)

_pending: ContextVar[List[BillingEvent] | None] = ContextVar("pending_events", default=None)


class EventBus:
    """
    In-process event bus for billing domain events.

    Subscribe by event class name (string), publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'InvoicePaid')
            callback: Function to call when event is published
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    @contextmanager
    def deferred(self):
        """
        Hold published events until the block exits cleanly.

        Nested scopes share the outermost queue. On exception the queue is
        discarded and the exception propagates.
        """
        if _pending.get() is not None:
            yield
            return

        queue: List[BillingEvent] = []
        token = _pending.set(queue)
        try:
            yield
        except Exception:
            if queue:
                logger.info("Discarding %d events from rolled back operation", len(queue))
            raise
        finally:
            _pending.reset(token)

        for event in queue:
            self._deliver(event)

    def publish(self, event: BillingEvent):
        """
        Publish an event, or queue it when inside a deferred scope.

        Args:
            event: BillingEvent instance to publish
        """
        queue = _pending.get()
        if queue is not None:
            queue.append(event)
            return
        self._deliver(event)

    def _deliver(self, event: BillingEvent):
        event_type = event.__class__.__name__

        for callback in self._subscribers.get(event_type, []):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
