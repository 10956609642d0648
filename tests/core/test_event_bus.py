"""Tests for EventBus."""

import logging
from datetime import date
from uuid import uuid4

import pytest

from core.event_bus import EventBus
from core.events import CoverageChanged, CoverageShortenAbsorbed, PaymentReversed


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def bus():
    return EventBus()


def _changed(enrolment_id=None):
    return CoverageChanged.create(
        enrolment_id=enrolment_id or uuid4(),
        reason="HOLIDAY_ADDED",
        previous=date(2026, 3, 2),
        new=date(2026, 3, 9),
    )


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, bus):
        received = []
        bus.subscribe("CoverageChanged", received.append)

        event = _changed()
        bus.publish(event)

        assert len(received) == 1
        assert received[0] is event

    def test_handler_can_read_payload_fields(self, bus):
        enrolment_id = uuid4()
        seen = []
        bus.subscribe("CoverageChanged", lambda e: seen.append((e.enrolment_id, e.next_paid_through)))

        bus.publish(_changed(enrolment_id))

        assert seen == [(enrolment_id, date(2026, 3, 9))]

    def test_multiple_handlers_called_in_subscription_order(self, bus):
        order = []
        bus.subscribe("CoverageChanged", lambda e: order.append("A"))
        bus.subscribe("CoverageChanged", lambda e: order.append("B"))
        bus.subscribe("CoverageChanged", lambda e: order.append("C"))

        bus.publish(_changed())

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, bus):
        changed_calls = []
        reversed_calls = []
        bus.subscribe("CoverageChanged", changed_calls.append)
        bus.subscribe("PaymentReversed", reversed_calls.append)

        bus.publish(_changed())

        assert len(changed_calls) == 1
        assert reversed_calls == []

    def test_subclass_does_not_reach_sibling_subscribers(self, bus):
        calls = []
        bus.subscribe("CoverageChanged", calls.append)

        bus.publish(CoverageShortenAbsorbed.create(uuid4(), "INVOICE_APPLIED", date(2026, 3, 9), date(2026, 3, 2)))

        assert calls == []

    def test_no_subscribers_does_not_raise(self, bus):
        bus.publish(_changed())


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, bus):
        bus.subscribe("CoverageChanged", lambda e: (_ for _ in ()).throw(RuntimeError("boom")))

        # Must not raise
        bus.publish(_changed())

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, bus, caplog):
        def failing_handler(event):
            raise ValueError("snapshot refresh failed")

        bus.subscribe("CoverageChanged", failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = _changed()
            bus.publish(event)

        assert "snapshot refresh failed" in caplog.text
        assert "CoverageChanged" in caplog.text
        assert event.event_id in caplog.text

    def test_all_handlers_run_even_if_multiple_fail(self, bus):
        results = []

        bus.subscribe("PaymentReversed", lambda e: (_ for _ in ()).throw(RuntimeError("fail 1")))
        bus.subscribe("PaymentReversed", lambda e: results.append("survived_1"))
        bus.subscribe("PaymentReversed", lambda e: (_ for _ in ()).throw(RuntimeError("fail 2")))
        bus.subscribe("PaymentReversed", lambda e: results.append("survived_2"))

        bus.publish(PaymentReversed.create(payment=None, invoice_ids=[uuid4()]))

        assert results == ["survived_1", "survived_2"]


# =============================================================================
# DEFERRED DELIVERY
# =============================================================================


class TestDeferred:

    def test_events_held_until_scope_exits(self, bus):
        received = []
        bus.subscribe("CoverageChanged", received.append)

        with bus.deferred():
            bus.publish(_changed())
            assert received == []

        assert len(received) == 1

    def test_events_dropped_on_rollback(self, bus):
        received = []
        bus.subscribe("CoverageChanged", received.append)

        with pytest.raises(RuntimeError):
            with bus.deferred():
                bus.publish(_changed())
                raise RuntimeError("transaction failed")

        assert received == []

    def test_nested_scopes_deliver_once_at_outermost_exit(self, bus):
        received = []
        bus.subscribe("CoverageChanged", received.append)

        with bus.deferred():
            with bus.deferred():
                bus.publish(_changed())
            assert received == []
            bus.publish(_changed())

        assert len(received) == 2

    def test_inner_failure_drops_outer_events(self, bus):
        received = []
        bus.subscribe("CoverageChanged", received.append)

        with pytest.raises(ValueError):
            with bus.deferred():
                bus.publish(_changed())
                with bus.deferred():
                    raise ValueError("nested failure")

        assert received == []

    def test_publishing_after_scope_delivers_immediately(self, bus):
        received = []
        bus.subscribe("CoverageChanged", received.append)

        with bus.deferred():
            pass
        bus.publish(_changed())

        assert len(received) == 1
