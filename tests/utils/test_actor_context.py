"""Tests for utils/actor_context.py - staff identity propagation via contextvars."""

from uuid import uuid4

import pytest

from utils.actor_context import (
    actor_context,
    clear_current_actor_id,
    get_current_actor_id,
    set_current_actor_id,
)


class TestGetCurrentActorId:

    def test_none_without_set(self):
        """System work has no actor; reading it is not an error."""
        clear_current_actor_id()
        assert get_current_actor_id() is None


class TestSetAndClear:

    def test_set_then_get_returns_uuid(self):
        actor_id = uuid4()
        set_current_actor_id(actor_id)
        assert get_current_actor_id() == actor_id
        clear_current_actor_id()

    def test_clear_then_get_is_none(self):
        set_current_actor_id(uuid4())
        clear_current_actor_id()
        assert get_current_actor_id() is None


class TestActorContextManager:

    def test_sets_and_restores(self):
        actor_id = uuid4()

        with actor_context(actor_id):
            assert get_current_actor_id() == actor_id

        assert get_current_actor_id() is None

    def test_restores_previous(self):
        outer_id = uuid4()
        inner_id = uuid4()

        with actor_context(outer_id):
            with actor_context(inner_id):
                assert get_current_actor_id() == inner_id
            assert get_current_actor_id() == outer_id

    def test_explicit_none_masks_outer_actor(self):
        with actor_context(uuid4()):
            with actor_context(None):
                assert get_current_actor_id() is None

    def test_restores_on_exception(self):
        with pytest.raises(ValueError):
            with actor_context(uuid4()):
                raise ValueError("test exception")

        assert get_current_actor_id() is None
