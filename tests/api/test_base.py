"""Tests for api/base.py - Unified API response format."""

from datetime import timezone

from api.base import (
    success_response,
    error_response,
    ErrorCodes,
)


class TestSuccessResponse:

    def test_structure(self):
        resp = success_response({"foo": "bar"})
        assert resp.success is True
        assert resp.data == {"foo": "bar"}
        assert resp.error is None

    def test_request_id_generated(self):
        resp = success_response({})
        assert len(resp.meta.request_id) > 0

    def test_timestamp_is_utc(self):
        resp = success_response({})
        assert resp.meta.timestamp.tzinfo == timezone.utc


class TestErrorResponse:

    def test_structure(self):
        resp = error_response("TEST_ERROR", "Something went wrong")
        assert resp.success is False
        assert resp.data is None
        assert resp.error.code == "TEST_ERROR"
        assert resp.error.message == "Something went wrong"
        assert resp.error.details is None

    def test_details(self):
        resp = error_response(
            ErrorCodes.COVERAGE_WOULD_SHORTEN, "shorter",
            {"old_date": "2026-03-09", "new_date": "2026-03-02"},
        )
        assert resp.error.details["old_date"] == "2026-03-09"

    def test_serialises_to_json(self):
        body = error_response("ERR", "msg").model_dump(mode="json")
        assert body["error"] == {"code": "ERR", "message": "msg", "details": None}
        assert isinstance(body["meta"]["timestamp"], str)


class TestErrorCodes:

    def test_billing_codes(self):
        assert ErrorCodes.CAPACITY_EXCEEDED == "CAPACITY_EXCEEDED"
        assert ErrorCodes.COVERAGE_WOULD_SHORTEN == "COVERAGE_WOULD_SHORTEN"
        assert ErrorCodes.INVARIANT_VIOLATION == "INVARIANT_VIOLATION"

    def test_generic_codes(self):
        assert ErrorCodes.NOT_FOUND == "NOT_FOUND"
        assert ErrorCodes.VALIDATION_ERROR == "VALIDATION_ERROR"
        assert ErrorCodes.INVALID_REQUEST == "INVALID_REQUEST"
        assert ErrorCodes.INTERNAL_ERROR == "INTERNAL_ERROR"
