import httpx
import pytest

from apiclient.services.errors import ApiError, ErrorCode
from apiclient.services.normalizer import (
    normalize_response,
    parse_error_response,
    parse_retry_after,
)

from tests.conftest import envelope, error_body


def make_response(status: int, **kwargs) -> httpx.Response:
    request = httpx.Request(
        "GET", "http://api.example.com/api/v1/items", headers={"X-Request-ID": "req-out"}
    )
    return httpx.Response(status, request=request, **kwargs)


class TestSuccessPath:
    def test_unwraps_envelope(self):
        response = make_response(200, json=envelope({"id": 7}))

        assert normalize_response(response) == {"id": 7}

    def test_envelope_without_data(self):
        response = make_response(200, json={"success": True, "message": "deleted"})

        assert normalize_response(response) is None

    def test_bare_payload_passes_through(self):
        response = make_response(200, json={"token": "t", "user": {"id": 1}})

        assert normalize_response(response) == {"token": "t", "user": {"id": 1}}

    def test_bare_list(self):
        response = make_response(200, json=[1, 2, 3])

        assert normalize_response(response) == [1, 2, 3]

    def test_empty_body(self):
        assert normalize_response(make_response(204)) is None

    def test_malformed_body_is_parse_error(self):
        response = make_response(200, content=b"<html>oops</html>")

        with pytest.raises(ApiError) as exc_info:
            normalize_response(response)

        assert exc_info.value.code == ErrorCode.PARSE_ERROR.value
        assert exc_info.value.http_status == 200
        assert exc_info.value.request_id == "req-out"


class TestErrorPath:
    def test_error_envelope(self):
        body = error_body("NOT_FOUND", "Item not found", 404)
        body["request_id"] = "req-server"
        response = make_response(404, json=body)

        with pytest.raises(ApiError) as exc_info:
            normalize_response(response)

        error = exc_info.value
        assert error.code == "NOT_FOUND"
        assert error.message == "Item not found"
        assert error.http_status == 404
        assert error.request_id == "req-server"
        assert error.path == "/api/v1/items"
        assert error.category == "validation"

    def test_message_falls_back_to_error(self):
        response = make_response(400, json={"error": "BAD_INPUT"})

        error = parse_error_response(response)

        assert error.message == "BAD_INPUT"
        assert error.code == "BAD_INPUT"

    def test_non_json_error(self):
        response = make_response(502, text="Bad Gateway")

        error = parse_error_response(response)

        assert error.code == ErrorCode.UNKNOWN_ERROR.value
        assert error.message == "Bad Gateway"
        assert error.category == "server"
        assert error.retryable is True

    def test_off_type_fields_keep_error_code(self):
        body = error_body("RATE_LIMITED", "Slow down", 429)
        body["retry_after"] = 1.5
        body["request_id"] = {"nested": True}

        error = parse_error_response(make_response(429, json=body))

        assert error.code == "RATE_LIMITED"
        assert error.message == "Slow down"
        assert error.retry_after_seconds is None
        assert error.request_id == "req-out"

    def test_json_array_error_body(self):
        error = parse_error_response(make_response(400, json=["bad", "input"]), "Save failed")

        assert error.code == ErrorCode.UNKNOWN_ERROR.value
        assert error.message == "Save failed"

    def test_truncated_json_error_body(self):
        error = parse_error_response(make_response(500, text='{"error": "INTER'), "Save failed")

        assert error.code == ErrorCode.UNKNOWN_ERROR.value
        assert error.message == "Save failed with status 500"

    def test_empty_error_body(self):
        error = parse_error_response(make_response(500), "Login failed")

        assert error.message == "Login failed with status 500"

    def test_request_id_from_response_header(self):
        response = make_response(
            500, json=error_body("INTERNAL", "boom", 500), headers={"X-Request-ID": "req-in"}
        )

        assert parse_error_response(response).request_id == "req-in"

    def test_request_id_from_outbound_request(self):
        response = make_response(500, json=error_body("INTERNAL", "boom", 500))

        assert parse_error_response(response).request_id == "req-out"

    def test_auth_errors_not_retryable(self):
        error = parse_error_response(
            make_response(401, json=error_body("UNAUTHORIZED", "no", 401))
        )

        assert error.category == "auth"
        assert error.retryable is False


class TestRateLimit:
    def test_retry_after_seconds(self):
        response = make_response(
            429,
            json=error_body("RATE_LIMITED", "Too many requests", 429),
            headers={"Retry-After": "5"},
        )

        error = parse_error_response(response)

        assert error.retry_after_seconds == 5
        assert error.code == "RATE_LIMITED"
        assert error.category == "rate_limit"

    def test_http_date_treated_as_absent(self):
        response = make_response(
            429,
            json=error_body("RATE_LIMITED", "Too many requests", 429),
            headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"},
        )

        assert parse_error_response(response).retry_after_seconds is None

    def test_body_retry_after_used_without_header(self):
        body = error_body("RATE_LIMITED", "Too many requests", 429)
        body["retry_after"] = 60

        assert parse_error_response(make_response(429, json=body)).retry_after_seconds == 60

    def test_non_json_429_gets_rate_limited_code(self):
        response = make_response(429, text="slow down", headers={"Retry-After": "2"})

        error = parse_error_response(response)

        assert error.code == ErrorCode.RATE_LIMITED.value
        assert error.retry_after_seconds == 2

    def test_retry_after_ignored_on_other_statuses(self):
        response = make_response(503, text="down", headers={"Retry-After": "5"})

        assert parse_error_response(response).retry_after_seconds is None

    @pytest.mark.parametrize(
        "value,expected",
        [("5", 5), (" 120 ", 120), ("0", 0), ("-1", None), ("1.5", None), ("", None), (None, None)],
    )
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected
