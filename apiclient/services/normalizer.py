"""
Response normalization - raw httpx responses into payloads or ApiError.

Success: { success: true, message, data? }  ->  data
Legacy:  any other JSON body on 2xx         ->  body as-is
Error:   { error, message, code, request_id? } -> ApiError
"""

import json
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from apiclient.models import ErrorEnvelope, SuccessEnvelope
from apiclient.services.errors import ApiError, ErrorCode
from apiclient.services.headers import REQUEST_ID_HEADER


def parse_retry_after(value: str | None) -> int | None:
    """
    Parse a Retry-After header given in seconds.

    HTTP-date values are not supported and are treated as absent.
    """
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def _request_id(response: httpx.Response, envelope_id: str | None = None) -> str | None:
    if envelope_id:
        return envelope_id
    if REQUEST_ID_HEADER in response.headers:
        return response.headers[REQUEST_ID_HEADER]
    try:
        return response.request.headers.get(REQUEST_ID_HEADER)
    except RuntimeError:
        # Response built without a request
        return None


def _path(response: httpx.Response) -> str | None:
    try:
        return response.request.url.path
    except RuntimeError:
        return None


def parse_error_response(
    response: httpx.Response,
    default_message: str = "Request failed",
) -> ApiError:
    """Build an ApiError from a non-success response. Never raises."""
    status = response.status_code
    text = response.text
    envelope: ErrorEnvelope | None = None
    malformed = False

    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        try:
            body = json.loads(stripped)
        except json.JSONDecodeError as e:
            logger.debug(f"Unparseable error body for HTTP {status}: {e}")
            malformed = True
        else:
            envelope = (
                ErrorEnvelope.model_validate(body) if isinstance(body, dict) else ErrorEnvelope()
            )

    if envelope is not None:
        message = envelope.message or envelope.error or default_message
        code = envelope.error or ErrorCode.UNKNOWN_ERROR.value
        request_id = _request_id(response, envelope.request_id)
    else:
        if malformed or not stripped:
            message = f"{default_message} with status {status}"
        else:
            message = stripped
        code = ErrorCode.UNKNOWN_ERROR.value
        request_id = _request_id(response)

    retry_after = None
    if status == 429:
        if "Retry-After" in response.headers:
            retry_after = parse_retry_after(response.headers["Retry-After"])
        elif envelope is not None:
            retry_after = envelope.retry_after
        if code == ErrorCode.UNKNOWN_ERROR.value:
            code = ErrorCode.RATE_LIMITED.value

    return ApiError(
        message,
        code=code,
        http_status=status,
        request_id=request_id,
        retry_after_seconds=retry_after,
        path=_path(response),
    )


def normalize_response(response: httpx.Response) -> Any:
    """
    Decode a response payload.

    Returns:
        The ``data`` of a success envelope, a bare JSON payload, or None for
        an empty body

    Raises:
        ApiError: For non-2xx responses, and with code PARSE_ERROR for a
            malformed success body
    """
    if not response.is_success:
        raise parse_error_response(response)

    if not response.content or not response.content.strip():
        return None

    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Failed to parse API response: {e}")
        raise ApiError(
            "Invalid response format from server",
            code=ErrorCode.PARSE_ERROR,
            http_status=response.status_code,
            request_id=_request_id(response),
            path=_path(response),
        ) from e

    if isinstance(body, dict) and body.get("success") is True:
        try:
            return SuccessEnvelope[Any].model_validate(body).data
        except ValidationError as e:
            raise ApiError(
                "Invalid response format from server",
                code=ErrorCode.PARSE_ERROR,
                http_status=response.status_code,
                request_id=_request_id(response),
                path=_path(response),
            ) from e

    return body
