from __future__ import annotations

import httpx
import pytest

from genhub.services.errors import (
    ErrorCode,
    GenerationError,
    InvalidParametersError,
    ProviderError,
    ProviderResponseError,
    RateLimitError,
    is_retryable_error,
    map_exception,
    map_http_status,
)


def response(status: int, body=None, headers=None) -> httpx.Response:
    request = httpx.Request("POST", "https://api.test/v1/generate")
    if body is None:
        return httpx.Response(status, headers=headers, request=request)
    if isinstance(body, str):
        return httpx.Response(status, text=body, headers=headers, request=request)
    return httpx.Response(status, json=body, headers=headers, request=request)


@pytest.mark.parametrize("status, code, retryable", [
    (401, ErrorCode.AUTHENTICATION_FAILED, False),
    (403, ErrorCode.AUTHENTICATION_FAILED, False),
    (429, ErrorCode.RATE_LIMITED, True),
    (402, ErrorCode.QUOTA_EXCEEDED, False),
    (400, ErrorCode.INVALID_REQUEST, False),
    (422, ErrorCode.INVALID_REQUEST, False),
    (503, ErrorCode.PROVIDER_UNAVAILABLE, True),
    (504, ErrorCode.PROVIDER_UNAVAILABLE, True),
    (500, ErrorCode.PROVIDER_ERROR, True),
    (502, ErrorCode.PROVIDER_ERROR, True),
    (404, ErrorCode.PROVIDER_ERROR, False),
])
def test_http_status_mapping(status, code, retryable):
    error = map_http_status(response(status, {"message": "nope"}))
    assert error.code == code
    assert error.is_retryable is retryable
    assert "nope" in error.message


def test_credit_message_means_quota_even_without_402():
    error = map_http_status(response(400, {"error": {"message": "Insufficient credits"}}))
    assert error.code == ErrorCode.QUOTA_EXCEEDED


def test_rate_limit_carries_retry_after():
    error = map_http_status(response(429, {"msg": "slow down"}, headers={"Retry-After": "12"}))
    assert isinstance(error, RateLimitError)
    assert error.retry_after == 12.0
    assert error.details == {"retryAfter": 12.0}


def test_plain_text_error_body_is_used_as_message():
    error = map_http_status(response(500, "upstream exploded"))
    assert "upstream exploded" in error.message


def test_status_error_is_mapped_through_response():
    resp = response(401, {"detail": "bad key"})
    exc = httpx.HTTPStatusError("401", request=resp.request, response=resp)
    assert map_exception(exc).code == ErrorCode.AUTHENTICATION_FAILED


@pytest.mark.parametrize("exc, code, retryable", [
    (httpx.ReadTimeout("slow"), ErrorCode.PROVIDER_ERROR, True),
    (httpx.ConnectError("refused"), ErrorCode.PROVIDER_UNAVAILABLE, True),
    (httpx.RemoteProtocolError("eof"), ErrorCode.PROVIDER_ERROR, True),
    (KeyError("data"), ErrorCode.INTERNAL_ERROR, False),
])
def test_exception_mapping(exc, code, retryable):
    error = map_exception(exc)
    assert error.code == code
    assert error.is_retryable is retryable
    assert is_retryable_error(exc) is retryable


def test_generation_errors_pass_through_unchanged():
    original = ProviderResponseError("odd shape", {"body": {}})
    assert map_exception(original) is original
    assert not original.is_retryable


def test_provider_error_retryability_follows_status():
    assert ProviderError("x", status_code=502).is_retryable
    assert not ProviderError("x", status_code=418).is_retryable
    assert not ProviderError("x", status_code=502, is_retryable=False).is_retryable


def test_to_dict_uses_wire_keys():
    error = InvalidParametersError("Invalid request parameters", ["prompt: too short"])
    assert error.to_dict() == {
        "code": "INVALID_PARAMETERS",
        "message": "Invalid request parameters",
        "isRetryable": False,
        "details": {"errors": ["prompt: too short"]},
    }
    assert GenerationError("boom").to_dict() == {
        "code": "INTERNAL_ERROR",
        "message": "boom",
        "isRetryable": False,
    }
