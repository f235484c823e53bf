"""Generation error taxonomy.

Every fault that reaches an adapter's ``dispatch`` is normalised into a
:class:`GenerationError` carrying a closed-set :class:`ErrorCode` and a
retryability flag. ``map_exception`` does the classification for faults that
did not originate here (httpx status/transport errors, anything unexpected).

Setup-time faults (:class:`UnknownAdapterError`,
:class:`StorageNotConfiguredError`) derive from :class:`ConfigurationError`
instead and are allowed to propagate out of the factory.
"""

from __future__ import annotations

import enum
from typing import Any

import httpx


class ErrorCode(str, enum.Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    TASK_TIMEOUT = "TASK_TIMEOUT"
    TASK_FAILED = "TASK_FAILED"
    STORAGE_UPLOAD_FAILED = "STORAGE_UPLOAD_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Codes forwarded to the external error monitor
MONITORED_CODES = frozenset({ErrorCode.PROVIDER_ERROR, ErrorCode.INTERNAL_ERROR})


# ---------------------------------------------------------------------------
# Per-request faults
# ---------------------------------------------------------------------------

class GenerationError(Exception):
    """Structured generation error with code, details and retryable flag."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Any = None,
        *,
        is_retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.is_retryable = self.retryable if is_retryable is None else is_retryable

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "isRetryable": self.is_retryable,
        }
        if self.details is not None:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value}: {self.message!r})"


class InvalidRequestError(GenerationError):
    code = ErrorCode.INVALID_REQUEST


class InvalidParametersError(GenerationError):
    """Schema validation failed; ``details`` holds one message per field."""

    code = ErrorCode.INVALID_PARAMETERS

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []


class AuthenticationError(GenerationError):
    code = ErrorCode.AUTHENTICATION_FAILED


class QuotaExceededError(GenerationError):
    code = ErrorCode.QUOTA_EXCEEDED


class RateLimitError(GenerationError):
    code = ErrorCode.RATE_LIMITED
    retryable = True

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None):
        super().__init__(message, {"retryAfter": retry_after} if retry_after is not None else None)
        self.retry_after = retry_after


class ProviderError(GenerationError):
    """Provider returned an error. Retryable when 5xx unless the provider says otherwise."""

    code = ErrorCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        details: Any = None,
        *,
        status_code: int = 0,
        is_retryable: bool | None = None,
    ):
        if is_retryable is None:
            is_retryable = status_code >= 500
        super().__init__(message, details, is_retryable=is_retryable)
        self.status_code = status_code


class ProviderResponseError(ProviderError):
    """Provider reply did not match the expected shape."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message, details, is_retryable=False)


class ProviderUnavailableError(GenerationError):
    code = ErrorCode.PROVIDER_UNAVAILABLE
    retryable = True


class PollingTimeoutError(GenerationError):
    code = ErrorCode.TASK_TIMEOUT

    def __init__(self, task_id: str, max_duration: float):
        super().__init__(
            f"Task {task_id} did not finish within {max_duration:g}s",
            {"taskId": task_id, "maxDuration": max_duration},
        )


class TaskFailedError(GenerationError):
    code = ErrorCode.TASK_FAILED


class StorageUploadError(GenerationError):
    code = ErrorCode.STORAGE_UPLOAD_FAILED
    retryable = True


# ---------------------------------------------------------------------------
# Setup-time faults
# ---------------------------------------------------------------------------

class ConfigurationError(Exception):
    """Deployment/configuration mistake detected before any request runs."""


class UnknownAdapterError(ConfigurationError):
    def __init__(self, adapter_name: str, available: list[str]):
        super().__init__(
            f"Unknown adapter: {adapter_name}. Available adapters: {', '.join(available)}"
        )
        self.adapter_name = adapter_name
        self.available = available


class StorageNotConfiguredError(ConfigurationError):
    pass


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def _response_message(response: httpx.Response) -> str:
    """Best-effort human message from a provider error body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "msg", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error:
            return error
    text = response.text.strip()
    return text[:300] if text else f"HTTP {response.status_code}"


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def map_http_status(response: httpx.Response) -> GenerationError:
    status = response.status_code
    message = _response_message(response)
    details = {"status": status, "message": message}

    if status in (401, 403):
        return AuthenticationError(f"Authentication failed: {message}", details)
    if status == 429:
        return RateLimitError(f"Rate limit exceeded: {message}", _retry_after(response))
    if status == 402 or "credit" in message.lower():
        return QuotaExceededError(f"Quota exceeded: {message}", details)
    if status in (400, 422):
        return InvalidRequestError(f"Invalid request: {message}", details)
    if status in (503, 504):
        return ProviderUnavailableError(f"Provider unavailable: {message}", details)
    return ProviderError(f"Provider error ({status}): {message}", details, status_code=status)


def map_exception(exc: BaseException) -> GenerationError:
    """Classify any exception into the generation error taxonomy."""
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return map_http_status(exc.response)
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError("Request timeout", {"error": str(exc)}, is_retryable=True)
    if isinstance(exc, httpx.ConnectError):
        return ProviderUnavailableError("Cannot connect to provider", {"error": str(exc)})
    if isinstance(exc, httpx.TransportError):
        return ProviderError(f"Network error: {exc}", is_retryable=True)
    return GenerationError(
        f"Internal error: {exc}" if str(exc) else f"Internal error: {type(exc).__name__}",
        {"type": type(exc).__name__},
    )


def is_retryable_error(exc: BaseException) -> bool:
    return map_exception(exc).is_retryable
