"""
Exception types and failure classification.

Library code raises the typed exceptions below. The retry coordinator turns
any exception into an ``ErrorClass`` (whether to retry) and a ``Severity``
(how loudly to report it).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from .core.types import OperationKind, Severity


class SportsFeedError(Exception):
    """Base class for pipeline errors."""


class ApiError(SportsFeedError):
    """An external service answered with a non-success status."""

    def __init__(self, status_code: int, message: str, service: str = "api"):
        super().__init__(f"{service} returned {status_code}: {message}")
        self.status_code = status_code
        self.service = service

    @classmethod
    def from_response(cls, response: httpx.Response, service: str = "api") -> "ApiError":
        body = response.text[:200] if response.text else response.reason_phrase
        return cls(response.status_code, body, service)


class BudgetExceededError(SportsFeedError):
    """A spend ceiling is reached; no further costly work may start."""

    def __init__(self, period: str, current: float, limit: float):
        super().__init__(f"{period} budget exceeded: ${current:.2f} of ${limit:.2f}")
        self.period = period
        self.current = current
        self.limit = limit


class PipelinePausedError(SportsFeedError):
    """The workflow is paused; costly operations are refused."""


class ConfigError(SportsFeedError):
    """Configuration is missing or invalid."""


class FeedError(SportsFeedError):
    """A feed could not be parsed or returned no entries."""


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    CRITICAL = "critical"


_AUTH_MARKERS = ("401", "403", "unauthorized")
_CLIENT_MARKERS = ("400", "422")
_BUDGET_MARKERS = ("quota", "budget")
_NETWORK_MARKERS = ("econnreset", "timeout", "timed out", "rate limit", "429")


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, ApiError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _is_auth(exc: BaseException, message: str) -> bool:
    status = _status_of(exc)
    if status is not None:
        return status in (401, 403)
    return any(marker in message for marker in _AUTH_MARKERS)


def _is_bad_request(exc: BaseException, message: str) -> bool:
    status = _status_of(exc)
    if status is not None:
        return status in (400, 422)
    return any(marker in message for marker in _CLIENT_MARKERS)


def _is_budget(exc: BaseException, message: str, context: dict[str, Any]) -> bool:
    if isinstance(exc, BudgetExceededError) or context.get("type") == "budget_exceeded":
        return True
    return any(marker in message for marker in _BUDGET_MARKERS)


def _is_network(exc: BaseException, message: str) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if _status_of(exc) == 429:
        return True
    return any(marker in message for marker in _NETWORK_MARKERS)


def classify_error(exc: BaseException, context: dict[str, Any] | None = None) -> ErrorClass:
    """Decide whether a failed operation may be retried.

    Auth failures, malformed requests and budget breaches are never retried.
    Configuration errors are critical. Everything else is retryable.
    """
    context = context or {}
    message = str(exc).lower()
    if isinstance(exc, ConfigError):
        return ErrorClass.CRITICAL
    if isinstance(exc, (BudgetExceededError, PipelinePausedError)) or context.get("type") == "budget_exceeded":
        return ErrorClass.NON_RETRYABLE
    if _is_auth(exc, message):
        return ErrorClass.NON_RETRYABLE
    if _is_bad_request(exc, message):
        return ErrorClass.NON_RETRYABLE
    return ErrorClass.RETRYABLE


def determine_severity(exc: BaseException, context: dict[str, Any] | None = None) -> Severity:
    """Severity for an error record, from the exception and its context."""
    context = context or {}
    message = str(exc).lower()
    operation = context.get("operation")

    if _is_auth(exc, message) or isinstance(exc, ConfigError):
        return Severity.CRITICAL
    if _is_budget(exc, message, context):
        return Severity.CRITICAL
    if _is_network(exc, message):
        return Severity.MEDIUM
    if operation in ("video_generation", OperationKind.UPLOAD.value, OperationKind.REWRITE.value):
        return Severity.HIGH
    if operation in ("content_processing", OperationKind.FETCH.value, OperationKind.NOTIFY.value):
        return Severity.MEDIUM
    return Severity.LOW
