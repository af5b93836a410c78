"""Failure classification into actionable, retry-aware diagnostics."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

import httpx

PROXY_ERROR_LABEL = "Proxy error"


class ErrorCategory(StrEnum):
    NETWORK = "network"
    CORS = "cors"
    SERVER = "server"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    CONFIG = "config"
    OUI = "oui"
    AUTH = "auth"
    UNKNOWN = "unknown"


RETRYABLE_CATEGORIES = frozenset(
    {
        ErrorCategory.NETWORK,
        ErrorCategory.SERVER,
        ErrorCategory.TIMEOUT,
        ErrorCategory.CONFIG,
        ErrorCategory.UNKNOWN,
    }
)


class ErrorSource(StrEnum):
    SEARCH = "search"
    PROVISION = "provision"
    CONFIG = "config"
    OUI = "oui"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    source: ErrorSource | None = None
    url: str | None = None
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    category: ErrorCategory
    title: str
    message: str
    likely_cause: str
    suggestion: str
    technical_detail: str | None = None

    @property
    def is_retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "category": self.category.value,
            "title": self.title,
            "message": self.message,
            "likelyCause": self.likely_cause,
            "suggestion": self.suggestion,
            "isRetryable": self.is_retryable,
        }
        if self.technical_detail:
            payload["technicalDetail"] = self.technical_detail
        return payload


class ClassifiedRequestError(Exception):
    """Raised when a directory request fails; carries the classified diagnostic."""

    error_code = "classified_request_error"

    def __init__(self, classified: ClassifiedError) -> None:
        super().__init__(classified.message)
        self.classified = classified

    @property
    def category(self) -> ErrorCategory:
        return self.classified.category


@dataclass(frozen=True, slots=True)
class _StatusRule:
    applies: Callable[[int], bool]
    category: ErrorCategory
    title: str
    message: str
    likely_cause: str
    suggestion: str


@dataclass(frozen=True, slots=True)
class _ErrorRule:
    category: ErrorCategory
    title: str
    message: str
    likely_cause: str
    suggestion: str
    pattern: re.Pattern[str] | None = None
    exception_types: tuple[type[BaseException], ...] = ()

    def matches(self, error: BaseException, message: str) -> bool:
        if self.exception_types and isinstance(error, self.exception_types):
            return True
        if self.pattern is None:
            return False
        return (
            self.pattern.search(message) is not None
            or self.pattern.search(type(error).__name__) is not None
        )


_STATUS_RULES: tuple[_StatusRule, ...] = (
    _StatusRule(
        applies=lambda status_code: status_code >= 500,
        category=ErrorCategory.SERVER,
        title="Server Error",
        message="The server returned an error ({status_code}).",
        likely_cause="The backend service encountered an internal error.",
        suggestion="Wait a moment and try again. If the problem persists, contact support.",
    ),
    _StatusRule(
        applies=lambda status_code: status_code == 400,
        category=ErrorCategory.VALIDATION,
        title="Invalid Request",
        message="The server rejected the request as invalid.",
        likely_cause="The data sent may be in the wrong format or contain invalid values.",
        suggestion="Check your input and try again.",
    ),
    _StatusRule(
        applies=lambda status_code: status_code in {401, 403},
        category=ErrorCategory.AUTH,
        title="Access Denied",
        message="You do not have permission to perform this action.",
        likely_cause="Your session may have expired or you lack the required permissions.",
        suggestion="Refresh and try again.",
    ),
)

_OUI_RULE = _ErrorRule(
    category=ErrorCategory.OUI,
    title="OUI Not Recognized",
    message="The MAC address vendor (OUI) is not in the approved list.",
    likely_cause="This device manufacturer is not configured for provisioning.",
    suggestion=(
        "Verify the MAC address is correct. If it is, contact your administrator "
        "to add this OUI."
    ),
)

# First match wins; specific signals must stay ahead of generic ones.
_ERROR_RULES: tuple[_ErrorRule, ...] = (
    _ErrorRule(
        category=ErrorCategory.CORS,
        pattern=re.compile(
            r"cors|cross-origin|blocked by cors|access-control-allow-origin", re.IGNORECASE
        ),
        title="Connection Blocked",
        message="The browser blocked this request due to security restrictions.",
        likely_cause=(
            "The backend API server is not configured to accept requests from this application."
        ),
        suggestion=(
            "Contact the API administrator to enable CORS headers, or use the application proxy."
        ),
    ),
    _ErrorRule(
        category=ErrorCategory.NETWORK,
        pattern=re.compile(
            r"failed to fetch|network error|networkerror|net::|connection refused"
            r"|name or service not known|temporary failure in name resolution",
            re.IGNORECASE,
        ),
        title="Network Error",
        message="Unable to connect to the server.",
        likely_cause="The server may be down, or there could be a network connectivity issue.",
        suggestion="Check your network connection and verify the server is running.",
        exception_types=(httpx.NetworkError, ConnectionError),
    ),
    _ErrorRule(
        category=ErrorCategory.TIMEOUT,
        pattern=re.compile(r"timeout|timed out|aborted", re.IGNORECASE),
        title="Request Timeout",
        message="The server took too long to respond.",
        likely_cause="The server may be overloaded or the network is slow.",
        suggestion="Wait a moment and try again. If the problem persists, contact support.",
        exception_types=(httpx.TimeoutException, TimeoutError),
    ),
    _ErrorRule(
        category=ErrorCategory.SERVER,
        pattern=re.compile(r"server error|5\d{2}|internal server|502|503|504", re.IGNORECASE),
        title="Server Error",
        message="The server encountered an error processing your request.",
        likely_cause="There may be an issue with the backend service or database.",
        suggestion="This is a temporary issue. Wait a few minutes and try again.",
    ),
    _ErrorRule(
        category=ErrorCategory.VALIDATION,
        pattern=re.compile(r"validation|400|bad request|invalid", re.IGNORECASE),
        title="Validation Error",
        message="The request contains invalid data.",
        likely_cause="The MAC address format or configuration values may be incorrect.",
        suggestion="Verify all input values are correct and try again.",
    ),
    _ErrorRule(
        category=ErrorCategory.AUTH,
        pattern=re.compile(r"401|403|unauthorized|forbidden|authentication", re.IGNORECASE),
        title="Access Denied",
        message="You do not have permission to perform this action.",
        likely_cause="Your session may have expired or you lack the required permissions.",
        suggestion="Try again after signing in. If the issue persists, contact your administrator.",
    ),
    _ErrorRule(
        category=ErrorCategory.CONFIG,
        pattern=re.compile(r"config|provision-defaults|approved-ouis", re.IGNORECASE),
        title="Configuration Error",
        message="Failed to load application configuration.",
        likely_cause="Configuration files may be missing or inaccessible.",
        suggestion="Reload the configuration. If the problem persists, contact support.",
    ),
)

_UNKNOWN_RULE = _ErrorRule(
    category=ErrorCategory.UNKNOWN,
    title="Unexpected Error",
    message="An unexpected error occurred.",
    likely_cause="This could be a temporary issue or a bug in the application.",
    suggestion="Try again. If the problem persists, contact support.",
)


def classify_error(
    error: BaseException | str,
    context: ErrorContext | None = None,
) -> ClassifiedError:
    """Map a raw failure to a ClassifiedError.

    Precedence: an explicit HTTP status in ``context``, then an OUI context,
    then the ordered message/exception rule table, then ``unknown``.
    """
    exc = Exception(error) if isinstance(error, str) else error
    detail = str(exc) or None

    if context is not None and context.status_code is not None:
        status_code = context.status_code
        for status_rule in _STATUS_RULES:
            if status_rule.applies(status_code):
                return ClassifiedError(
                    category=status_rule.category,
                    title=status_rule.title,
                    message=status_rule.message.format(status_code=status_code),
                    likely_cause=status_rule.likely_cause,
                    suggestion=status_rule.suggestion,
                    technical_detail=detail,
                )

    if context is not None and context.source is ErrorSource.OUI:
        return _from_rule(_OUI_RULE, detail)

    message = str(exc)
    for rule in _ERROR_RULES:
        if rule.matches(exc, message):
            return _from_rule(rule, detail)

    return _from_rule(_UNKNOWN_RULE, detail)


def create_error_from_response(
    response: httpx.Response,
    context: ErrorContext | None = None,
) -> ClassifiedError:
    """Classify a non-success HTTP response without ever raising."""
    message = _response_error_message(response)
    response_context = replace(context or ErrorContext(), status_code=response.status_code)
    return classify_error(Exception(message), response_context)


def is_proxy_failure(response: httpx.Response) -> bool:
    """Return True when a 502 came from the edge proxy rather than the backend."""
    if response.status_code != 502:
        return False
    payload = _json_payload(response)
    return isinstance(payload, Mapping) and payload.get("error") == PROXY_ERROR_LABEL


def _from_rule(rule: _ErrorRule, detail: str | None) -> ClassifiedError:
    return ClassifiedError(
        category=rule.category,
        title=rule.title,
        message=rule.message,
        likely_cause=rule.likely_cause,
        suggestion=rule.suggestion,
        technical_detail=detail,
    )


def _response_error_message(response: httpx.Response) -> str:
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    payload = _json_payload(response)
    if not isinstance(payload, Mapping):
        return fallback

    for key in ("detail", "error", "message"):
        value = payload.get(key)
        if not value:
            continue
        if isinstance(value, str):
            return value
        return json.dumps(value)
    return fallback


def _json_payload(response: httpx.Response) -> Any:
    try:
        body = response.text
    except httpx.ResponseNotRead:
        return None
    if not body:
        return None

    try:
        return json.loads(body)
    except ValueError:
        return None
