from __future__ import annotations

import re
from typing import List, Optional, Tuple

import httpx

from circuitgate.core.errors import ErrorType, ProviderError, ServiceUnavailable

# Checked in order; the first match wins.
MESSAGE_PATTERNS: List[Tuple[ErrorType, re.Pattern[str]]] = [
    (ErrorType.quota, re.compile(r"quota|rate limit|too many requests|insufficient_quota", re.IGNORECASE)),
    (ErrorType.auth, re.compile(r"unauthorized|forbidden|invalid api key|jwt expired", re.IGNORECASE)),
    (ErrorType.unsupported, re.compile(r"unsupported|not implemented|model not found", re.IGNORECASE)),
    (ErrorType.transient, re.compile(r"temporarily|try again|overloaded|timeout", re.IGNORECASE)),
]


def classify_exception(exc: BaseException) -> ErrorType:
    """Label an error for the event log. Never changes what the caller sees."""
    if isinstance(exc, ProviderError):
        if exc.error_type == ErrorType.unknown:
            return classify_message(str(exc))
        return exc.error_type
    if isinstance(exc, ServiceUnavailable):
        return ErrorType.transient
    if isinstance(exc, httpx.TimeoutException):
        return ErrorType.timeout
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status_code(exc.response.status_code)
    if isinstance(exc, httpx.RequestError):
        return ErrorType.server_down
    return classify_message(str(exc))


def classify_message(message: Optional[str]) -> ErrorType:
    if not message:
        return ErrorType.unknown
    for error_type, pattern in MESSAGE_PATTERNS:
        if pattern.search(message):
            return error_type
    return ErrorType.unknown


def classify_status_code(status_code: int) -> ErrorType:
    if status_code in {401, 403}:
        return ErrorType.auth
    if status_code in {404, 405, 422}:
        return ErrorType.unsupported
    if status_code == 429:
        return ErrorType.quota
    if status_code in {408, 502, 503, 504}:
        return ErrorType.transient
    if status_code >= 500:
        return ErrorType.server_down
    return ErrorType.unknown
