"""
Error Classification

Turns a raw relay submission failure into a category, a retry decision
and an optional server-requested delay. Classification is pure: it never
performs I/O and never mutates its input.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of submission errors for retry decisions."""

    RATE_LIMIT = "rate_limit"     # 429 or explicit throttling
    BACKEND = "backend"           # 5xx, relay timeouts, temporary outages
    BLOCKHASH = "blockhash"       # stale blockhash, bundle already landed/dropped
    NETWORK = "network"           # no response received at all
    CLIENT = "client"             # 4xx, permanent request errors
    GENERIC = "generic"           # anything else


RATE_LIMIT_PATTERNS = ("rate limit", "too many requests")
BACKEND_PATTERNS = ("temporarily unavailable", "timeout", "timed out")
BLOCKHASH_PATTERNS = (
    "blockhash not found",
    "bundle already landed",
    "bundle dropped",
    "no available leader schedule",
)
BLOCKHASH_CODES = (-32007, -32009)

RETRY_AFTER_BODY_FIELDS = ("retryAfterMs", "retry_after_ms", "retry_ms")


@dataclass
class SubmissionFailure:
    """Everything the classifier needs to know about one failed attempt."""

    message: str = ""
    status: Optional[int] = None
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    no_response: bool = False

    @property
    def error_object(self) -> Dict[str, Any]:
        if isinstance(self.body, dict) and isinstance(self.body.get("error"), dict):
            return self.body["error"]
        return {}

    @property
    def code(self) -> Optional[int]:
        code = self.error_object.get("code")
        return code if isinstance(code, int) else None

    @property
    def reason(self) -> str:
        message = self.error_object.get("message")
        if isinstance(message, str) and message:
            return message
        return self.message or ""


@dataclass
class ErrorClassification:
    category: ErrorCategory = ErrorCategory.GENERIC
    retry: bool = True
    retry_after_ms: Optional[int] = None
    status: Optional[int] = None
    code: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "retry": self.retry,
            "retryAfterMs": self.retry_after_ms,
            "status": self.status,
            "code": self.code,
            "reason": self.reason,
        }


def parse_retry_after(headers: Optional[Mapping[str, str]], now: Optional[float] = None) -> Optional[int]:
    """Read a ``Retry-After`` header given as seconds or an HTTP-date."""
    if not headers:
        return None

    value = None
    for key, candidate in headers.items():
        if key.lower() == "retry-after":
            value = candidate
            break
    if value is None or str(value).strip() == "":
        return None

    raw = str(value).strip()
    try:
        seconds = float(raw)
    except ValueError:
        seconds = None
    if seconds is not None:
        return int(seconds * 1000) if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    delta_ms = (when.timestamp() - (now if now is not None else time.time())) * 1000
    return int(delta_ms) if delta_ms > 0 else 0


def _retry_after_from_body(failure: SubmissionFailure) -> Optional[int]:
    candidates = [failure.error_object.get(name) for name in RETRY_AFTER_BODY_FIELDS]
    if isinstance(failure.body, dict):
        candidates.append(failure.body.get("retryAfterMs"))

    for candidate in candidates:
        if candidate is None or isinstance(candidate, bool):
            continue
        try:
            numeric = float(candidate)
        except (TypeError, ValueError):
            continue
        if numeric < 0:
            continue
        # Small values are seconds, large ones are already milliseconds
        return int(numeric if numeric >= 1000 else numeric * 1000)
    return None


def classify_submission_error(
    failure: SubmissionFailure,
    max_retry_after_ms: int = 300_000,
) -> ErrorClassification:
    """
    Classify a failed submission attempt.

    Rules are evaluated in order and the first match wins:
    rate limit, explicit retry-after, backend, blockhash, network, client, generic.
    """
    reason = failure.reason
    message = reason.lower()
    code = failure.code
    status = failure.status

    retry_after_ms = parse_retry_after(failure.headers)
    body_retry_after = _retry_after_from_body(failure)
    if body_retry_after is not None:
        retry_after_ms = max(retry_after_ms or 0, body_retry_after)
    if retry_after_ms is not None:
        retry_after_ms = min(retry_after_ms, max_retry_after_ms)

    classification = ErrorClassification(
        category=ErrorCategory.GENERIC,
        retry=True,
        retry_after_ms=retry_after_ms,
        status=status,
        code=code,
        reason=reason or None,
    )

    if status == 429 or any(p in message for p in RATE_LIMIT_PATTERNS):
        classification.category = ErrorCategory.RATE_LIMIT
        return classification

    if retry_after_ms is not None:
        classification.category = ErrorCategory.RATE_LIMIT
        return classification

    if (status is not None and status >= 500) or any(p in message for p in BACKEND_PATTERNS):
        classification.category = ErrorCategory.BACKEND
        return classification

    if code in BLOCKHASH_CODES or any(p in message for p in BLOCKHASH_PATTERNS):
        classification.category = ErrorCategory.BLOCKHASH
        return classification

    if failure.no_response:
        classification.category = ErrorCategory.NETWORK
        return classification

    if status is not None and 400 <= status < 500:
        classification.category = ErrorCategory.CLIENT
        classification.retry = False
        classification.reason = reason or f"HTTP {status}"
        return classification

    return classification


def failure_from_response(response: httpx.Response, message: Optional[str] = None) -> SubmissionFailure:
    """Build a failure from a relay response (non-2xx or a JSON-RPC error body)."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        body = response.text or None

    if message is None:
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            message = str(error.get("message") or error)
        elif error:
            message = str(error)
        else:
            message = f"HTTP {response.status_code}"

    return SubmissionFailure(
        message=message,
        status=response.status_code,
        body=body,
        headers=dict(response.headers),
    )


def failure_from_exception(exc: Exception) -> SubmissionFailure:
    """Map an httpx exception (or anything else) onto a failure record."""
    if isinstance(exc, httpx.HTTPStatusError):
        return failure_from_response(exc.response)
    if isinstance(exc, httpx.TimeoutException):
        detail = str(exc)
        return SubmissionFailure(
            message=f"request timeout: {detail}" if detail else "request timeout",
            no_response=True,
        )
    if isinstance(exc, httpx.TransportError):
        return SubmissionFailure(message=str(exc) or exc.__class__.__name__, no_response=True)
    return SubmissionFailure(message=str(exc) or exc.__class__.__name__)
