"""
Submission Error Recovery

Error classification and adaptive backoff for relay submissions.
"""

from .backoff import BackoffPolicy
from .errors import (
    ErrorCategory,
    ErrorClassification,
    SubmissionFailure,
    classify_submission_error,
    failure_from_exception,
    failure_from_response,
    parse_retry_after,
)

__all__ = [
    "BackoffPolicy",
    "ErrorCategory",
    "ErrorClassification",
    "SubmissionFailure",
    "classify_submission_error",
    "failure_from_exception",
    "failure_from_response",
    "parse_retry_after",
]
