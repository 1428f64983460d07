"""Exceptions raised by bundle submission."""

from typing import List, Optional

from launchpad.core.recovery.errors import ErrorCategory, ErrorClassification


class BundleError(Exception):
    """Base exception for bundle errors."""
    pass


class TransactionSetError(BundleError, ValueError):
    """A transaction set violated its size or content rules."""
    pass


class EngineNotConfiguredError(BundleError):
    """The requested engine is unknown or has no endpoints."""

    def __init__(self, engine: str, message: Optional[str] = None):
        super().__init__(message or f"Bundle engine '{engine}' is not configured")
        self.engine = engine


class SubmissionCancelledError(BundleError):
    """The caller's cancel event fired while a submission was in flight."""

    def __init__(self, engine: str, attempts: int):
        super().__init__(f"Bundle submission via {engine} cancelled after {attempts} attempt(s)")
        self.engine = engine
        self.attempts = attempts


class BundleSubmissionError(BundleError):
    """All attempts against one engine failed."""

    def __init__(
        self,
        message: str,
        engine: str,
        attempts: int = 0,
        classification: Optional[ErrorClassification] = None,
        last_endpoint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.engine = engine
        self.attempts = attempts
        self.classification = classification
        self.last_endpoint = last_endpoint

    @property
    def category(self) -> Optional[ErrorCategory]:
        return self.classification.category if self.classification else None


class AggregateBundleError(BundleError):
    """Every engine in the failover order failed."""

    def __init__(self, errors: List[BundleError]):
        self.errors = list(errors)
        if self.errors:
            details = "; ".join(f"[{_engine_of(err)}] {err}" for err in self.errors)
            message = f"All bundle engines failed: {details}"
        else:
            message = "All bundle engines failed: no bundle engines available"
        super().__init__(message)

    @property
    def engines(self) -> List[str]:
        return [_engine_of(err) for err in self.errors]


def _engine_of(error: BaseException) -> str:
    return getattr(error, "engine", None) or "unknown"
