"""
Orchestration errors.

Each one is terminal for the unit in the current pass and never fatal for
the pass itself.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    BELOW_MINIMUM = "below_minimum"
    DECRYPT_FAILURE = "decrypt_failure"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_DESTINATION = "invalid_destination"
    MARKET_CAP_TOO_LOW = "market_cap_too_low"
    SUBMISSION_FAILED = "submission_failed"
    CONFIRMATION_FAILED = "confirmation_failed"
    PROVIDER_ERROR = "provider_error"
    UNEXPECTED = "unexpected"


class AutomationError(Exception):
    """Base class for errors that end one unit's processing for this pass."""

    reason: FailureReason = FailureReason.UNEXPECTED

    def __init__(
        self,
        message: str,
        reason: Optional[FailureReason] = None,
        amount: Optional[Decimal] = None,
    ):
        super().__init__(message)
        self.message = message
        self.amount = amount if amount is not None else Decimal("0")
        if reason is not None:
            self.reason = reason


class BelowMinimumError(AutomationError):
    reason = FailureReason.BELOW_MINIMUM


class DecryptFailureError(AutomationError):
    reason = FailureReason.DECRYPT_FAILURE


class InsufficientFundsError(AutomationError):
    reason = FailureReason.INSUFFICIENT_FUNDS


class InvalidDestinationError(AutomationError):
    reason = FailureReason.INVALID_DESTINATION


class MarketCapTooLowError(AutomationError):
    reason = FailureReason.MARKET_CAP_TOO_LOW


class ClaimInProgressError(Exception):
    """A claim for this principal is already running."""

    def __init__(self, principal: str):
        super().__init__(f"A claim for {principal} is already in progress")
        self.principal = principal


class ClaimRateLimitedError(Exception):
    """Too many claim attempts for this principal in the current window."""

    def __init__(self, principal: str, retry_after_s: float):
        super().__init__(f"Too many claim attempts for {principal}; retry in {retry_after_s:.0f}s")
        self.principal = principal
        self.retry_after_s = retry_after_s


class ClaimUnauthorizedError(Exception):
    """The claim message or its signature did not verify."""


class ClaimForbiddenError(Exception):
    """The signer is not allowed to claim for this token."""


class ClaimNotFoundError(Exception):
    """No harvest parameters exist for the requested token."""
