"""
Ledger helpers and the claim in-progress guard.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Deque, Dict, Optional, Set

from launchpad.core.precision import add_fixed, subtract_fixed

from .errors import AutomationError, ClaimInProgressError, ClaimRateLimitedError
from .models import EngineKind, LedgerEntry, LedgerStatus, WorkUnit
from .store import AutomationStore


class Ledger:
    """Builds ledger entries and cumulative totals for one engine."""

    def __init__(self, store: AutomationStore, engine: EngineKind):
        self._store = store
        self._engine = engine

    def entry(
        self,
        unit: WorkUnit,
        amount: Decimal,
        status: LedgerStatus,
        **kwargs: Any,
    ) -> LedgerEntry:
        return LedgerEntry(work_unit_id=unit.id, engine=self._engine, amount=amount, status=status, **kwargs)

    async def record(self, entry: LedgerEntry) -> LedgerEntry:
        await self._store.append_ledger(entry)
        return entry

    async def record_success(self, unit: WorkUnit, amount: Decimal, tx_id: Optional[str], **kwargs: Any) -> LedgerEntry:
        return await self.record(self.entry(unit, amount, LedgerStatus.SUCCESS, tx_id=tx_id, **kwargs))

    async def record_skip(self, unit: WorkUnit, amount: Decimal, reason: str, **kwargs: Any) -> LedgerEntry:
        return await self.record(self.entry(unit, amount, LedgerStatus.SKIPPED, reason=reason, **kwargs))

    async def record_failure(
        self,
        unit: WorkUnit,
        amount: Decimal,
        error: BaseException,
        **kwargs: Any,
    ) -> LedgerEntry:
        reason = error.reason.value if isinstance(error, AutomationError) else kwargs.pop("reason", "unexpected")
        message = error.message if isinstance(error, AutomationError) else (str(error) or error.__class__.__name__)
        return await self.record(
            self.entry(unit, amount, LedgerStatus.FAILED, error=message, reason=reason, **kwargs)
        )

    async def record_unconfirmed(
        self,
        unit: WorkUnit,
        amount: Decimal,
        tx_id: Optional[str],
        signatures: Any,
        **kwargs: Any,
    ) -> LedgerEntry:
        details = dict(kwargs.pop("details", {}) or {})
        details["signatures"] = list(signatures or [])
        return await self.record(
            self.entry(
                unit,
                amount,
                LedgerStatus.UNCONFIRMED,
                tx_id=tx_id,
                reason="confirmation_timeout",
                details=details,
                **kwargs,
            )
        )


def accumulate(total: Decimal, amount: Decimal) -> Decimal:
    return add_fixed(total, amount)


def deduct(balance: Decimal, amount: Decimal) -> Decimal:
    return subtract_fixed(balance, amount)


class InProgressGuard:
    """
    Per-principal in-flight marker with a sliding attempt window.

    Usage:
        guard = InProgressGuard(max_attempts=3, window_s=60)
        async with guard.hold(wallet):
            ...
    """

    def __init__(
        self,
        max_attempts: int = 3,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_attempts = max_attempts
        self._window_s = window_s
        self._clock = clock
        self._lock = asyncio.Lock()
        self._active: Set[str] = set()
        self._attempts: Dict[str, Deque[float]] = defaultdict(deque)

    def is_active(self, principal: str) -> bool:
        return principal in self._active

    async def _acquire(self, principal: str) -> None:
        async with self._lock:
            if principal in self._active:
                raise ClaimInProgressError(principal)

            now = self._clock()
            self._prune(now)
            attempts = self._attempts[principal]
            while attempts and now - attempts[0] >= self._window_s:
                attempts.popleft()
            if len(attempts) >= self._max_attempts:
                raise ClaimRateLimitedError(principal, self._window_s - (now - attempts[0]))

            attempts.append(now)
            self._active.add(principal)

    def _prune(self, now: float) -> None:
        stale = [
            principal
            for principal, attempts in self._attempts.items()
            if principal not in self._active and (not attempts or now - attempts[-1] >= self._window_s)
        ]
        for principal in stale:
            del self._attempts[principal]

    @property
    def tracked(self) -> int:
        """Principals with attempts still inside the window."""
        return len(self._attempts)

    async def _release(self, principal: str) -> None:
        async with self._lock:
            self._active.discard(principal)

    @asynccontextmanager
    async def hold(self, principal: str) -> AsyncIterator[None]:
        await self._acquire(principal)
        try:
            yield
        finally:
            await self._release(principal)
