"""
Failover Coordinator.

Tries engines in priority order until one accepts the bundle.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from .errors import AggregateBundleError, BundleError, BundleSubmissionError, EngineNotConfiguredError
from .models import BundleResult, SubmitOptions, TransactionSet
from .registry import EngineRegistry
from .submitter import BundleSubmitter

_slog = structlog.get_logger(__name__)


class FailoverCoordinator:
    """
    Sends a transaction set through the registry's engines in order.

    A single failed engine surfaces its own error; two or more surface an
    ``AggregateBundleError`` listing one reason per engine. With
    ``disable_failover`` the first failure propagates immediately.
    """

    def __init__(self, registry: EngineRegistry, submitter: BundleSubmitter):
        self._registry = registry
        self._submitter = submitter

    @property
    def registry(self) -> EngineRegistry:
        return self._registry

    @property
    def submitter(self) -> BundleSubmitter:
        return self._submitter

    async def send_bundle(
        self,
        tx_set: TransactionSet,
        options: Optional[SubmitOptions] = None,
    ) -> BundleResult:
        options = options or SubmitOptions()
        order = self._registry.resolve_order(options)
        failures: List[BundleError] = []

        for engine_key in order:
            engine = self._registry.get(engine_key)
            if engine is None or (not engine.endpoints and not options.endpoints):
                error = EngineNotConfiguredError(engine_key)
                failures.append(error)
                _slog.warning("engine_unavailable", engine=engine_key)
                if options.disable_failover:
                    raise error
                continue

            try:
                result = await self._submitter.submit(tx_set, engine, options)
            except (BundleSubmissionError, EngineNotConfiguredError) as exc:
                failures.append(exc)
                _slog.warning(
                    "engine_failed",
                    engine=engine_key,
                    error=str(exc),
                    remaining=len(order) - order.index(engine_key) - 1,
                )
                if options.disable_failover:
                    raise
                continue

            if failures:
                _slog.info("engine_failover_succeeded", engine=engine_key, failed_engines=len(failures))
            return result

        if len(failures) == 1:
            raise failures[0]
        raise AggregateBundleError(failures)
