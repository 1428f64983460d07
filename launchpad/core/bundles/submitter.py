"""
Bundle Submitter.

Delivers one transaction set to one engine, rotating through its endpoints
with bounded, classified retries.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import random
import ssl
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
import structlog

from launchpad.config import MAX_BUNDLE_ATTEMPTS, EngineConfig, SubmitterConfig, TlsClientConfig
from launchpad.core.recovery.backoff import BackoffPolicy
from launchpad.core.recovery.errors import (
    ErrorCategory,
    ErrorClassification,
    SubmissionFailure,
    classify_submission_error,
    failure_from_exception,
    failure_from_response,
)

from .endpoints import normalize_endpoints, redact_endpoint
from .errors import (
    BundleSubmissionError,
    EngineNotConfiguredError,
    SubmissionCancelledError,
    TransactionSetError,
)
from .models import BundleResult, SubmissionAttempt, SubmitOptions, TransactionSet

_slog = structlog.get_logger(__name__)

T = TypeVar("T")

STICKY_PRIMARY_ATTEMPTS = 3

PUBLIC_ENDPOINT_GUIDANCE = (
    "Public Jito endpoints are heavily rate limited; configure JITO_BLOCK_ENGINE_URLS "
    "with a dedicated or whitelisted block engine."
)


def build_ssl_context(tls: TlsClientConfig) -> ssl.SSLContext:
    context = ssl.create_default_context(cafile=tls.ca_path or None)
    if tls.cert_path:
        context.load_cert_chain(tls.cert_path, keyfile=tls.key_path, password=tls.passphrase)
    return context


def build_rpc_payload(tx_set: TransactionSet, method: str) -> Dict[str, Any]:
    if method == "sendTransaction":
        if len(tx_set) != 1:
            raise TransactionSetError("sendTransaction engines accept exactly one transaction")
        params: List[Any] = [tx_set.transactions[0], {"encoding": "base64"}]
    else:
        params = [list(tx_set.transactions), {"encoding": "base64"}]
    return {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}


class BundleSubmitter:
    """
    Sends transaction sets to relay endpoints.

    Attempts within one call are strictly sequential. Rate limits on the
    primary endpoint stay on it for the first few attempts; every other
    retryable failure rotates to the next endpoint.

    Usage:
        submitter = BundleSubmitter(SubmitterConfig(), BackoffPolicy(BackoffConfig()))
        result = await submitter.submit(tx_set, engine)
    """

    def __init__(
        self,
        config: SubmitterConfig,
        backoff: BackoffPolicy,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._backoff = backoff
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._clients: Dict[str, httpx.AsyncClient] = {}

    async def _get_client(self, engine: EngineConfig) -> httpx.AsyncClient:
        """Get or create the HTTP client for an engine (clients differ by TLS setup)."""
        client = self._clients.get(engine.key)
        if client is None or client.is_closed:
            kwargs: Dict[str, Any] = {"headers": engine.header_dict}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif engine.tls is not None and engine.tls.enabled:
                kwargs["verify"] = build_ssl_context(engine.tls)
            client = httpx.AsyncClient(**kwargs)
            self._clients[engine.key] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            if not client.is_closed:
                await client.aclose()
        self._clients.clear()

    def _max_attempts(self, options: SubmitOptions) -> int:
        requested = options.max_attempts or self._config.max_attempts
        return max(1, min(int(requested), MAX_BUNDLE_ATTEMPTS))

    def _timeout_s(self, options: SubmitOptions) -> float:
        timeout_ms = options.timeout_ms or self._config.timeout_ms
        return max(int(timeout_ms), 1_000) / 1000.0

    def _resolve_endpoints(self, engine: EngineConfig, options: SubmitOptions) -> List[str]:
        endpoints = normalize_endpoints(options.endpoints) if options.endpoints else list(engine.endpoints)
        shuffle = options.shuffle if options.shuffle is not None else engine.shuffle_endpoints
        if shuffle and len(endpoints) > 1:
            endpoints = list(endpoints)
            self._rng.shuffle(endpoints)
        return endpoints

    async def _race(
        self,
        awaitable: Awaitable[T],
        cancel_event: Optional[asyncio.Event],
        engine: EngineConfig,
        attempts: int,
    ) -> T:
        """Await ``awaitable`` unless the cancel event fires first."""
        if cancel_event is None:
            return await awaitable

        task = asyncio.ensure_future(awaitable)
        if cancel_event.is_set():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise SubmissionCancelledError(engine.key, attempts)

        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise SubmissionCancelledError(engine.key, attempts)

    async def _send_once(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        payload: Dict[str, Any],
        timeout_s: float,
    ) -> tuple[Optional[str], Optional[SubmissionFailure]]:
        try:
            response = await client.post(endpoint, json=payload, timeout=timeout_s)
        except httpx.HTTPError as exc:
            return None, failure_from_exception(exc)

        if response.status_code >= 400:
            return None, failure_from_response(response)

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            return None, SubmissionFailure(
                message="Relay returned a non-JSON response",
                status=response.status_code,
                body=response.text,
            )

        if isinstance(body, dict) and body.get("error"):
            return None, failure_from_response(response)

        bundle_id = body.get("result") if isinstance(body, dict) else None
        if not isinstance(bundle_id, str) or not bundle_id:
            return None, SubmissionFailure(
                message="Relay response did not include a bundle id",
                status=response.status_code,
                body=body,
            )
        return bundle_id, None

    async def submit(
        self,
        tx_set: TransactionSet,
        engine: EngineConfig,
        options: Optional[SubmitOptions] = None,
    ) -> BundleResult:
        """
        Submit ``tx_set`` through ``engine``.

        Returns:
            BundleResult with the relay-assigned id

        Raises:
            EngineNotConfiguredError: No endpoints to try
            BundleSubmissionError: Attempts exhausted or a non-retryable failure
            SubmissionCancelledError: The cancel event fired
        """
        options = options or SubmitOptions()
        endpoints = self._resolve_endpoints(engine, options)
        if not endpoints:
            raise EngineNotConfiguredError(engine.key, f"No endpoints configured for {engine.label}")

        payload = build_rpc_payload(tx_set, engine.method)
        dry_run = options.dry_run if options.dry_run is not None else engine.dry_run
        if dry_run:
            bundle_id = f"dryrun_{int(self._clock() * 1000):x}"
            _slog.info(
                "bundle_dry_run",
                engine=engine.key,
                bundle_id=bundle_id,
                transactions=len(tx_set),
                endpoints=[redact_endpoint(e) for e in endpoints],
            )
            return BundleResult(
                id=bundle_id,
                endpoint=endpoints[0],
                engine=engine.key,
                attempts=0,
                simulated=True,
            )

        max_attempts = self._max_attempts(options)
        timeout_s = self._timeout_s(options)
        cancel_event = options.cancel_event
        client = await self._get_client(engine)

        index = 0
        attempts = 0
        attempt_log: List[SubmissionAttempt] = []
        last_classification: Optional[ErrorClassification] = None
        last_endpoint = endpoints[0]

        for attempt in range(1, max_attempts + 1):
            endpoint = endpoints[index]
            last_endpoint = endpoint
            attempts = attempt
            record = SubmissionAttempt(engine=engine.key, endpoint=endpoint, attempt_number=attempt)
            attempt_log.append(record)

            bundle_id, failure = await self._race(
                self._send_once(client, endpoint, payload, timeout_s),
                cancel_event,
                engine,
                attempt,
            )

            if bundle_id is not None:
                record.outcome = "success"
                _slog.info(
                    "bundle_submitted",
                    engine=engine.key,
                    bundle_id=bundle_id,
                    endpoint=redact_endpoint(endpoint),
                    attempts=attempt,
                )
                return BundleResult(
                    id=bundle_id,
                    endpoint=endpoint,
                    engine=engine.key,
                    attempts=attempt,
                    attempt_log=attempt_log,
                )

            classification = classify_submission_error(failure, self._backoff.config.max_rate_limit_ms)
            last_classification = classification
            record.outcome = "failed"
            record.category = classification.category.value
            record.error = classification.reason

            if not classification.retry or attempt >= max_attempts:
                _slog.warning(
                    "bundle_attempt_failed",
                    engine=engine.key,
                    endpoint=redact_endpoint(endpoint),
                    attempt=attempt,
                    category=classification.category.value,
                    status=classification.status,
                    reason=classification.reason,
                    final=True,
                )
                break

            delay_ms = self._backoff.next_delay_ms(classification, attempt) or 0

            if len(endpoints) > 1:
                sticky = (
                    classification.category == ErrorCategory.RATE_LIMIT
                    and index == 0
                    and attempt < STICKY_PRIMARY_ATTEMPTS
                )
                if not sticky:
                    index = (index + 1) % len(endpoints)

            _slog.warning(
                "bundle_rate_limited" if classification.category == ErrorCategory.RATE_LIMIT
                else "bundle_attempt_failed",
                engine=engine.key,
                endpoint=redact_endpoint(endpoint),
                attempt=attempt,
                category=classification.category.value,
                status=classification.status,
                reason=classification.reason,
                next_endpoint=redact_endpoint(endpoints[index]),
                delay_ms=delay_ms,
            )

            await self._race(self._sleep(delay_ms / 1000.0), cancel_event, engine, attempt)

        reason = (last_classification.reason if last_classification else None) or "unknown error"
        message = f"Failed to send bundle via {engine.label} after {attempts} attempt(s): {reason}"
        if (
            last_classification is not None
            and last_classification.category == ErrorCategory.RATE_LIMIT
            and engine.public_endpoints_only
            and not options.endpoints
        ):
            message = f"{message}. {PUBLIC_ENDPOINT_GUIDANCE}"

        raise BundleSubmissionError(
            message,
            engine=engine.key,
            attempts=attempts,
            classification=last_classification,
            last_endpoint=last_endpoint,
        )
