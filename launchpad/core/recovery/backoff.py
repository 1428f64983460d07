"""
Backoff Policy

Converts an error classification and a 1-based attempt number into a wait.
Each category has its own growth curve and cap; the result is jittered and
floored so that concurrent callers spread out and never spin.
"""

import random
from typing import Optional

from launchpad.config import BackoffConfig

from .errors import ErrorCategory, ErrorClassification


class BackoffPolicy:
    """
    Adaptive per-category backoff.

    Usage:
        policy = BackoffPolicy(BackoffConfig())
        wait_ms = policy.next_delay_ms(classification, attempt=2)
    """

    def __init__(self, config: BackoffConfig, rng: Optional[random.Random] = None):
        self._config = config
        self._rng = rng or random.Random()

    @property
    def config(self) -> BackoffConfig:
        return self._config

    def cap_for(self, category: ErrorCategory) -> int:
        cfg = self._config
        return {
            ErrorCategory.RATE_LIMIT: cfg.max_rate_limit_ms,
            ErrorCategory.BACKEND: cfg.max_backend_ms,
            ErrorCategory.BLOCKHASH: cfg.max_blockhash_ms,
            ErrorCategory.NETWORK: cfg.max_network_ms,
        }.get(category, cfg.max_generic_ms)

    def compute_delay_ms(self, classification: ErrorClassification, attempt: int) -> Optional[int]:
        """Un-jittered delay, or None when the failure must not be retried."""
        if not classification.retry:
            return None

        cfg = self._config
        if classification.retry_after_ms is not None:
            return min(classification.retry_after_ms, cfg.max_rate_limit_ms)

        n = max(1, attempt)
        category = classification.category

        if category == ErrorCategory.RATE_LIMIT:
            delay = cfg.rate_limit_base_ms * (cfg.rate_limit_factor ** (n - 1))
        elif category == ErrorCategory.BACKEND:
            delay = cfg.backend_step_ms * n
        elif category == ErrorCategory.BLOCKHASH:
            delay = cfg.blockhash_step_ms * n
        elif category == ErrorCategory.NETWORK:
            delay = cfg.network_step_ms * n
        else:
            delay = cfg.generic_step_ms * n

        return int(min(delay, self.cap_for(category)))

    def jitter(self, delay_ms: int) -> int:
        cfg = self._config
        if delay_ms <= 0:
            return 0
        spread = max(cfg.jitter_max - cfg.jitter_min, 0.0)
        factor = cfg.jitter_max if spread == 0 else cfg.jitter_min + self._rng.random() * spread
        return int(round(delay_ms * factor))

    def next_delay_ms(self, classification: ErrorClassification, attempt: int) -> Optional[int]:
        """Jittered wait before the next attempt, never below the configured floor."""
        delay = self.compute_delay_ms(classification, attempt)
        if delay is None:
            return None
        return max(self.jitter(delay), self._config.min_delay_ms)
