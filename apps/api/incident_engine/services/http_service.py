"""Outbound HTTP retry policy shared by the channel providers."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0
    retry_statuses: frozenset[int] = RETRYABLE_STATUSES


DEFAULT_RETRY_POLICY = RetryPolicy()


def _backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Exponential delay after the given 1-based attempt, with up to 50% jitter."""
    delay = min(policy.max_delay, policy.base_delay * (2 ** (attempt - 1)))
    return delay + random.uniform(0, delay / 2) if delay else 0.0


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> httpx.Response:
    """
    Call ``request_fn`` until it returns a non-retryable response.

    The response of the last attempt is returned even when its status is
    retryable; callers decide what a bad status means. Transport errors on
    the last attempt propagate.
    """
    attempt = 1
    while True:
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= policy.max_attempts:
                raise
            reason = type(exc).__name__
        else:
            if response.status_code not in policy.retry_statuses or attempt >= policy.max_attempts:
                return response
            reason = f"HTTP {response.status_code}"

        delay = _backoff_delay(policy, attempt)
        logger.warning(
            "Outbound request attempt %d/%d failed (%s), retrying in %.2fs",
            attempt,
            policy.max_attempts,
            reason,
            delay,
        )
        await asyncio.sleep(delay)
        attempt += 1
