"""
Store Retry Policies

Exponential backoff for store calls, with attempt caps chosen by the kind
of the last error. Errors that exhaust their cap are re-raised as the same
kind with the attempt count attached.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from ..core.config import Settings
from ..domain.documents.exceptions import (
    CacheEngineError,
    NetworkError,
    ThrottlingError,
    UnavailableError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class BackoffRule(BaseModel):
    """Backoff schedule for one error kind."""

    base_delay_seconds: float = Field(..., gt=0, le=60.0)
    max_attempts: int = Field(..., ge=1, le=20)


class RetryPolicy(BaseModel):
    """Retry policy configuration for one store path."""

    throttling: Optional[BackoffRule] = Field(
        default_factory=lambda: BackoffRule(base_delay_seconds=0.1, max_attempts=5)
    )
    network: Optional[BackoffRule] = Field(
        default_factory=lambda: BackoffRule(base_delay_seconds=1.0, max_attempts=3)
    )
    unavailable: Optional[BackoffRule] = Field(
        default=None, description="Unset: an unavailable store is not retried"
    )
    multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_seconds: float = Field(default=30.0, gt=0, le=3600.0)
    jitter_fraction: float = Field(default=0.0, ge=0.0, le=0.5)

    @classmethod
    def for_cache_store(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            throttling=BackoffRule(
                base_delay_seconds=settings.CACHE_THROTTLE_BASE_DELAY,
                max_attempts=settings.CACHE_THROTTLE_MAX_ATTEMPTS,
            ),
            network=BackoffRule(
                base_delay_seconds=settings.CACHE_NETWORK_BASE_DELAY,
                max_attempts=settings.CACHE_NETWORK_MAX_ATTEMPTS,
            ),
        )

    @classmethod
    def for_primary_store(cls, settings: Settings) -> "RetryPolicy":
        rule = BackoffRule(
            base_delay_seconds=settings.PRIMARY_RETRY_BASE_DELAY,
            max_attempts=settings.PRIMARY_RETRY_MAX_ATTEMPTS,
        )
        return cls(
            throttling=rule,
            network=rule,
            max_delay_seconds=settings.PRIMARY_RETRY_MAX_DELAY,
            jitter_fraction=0.1,
        )

    def rule_for(self, error: Optional[BaseException]) -> Optional[BackoffRule]:
        """Backoff rule for an error, or None when it must not be retried."""
        if isinstance(error, ThrottlingError):
            return self.throttling
        if isinstance(error, NetworkError):
            return self.network
        if isinstance(error, UnavailableError):
            return self.unavailable
        return None

    def delay_for(self, error: BaseException, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        rule = self.rule_for(error)
        if rule is None:
            return 0.0
        delay = rule.base_delay_seconds * (self.multiplier ** (attempt - 1))
        if self.jitter_fraction:
            delay += delay * self.jitter_fraction * random.uniform(-1.0, 1.0)
        return max(0.0, min(delay, self.max_delay_seconds))


def _stop_for(policy: RetryPolicy) -> Callable[[RetryCallState], bool]:
    def stop(retry_state: RetryCallState) -> bool:
        rule = policy.rule_for(retry_state.outcome.exception())
        return rule is None or retry_state.attempt_number >= rule.max_attempts

    return stop


def _wait_for(policy: RetryPolicy) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        return policy.delay_for(
            retry_state.outcome.exception(), retry_state.attempt_number
        )

    return wait


def _log_before_sleep(operation: str, context: dict) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "store_call_retrying",
            operation=operation,
            attempt=retry_state.attempt_number,
            error_type=type(error).__name__,
            error=str(error),
            delay_seconds=round(retry_state.next_action.sleep, 3),
            **context,
        )

    return log


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **context: Any,
) -> T:
    """
    Execute a store call under a retry policy.

    Args:
        operation: Operation description for logging
        func: Zero-argument coroutine function performing one attempt
        policy: Retry policy to apply
        sleep: Sleep coroutine used between attempts
        **context: Extra fields for retry log events

    Returns:
        Result of the first successful attempt

    Raises:
        CacheEngineError: The last error, with `attempts` set, once the
            policy gives up. Non-retryable errors surface on first sight.
    """
    attempts = 0
    try:
        async for attempt in AsyncRetrying(
            stop=_stop_for(policy),
            wait=_wait_for(policy),
            retry=retry_if_exception(lambda e: policy.rule_for(e) is not None),
            before_sleep=_log_before_sleep(operation, context),
            sleep=sleep,
            reraise=True,
        ):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                result = await func()
    except CacheEngineError as e:
        e.attempts = attempts
        if attempts > 1:
            logger.error(
                "store_call_retries_exhausted",
                operation=operation,
                attempts=attempts,
                error_type=type(e).__name__,
                error=e.message,
                **context,
            )
        raise

    return result
