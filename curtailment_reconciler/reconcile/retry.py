"""
Shared retry policy for upstream calls.

One RetryPolicy is built from RetryConfig and injected into every component
that talks to the database, so backoff behaviour is configured in one place.
"""

import time
from typing import Any, Callable, TypeVar

from psycopg import OperationalError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from curtailment_reconciler.core.config import RetryConfig
from curtailment_reconciler.core.exceptions import TransientError
from curtailment_reconciler.observability.logger import get_logger
from curtailment_reconciler.observability.metrics import increment_counter, retries_total

logger = get_logger()

T = TypeVar("T")

RETRYABLE_EXCEPTIONS = (OperationalError, TransientError, TimeoutError)


class RetryPolicy:
    """
    Exponential backoff with jitter around a callable.

    Only RETRYABLE_EXCEPTIONS are retried; anything else propagates on the
    first attempt. After max_attempts the last exception is re-raised.

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=3))
        rows = policy.call("fetch_source_records", repo.fetch_source_records, day)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            config: Attempts and delays (defaults to RetryConfig())
            sleep: Sleep function; tests pass a no-op
        """
        self.config = config or RetryConfig()
        self._sleep = sleep

    def _wait(self):
        cfg = self.config
        wait = wait_exponential(multiplier=cfg.base_delay_seconds, max=cfg.max_delay_seconds)
        if cfg.jitter_seconds > 0:
            wait = wait + wait_random(0, cfg.jitter_seconds)
        return wait

    def _before_sleep(self, operation: str) -> Callable[[RetryCallState], None]:
        def log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            increment_counter(retries_total, 1, operation=operation)
            logger.warning(
                f"Retrying {operation} after transient error",
                extra={
                    "operation": operation,
                    "attempt": state.attempt_number,
                    "max_attempts": self.config.max_attempts,
                    "delay_seconds": round(delay, 3),
                    "error": str(exc),
                },
            )

        return log_retry

    def call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Invoke fn with retries.

        Args:
            operation: Name used in logs and the retries metric
            fn: Callable to invoke
            *args, **kwargs: Passed to fn

        Returns:
            Whatever fn returns

        Raises:
            The last exception raised by fn once attempts are exhausted
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
            before_sleep=self._before_sleep(operation),
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
