import time
from typing import Callable, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

logger = structlog.get_logger()

T = TypeVar("T")


def retry_fixed(
        operation: Callable[[], T],
        *,
        attempts: int,
        delay: float,
        description: str,
        retry_on: tuple[type[Exception], ...] = (Exception,),
        sleep: Callable[[float], object] = time.sleep
) -> T:
    """
    Run operation until it succeeds or the attempt budget is spent.

    Waits a fixed delay between attempts and re-raises the last error
    once all attempts have failed. Errors not listed in retry_on are
    raised immediately.

    Args:
        operation: Zero-argument callable to run
        attempts: Maximum number of tries (at least 1)
        delay: Seconds to wait between tries
        description: Name used in log lines
        retry_on: Exception types worth another attempt
        sleep: Called with delay between attempts
    """
    attempts = max(1, attempts)

    def _log_failure(retry_state: RetryCallState) -> None:
        logger.warning(
            "retry_attempt_failed",
            operation=description,
            attempt=retry_state.attempt_number,
            max_attempts=attempts,
            error=str(retry_state.outcome.exception())
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception_type(retry_on),
        after=_log_failure,
        sleep=sleep,
        reraise=True,
    )

    try:
        return retrying(operation)
    except retry_on:
        # Only reachable once every attempt has failed with a retryable error
        logger.error("retry_exhausted", operation=description, attempts=attempts)
        raise
