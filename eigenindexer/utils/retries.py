"""
Retries with exponential backoff for calls to rate-limited RPC providers
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from eigenindexer.utils.error_utils import (
    ConfigurationError,
    ErrorClassifier,
    ErrorKind,
    default_error_classifier,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry settings.

    Attributes:
        max_retries (int): Total number of attempts, including the first one.
        base_delay (float): Delay in seconds before the first retry.
        max_delay (float): Upper bound of any single delay in seconds.
        backoff_multiplier (float): Growth factor of the delay per attempt.
        rate_limit_multiplier (float): Extra growth factor applied
            when the provider throttled us, for a longer cooldown.
    """

    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0
    backoff_multiplier: float = 2.0
    rate_limit_multiplier: float = 1.5

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError(
                f"max_retries must be at least 1, got {self.max_retries}"
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Retry delays must not be negative")


def compute_retry_delay(
    attempt: int, config: RetryConfig, kind: ErrorKind = ErrorKind.OTHER
) -> float:
    """
    Calculate the delay before the next attempt.

    :param attempt: The 1-based number of the attempt that just failed.
    :param config: The retry settings.
    :param kind: The classification of the failure.
    :return: The delay in seconds.
    """
    multiplier = config.backoff_multiplier
    if kind == ErrorKind.RATE_LIMIT:
        multiplier *= config.rate_limit_multiplier
    return min(config.max_delay, config.base_delay * multiplier ** (attempt - 1))


async def with_retries(
    operation_to_retry: Callable[[], Awaitable[T]],
    log: logging.Logger,
    config: Optional[RetryConfig] = None,
    classifier: Optional[ErrorClassifier] = None,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Retry an async operation with exponential backoff on transient errors.
    Errors that are not transient fail after the first attempt.
    When all attempts fail, the last error is re-raised
    with the number of attempts stored in its attempts attribute.

    :param operation_to_retry: A callable returning a new awaitable for each attempt.
    :param log: The logger receiving retry messages.
    :param config: The retry settings.
    :param classifier: The classifier deciding which errors are transient.
    :param context: A description of the operation for log messages.
    :param sleep: The coroutine used to wait between attempts.
    :return: The result of the operation.
    """
    if config is None:
        config = RetryConfig()
    if classifier is None:
        classifier = default_error_classifier()

    for attempt in range(1, config.max_retries + 1):
        try:
            log.debug("%s: attempt %s/%s", context, attempt, config.max_retries)
            return await operation_to_retry()
        except Exception as e:  # pylint: disable=broad-except
            kind = classifier.classify(e)
            e.attempts = attempt
            if not kind.retryable:
                log.warning(
                    "%s failed with non-retryable %s error: %s", context, kind.value, e
                )
                raise
            if attempt == config.max_retries:
                log.error(
                    "%s failed after %s attempts (%s): %s",
                    context,
                    attempt,
                    kind.value,
                    e,
                )
                raise
            delay = compute_retry_delay(attempt, config, kind)
            log.warning(
                "%s attempt %s/%s failed (%s), retrying in %.2fs: %s",
                context,
                attempt,
                config.max_retries,
                kind.value,
                delay,
                e,
            )
            await sleep(delay)

    # Unreachable since the loop either returns or raises.
    raise RuntimeError(f"{context} exhausted retries")
