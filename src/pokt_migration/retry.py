"""Bounded retry for account-sequence mismatches."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from pokt_migration.classify import is_sequence_mismatch
from pokt_migration.errors import (
    CommandFailedError,
    CommandTimeoutError,
    InvalidParameterError,
    RetriesExhaustedError,
    SequenceMismatchError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 30.0

    def __post_init__(self) -> None:
        if int(self.max_attempts) < 1:
            raise InvalidParameterError("max_attempts must be at least 1")
        if float(self.base_delay) < 0:
            raise InvalidParameterError("base_delay must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Linear backoff: wait ``base_delay * attempt`` after the given failed attempt."""
        return float(self.base_delay) * attempt


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    value: T
    attempts: int


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, SequenceMismatchError):
        return True
    if isinstance(exc, CommandTimeoutError):
        return False
    if isinstance(exc, CommandFailedError):
        return is_sequence_mismatch(exc.output)
    return False


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> RetryOutcome[T]:
    """Call ``operation`` until it succeeds or a non-retryable error escapes.

    Only sequence-mismatch failures are retried. After ``max_attempts`` of
    them, :class:`RetriesExhaustedError` is raised carrying the last one.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            value = operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= policy.max_attempts:
                raise RetriesExhaustedError(
                    f"sequence mismatch persisted after {attempt} attempts",
                    last_error=exc,
                    attempts=attempt,
                ) from exc
            delay = policy.delay_for(attempt)
            logger.warning(
                "sequence mismatch on attempt %s/%s; retrying in %ss",
                attempt,
                policy.max_attempts,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            sleep(delay)
            continue
        return RetryOutcome(value=value, attempts=attempt)
