#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .exceptions import RetryError
from .interfaces import retries as retries_interface


class ExponentialBackoffJitterType(Enum):
    """Jitter mode for exponential backoff.

    For use with :py:class:`ExponentialRetryBackoffStrategy`.
    """

    DEFAULT = 1
    """Truncated binary exponential backoff delay with equal jitter:

    .. code-block:: python

        capped = min(max_backoff, backoff_scale_value * 2 ** (retry_attempt - 1))
        (capped / 2) + random_between(0, capped / 2)
    """

    NONE = 2
    """Truncated binary exponential backoff delay without jitter:

    .. code-block:: python

        min(max_backoff, backoff_scale_value * 2 ** (retry_attempt - 1))
    """

    FULL = 3
    """Truncated binary exponential backoff delay with full jitter:

    .. code-block:: python

        random_between(0, min(max_backoff, backoff_scale_value * 2 ** (retry_attempt - 1)))
    """


class ExponentialRetryBackoffStrategy(retries_interface.RetryBackoffStrategy):
    def __init__(
        self,
        *,
        backoff_scale_value: float = 0.025,
        max_backoff: float = 20,
        jitter_type: ExponentialBackoffJitterType = ExponentialBackoffJitterType.DEFAULT,
        random: Callable[[], float] = random.random,
    ):
        """Exponential backoff with optional jitter.

        Useful for polls against resources that usually settle quickly but
        occasionally take much longer.

        .. seealso:: https://aws.amazon.com/blogs/architecture/exponential-backoff-and-jitter/

        :param backoff_scale_value: Factor that linearly adjusts returned backoff delay
        values.

        :param max_backoff: Upper limit for backoff delay values returned, in seconds.

        :param jitter_type: Determines the formula used to apply jitter to the backoff
        delay.

        :param random: A callable that returns random numbers between ``0`` and ``1``.
        """
        self._backoff_scale_value = backoff_scale_value
        self._max_backoff = max_backoff
        self._jitter_type = jitter_type
        self._random = random

    def compute_next_backoff_delay(self, retry_attempt: int) -> float:
        """Calculate timespan in seconds to delay before next retry.

        :param retry_attempt: The index of the retry attempt that is about to be made
        after the delay. The initial attempt, before any retries, is index ``0``, and
        will return a delay of ``0``.
        """
        if retry_attempt == 0:
            return 0

        capped = min(
            self._backoff_scale_value * (2.0 ** (retry_attempt - 1)),
            self._max_backoff,
        )
        match self._jitter_type:
            case ExponentialBackoffJitterType.NONE:
                return capped
            case ExponentialBackoffJitterType.DEFAULT:
                return (self._random() * 0.5 + 0.5) * capped
            case ExponentialBackoffJitterType.FULL:
                return self._random() * capped


class FixedRetryBackoffStrategy(retries_interface.RetryBackoffStrategy):
    def __init__(self, *, delay: float):
        """Backoff that waits the same amount of time before every retry.

        :param delay: Seconds to wait before each retry attempt.
        """
        self._delay = delay

    def compute_next_backoff_delay(self, retry_attempt: int) -> float:
        if retry_attempt == 0:
            return 0
        return self._delay


@dataclass(kw_only=True)
class SimpleRetryToken:
    """Basic retry token that stores the attempt count and when attempts started.

    Retry tokens should always be obtained from an implementation of
    :py:class:`retries_interface.RetryStrategy`.
    """

    retry_count: int
    """Retry count is the total number of attempts minus the initial attempt."""

    retry_delay: float
    """Delay in seconds to wait before the retry attempt."""

    started_at: float = field(default_factory=time.monotonic)
    """Monotonic clock reading taken when the initial token was issued."""

    @property
    def attempt_count(self) -> int:
        """The total number of attempts including the initial attempt and retries."""
        return self.retry_count + 1


class SimpleRetryStrategy(retries_interface.RetryStrategy):
    def __init__(
        self,
        *,
        backoff_strategy: retries_interface.RetryBackoffStrategy | None = None,
        max_attempts: int | None = 5,
        max_duration: float | None = None,
        retry_unclassified: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Retry strategy bounded by attempt count, elapsed time, or both.

        Transport retries bound the number of attempts. Convergence polls and
        tracked-task loops bound the elapsed time instead and retry every error that
        is not explicitly marked unsafe.

        :param backoff_strategy: The backoff strategy used by returned tokens to compute
        the retry delay. Defaults to a fixed five second delay.

        :param max_attempts: Upper limit on total number of attempts made, including
        initial attempt and retries. ``None`` disables the limit.

        :param max_duration: Upper limit, in seconds, on the time between the initial
        token and the next attempt. ``None`` disables the limit.

        :param retry_unclassified: Whether errors that carry no retry information, or
        report their retry safety as unknown, may be retried.

        :param clock: Monotonic clock used to measure ``max_duration``.
        """
        self.backoff_strategy = backoff_strategy or FixedRetryBackoffStrategy(
            delay=5.0
        )
        self.max_attempts = max_attempts
        self.max_duration = max_duration
        self.retry_unclassified = retry_unclassified
        self._clock = clock

    def acquire_initial_retry_token(
        self, *, token_scope: str | None = None
    ) -> SimpleRetryToken:
        """Called before any retries (for the first attempt at the operation).

        :param token_scope: This argument is ignored by this retry strategy.
        """
        retry_delay = self.backoff_strategy.compute_next_backoff_delay(0)
        return SimpleRetryToken(
            retry_count=0, retry_delay=retry_delay, started_at=self._clock()
        )

    def refresh_retry_token_for_retry(
        self,
        *,
        token_to_renew: retries_interface.RetryToken,
        error: Exception,
    ) -> SimpleRetryToken:
        """Replace an existing retry token from a failed attempt with a new token.

        :param token_to_renew: The token used for the previous failed attempt.
        :param error: The error that triggered the need for a retry.
        :raises RetryError: If no further retry attempts are allowed.
        """
        if not self._is_retryable(error):
            raise RetryError(f"Error is not retryable: {error}") from error

        retry_count = token_to_renew.retry_count + 1
        if self.max_attempts is not None and retry_count >= self.max_attempts:
            raise RetryError(
                f"Reached maximum number of allowed attempts: {self.max_attempts}"
            ) from error

        retry_delay = self.backoff_strategy.compute_next_backoff_delay(retry_count)
        started_at = getattr(token_to_renew, "started_at", self._clock())
        if self.max_duration is not None:
            remaining = started_at + self.max_duration - self._clock()
            if remaining <= 0:
                raise RetryError(
                    f"Reached maximum allowed duration: {self.max_duration} seconds"
                ) from error
            retry_delay = min(retry_delay, remaining)

        return SimpleRetryToken(
            retry_count=retry_count, retry_delay=retry_delay, started_at=started_at
        )

    def record_success(self, *, token: retries_interface.RetryToken) -> None:
        """Not used by this retry strategy."""
        pass

    def _is_retryable(self, error: Exception) -> bool:
        if isinstance(error, retries_interface.ErrorRetryInfo):
            if error.is_retry_safe is None:
                return self.retry_unclassified
            return error.is_retry_safe
        return self.retry_unclassified


def transport_retry_strategy(
    *, max_attempts: int = 5, delay: float = 5.0
) -> SimpleRetryStrategy:
    """The strategy used for transient server failures: bounded attempts, fixed
    delay."""
    return SimpleRetryStrategy(
        backoff_strategy=FixedRetryBackoffStrategy(delay=delay),
        max_attempts=max_attempts,
    )


def polling_retry_strategy(
    *,
    interval: float,
    timeout: float | None,
    backoff_strategy: retries_interface.RetryBackoffStrategy | None = None,
) -> SimpleRetryStrategy:
    """The strategy used by convergence polls and tracked-task loops.

    :param interval: Seconds between polls when no backoff strategy is given.
    :param timeout: Maximum seconds to keep polling. ``None`` polls until the
        caller stops.
    :param backoff_strategy: Optional replacement for the fixed interval.
    """
    return SimpleRetryStrategy(
        backoff_strategy=backoff_strategy or FixedRetryBackoffStrategy(delay=interval),
        max_attempts=None,
        max_duration=timeout,
        retry_unclassified=True,
    )
