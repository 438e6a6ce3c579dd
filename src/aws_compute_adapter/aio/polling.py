#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Waiting for eventually consistent state.

The provider offers no completion notifications, so state changes are observed by
re-reading until a predicate holds. A poll that runs out of time returns ``False``
instead of raising; the operation that started it proceeds optimistically and any
caller needing a guarantee must check again.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..exceptions import ProviderError, ResourceNotFoundError, RetryError
from ..interfaces.retries import RetryBackoffStrategy, RetryStrategy
from ..retries import polling_retry_strategy

_LOGGER = logging.getLogger(__name__)

ABSENCE_CODE_SUFFIXES = ("NotFound", "Unavailable", "Malformed")


@dataclass(frozen=True, kw_only=True)
class PollCadence:
    """How often to poll and for how long."""

    interval: float
    """Seconds between polls."""

    timeout: float | None
    """Seconds after which polling gives up. ``None`` never gives up."""

    backoff: RetryBackoffStrategy | None = field(default=None, compare=False)
    """Optional replacement for the fixed interval."""

    def retry_strategy(self) -> RetryStrategy:
        return polling_retry_strategy(
            interval=self.interval, timeout=self.timeout, backoff_strategy=self.backoff
        )


STATE_POLL = PollCadence(interval=15, timeout=30 * 60)
PERMISSION_POLL = PollCadence(interval=2, timeout=30)
STOP_POLL = PollCadence(interval=15, timeout=10 * 60)


@dataclass(kw_only=True)
class ConvergenceSpec:
    """What to wait for and how patiently."""

    predicate: Callable[[], Awaitable[bool]]
    """Lookup returning whether the goal has been reached."""

    retry_strategy: RetryStrategy
    """Paces the polls and bounds their number or duration."""

    goal: str
    """Human readable description used in logs."""


class NotConverged(Exception):
    """Reported to the retry strategy each time a goal is still unmet."""

    is_retry_safe = True
    retry_after = None


def is_absence(error: ProviderError) -> bool:
    """Whether the error says the resource is not (yet) visible."""
    return error.code is not None and error.code.endswith(ABSENCE_CODE_SUFFIXES)


class ConvergencePoller:
    """Repeats a lookup until its predicate holds, time runs out, or it fails hard.

    Transient provider errors and not-found answers are swallowed between polls.
    Every other error propagates. Polling also stops early when the enclosing task
    is cancelled or the optional ``cancel_event`` is set.
    """

    async def wait(
        self, spec: ConvergenceSpec, cancel_event: asyncio.Event | None = None
    ) -> bool:
        """Poll until ``spec.predicate`` holds.

        :returns: ``True`` as soon as the predicate holds, ``False`` on timeout or
            when ``cancel_event`` is set.
        :raises ProviderError: For non-transient lookup failures.
        """
        retry_token = spec.retry_strategy.acquire_initial_retry_token(
            token_scope=spec.goal
        )
        while True:
            if retry_token.retry_delay and await self._pause(
                retry_token.retry_delay, cancel_event
            ):
                _LOGGER.info("Stopped waiting for %s: cancelled", spec.goal)
                return False
            if cancel_event is not None and cancel_event.is_set():
                _LOGGER.info("Stopped waiting for %s: cancelled", spec.goal)
                return False

            try:
                if await spec.predicate():
                    spec.retry_strategy.record_success(token=retry_token)
                    return True
            except ProviderError as e:
                if not (e.is_retry_safe or is_absence(e)):
                    raise
                _LOGGER.debug("Ignoring %s while waiting for %s", e.summary, spec.goal)

            try:
                retry_token = spec.retry_strategy.refresh_retry_token_for_retry(
                    token_to_renew=retry_token, error=NotConverged(spec.goal)
                )
            except RetryError:
                _LOGGER.warning(
                    "Gave up waiting for %s; continuing without confirmation.",
                    spec.goal,
                )
                return False

    async def wait_for_absence(
        self,
        lookup: Callable[[], Awaitable[object | None]],
        *,
        goal: str,
        cadence: PollCadence = STATE_POLL,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Wait until ``lookup`` stops finding the resource."""

        async def absent() -> bool:
            try:
                return await lookup() is None
            except ProviderError as e:
                if is_absence(e):
                    return True
                raise

        return await self.wait(
            ConvergenceSpec(
                predicate=absent, retry_strategy=cadence.retry_strategy(), goal=goal
            ),
            cancel_event,
        )

    async def wait_for_state[T](
        self,
        lookup: Callable[[], Awaitable[T | None]],
        accept: Callable[[T], bool],
        *,
        goal: str,
        cadence: PollCadence = STATE_POLL,
        failed: Callable[[T], bool] | None = None,
        describe_failure: Callable[[T], str | None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T | None:
        """Wait until the resource returned by ``lookup`` satisfies ``accept``.

        A resource that is not yet visible is waited for. Once it has been seen,
        its disappearance, or a state matching ``failed``, ends the wait with an
        error. ``describe_failure`` extracts the provider's reason for a failed
        resource so that it reaches the error message.

        :returns: The accepted resource, or ``None`` if the wait timed out.
        :raises ResourceNotFoundError: If the resource disappears or fails.
        """
        observed: list[T] = []

        async def reached() -> bool:
            resource = await lookup()
            if resource is None:
                if observed:
                    raise ResourceNotFoundError(
                        f"Resource disappeared while waiting for {goal}"
                    )
                return False
            observed.append(resource)
            if failed is not None and failed(resource):
                message = f"Resource reached a failed state while waiting for {goal}"
                reason = describe_failure(resource) if describe_failure else None
                if reason:
                    message = f"{message}: {reason}"
                raise ResourceNotFoundError(message)
            return accept(resource)

        converged = await self.wait(
            ConvergenceSpec(
                predicate=reached, retry_strategy=cadence.retry_strategy(), goal=goal
            ),
            cancel_event,
        )
        return observed[-1] if converged else None

    async def wait_for_permission(
        self,
        check: Callable[[], Awaitable[bool]],
        *,
        goal: str,
        cadence: PollCadence = PERMISSION_POLL,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Wait until a permission change is reflected by ``check``."""
        return await self.wait(
            ConvergenceSpec(
                predicate=check, retry_strategy=cadence.retry_strategy(), goal=goal
            ),
            cancel_event,
        )

    async def _pause(self, delay: float, cancel_event: asyncio.Event | None) -> bool:
        """Sleep for ``delay`` seconds; return whether ``cancel_event`` fired."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True
