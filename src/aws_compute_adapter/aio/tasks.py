#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
import logging
from collections.abc import Coroutine
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import TaskFailedError

_LOGGER = logging.getLogger(__name__)


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AsyncTask[T]:
    """A long-running provider operation observed from the foreground.

    The task is updated only by the background loop driving it. Progress never
    decreases, and the task reaches exactly one terminal state: later attempts to
    complete or fail it are ignored.
    """

    def __init__(self, description: str = ""):
        self.description = description
        self.started_at = datetime.now(UTC)
        self.status_message: str | None = None
        self._state = TaskState.PENDING
        self._percent_complete = 0.0
        self._result: T | None = None
        self._error: BaseException | None = None
        self._done = asyncio.Event()
        self._runner: asyncio.Task[None] | None = None

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def percent_complete(self) -> float:
        return self._percent_complete

    @property
    def completed(self) -> bool:
        return self._state in (TaskState.SUCCEEDED, TaskState.FAILED)

    @property
    def error(self) -> BaseException | None:
        """The failure cause, once the task has failed."""
        return self._error

    def start(self) -> None:
        if self._state is TaskState.PENDING:
            self._state = TaskState.RUNNING

    def set_percent_complete(self, percent: float) -> None:
        """Record progress, clamped to ``[0, 100]``. Decreases are ignored."""
        if self.completed:
            return
        percent = min(max(percent, 0.0), 100.0)
        if percent < self._percent_complete:
            _LOGGER.debug(
                "Ignoring progress regression for %s: %s -> %s",
                self.description,
                self._percent_complete,
                percent,
            )
            return
        self.start()
        self._percent_complete = percent

    def complete(self, result: T) -> None:
        if self.completed:
            _LOGGER.warning(
                "Ignoring completion of %s: already %s", self.description, self._state
            )
            return
        self._percent_complete = 100.0
        self._result = result
        self._state = TaskState.SUCCEEDED
        self._done.set()

    def fail(self, error: BaseException) -> None:
        if self.completed:
            _LOGGER.warning(
                "Ignoring failure of %s: already %s", self.description, self._state
            )
            return
        _LOGGER.error("%s failed: %s", self.description or "Task", error)
        self._error = error
        self._state = TaskState.FAILED
        self._done.set()

    def result(self) -> T:
        """The outcome of a completed task.

        :raises asyncio.InvalidStateError: If the task has not completed.
        :raises TaskFailedError: If the task failed; the cause is chained.
        """
        if not self.completed:
            raise asyncio.InvalidStateError(f"{self.description} has not completed")
        if self._state is TaskState.FAILED:
            raise TaskFailedError(
                f"{self.description} failed: {self._error}"
            ) from self._error
        return self._result  # type: ignore[return-value]

    async def wait(self, timeout: float | None = None) -> T:
        """Block until the task completes and return its result.

        :raises TimeoutError: If ``timeout`` elapses first.
        """
        async with asyncio.timeout(timeout):
            await self._done.wait()
        return self.result()

    def __repr__(self) -> str:
        return (
            f"AsyncTask(description={self.description!r}, state={self._state.name}, "
            f"percent_complete={self._percent_complete})"
        )


def run_tracked[T](
    task: AsyncTask[T], driver: Coroutine[Any, Any, T]
) -> asyncio.Task[None]:
    """Run ``driver`` in the background, recording its outcome on ``task``.

    Exceptions raised by the driver become the task's error instead of escaping
    into the event loop. A driver that returns without completing the task
    completes it with its return value.
    """

    async def runner() -> None:
        task.start()
        try:
            result = await driver
        except asyncio.CancelledError as e:
            task.fail(e)
            raise
        except Exception as e:
            task.fail(e)
            return
        if not task.completed:
            task.complete(result)

    task._runner = asyncio.create_task(runner(), name=task.description or None)
    return task._runner
