#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
from datetime import UTC, datetime

import pytest
from freezegun import freeze_time

from aws_compute_adapter.aio.tasks import AsyncTask, TaskState, run_tracked
from aws_compute_adapter.exceptions import TaskFailedError


@freeze_time("2012-07-20T10:15:30Z")
def test_new_task() -> None:
    task: AsyncTask[str] = AsyncTask("Bundle i-1")
    assert task.state is TaskState.PENDING
    assert task.percent_complete == 0
    assert not task.completed
    assert task.started_at == datetime(2012, 7, 20, 10, 15, 30, tzinfo=UTC)


def test_progress_never_decreases() -> None:
    task: AsyncTask[str] = AsyncTask()
    for percent in (10, 40, 30, 80, -5, 150):
        task.set_percent_complete(percent)
    assert task.percent_complete == 100
    assert task.state is TaskState.RUNNING


def test_complete_sets_result() -> None:
    task: AsyncTask[str] = AsyncTask()
    task.set_percent_complete(50)
    task.complete("ami-1")
    assert task.state is TaskState.SUCCEEDED
    assert task.percent_complete == 100
    assert task.result() == "ami-1"


def test_only_first_terminal_state_counts() -> None:
    task: AsyncTask[str] = AsyncTask()
    task.complete("ami-1")
    task.fail(RuntimeError("late"))
    task.complete("ami-2")
    task.set_percent_complete(10)
    assert task.state is TaskState.SUCCEEDED
    assert task.result() == "ami-1"
    assert task.error is None


def test_failed_task_raises_with_cause() -> None:
    task: AsyncTask[str] = AsyncTask("Bundle i-1")
    cause = RuntimeError("S3 bucket missing")
    task.fail(cause)
    task.complete("ami-1")
    assert task.state is TaskState.FAILED
    with pytest.raises(TaskFailedError, match="S3 bucket missing") as exc_info:
        task.result()
    assert exc_info.value.__cause__ is cause


def test_result_before_completion() -> None:
    with pytest.raises(asyncio.InvalidStateError):
        AsyncTask[str]().result()


async def test_run_tracked_uses_return_value() -> None:
    task: AsyncTask[str] = AsyncTask()

    async def driver() -> str:
        task.set_percent_complete(50)
        return "snap-1"

    run_tracked(task, driver())
    assert await task.wait(timeout=1) == "snap-1"
    assert task.percent_complete == 100


async def test_run_tracked_keeps_explicit_completion() -> None:
    task: AsyncTask[str] = AsyncTask()

    async def driver() -> str:
        task.complete("ami-1")
        return "ignored"

    await run_tracked(task, driver())
    assert task.result() == "ami-1"


async def test_run_tracked_captures_errors() -> None:
    task: AsyncTask[str] = AsyncTask("Snapshot vol-1")

    async def driver() -> str:
        raise ValueError("boom")

    runner = run_tracked(task, driver())
    await runner
    assert runner.exception() is None
    assert task.state is TaskState.FAILED
    assert isinstance(task.error, ValueError)
    with pytest.raises(TaskFailedError):
        await task.wait()


async def test_run_tracked_cancellation_fails_task() -> None:
    task: AsyncTask[str] = AsyncTask()

    async def driver() -> str:
        await asyncio.sleep(60)
        return "never"

    runner = run_tracked(task, driver())
    await asyncio.sleep(0)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner
    assert task.state is TaskState.FAILED


async def test_wait_timeout() -> None:
    task: AsyncTask[str] = AsyncTask()
    with pytest.raises(TimeoutError):
        await task.wait(timeout=0.01)
