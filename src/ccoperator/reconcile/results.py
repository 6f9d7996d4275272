"""
Merging of Cruise Control task results into operation status.

merge_result() mutates an operation in place and reports whether any
status field actually changed, so callers only write when needed.
update_status_on_conflict() persists such a mutation, reloading the record
and re-applying the merge when the store reports a stale version.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Sequence

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ccoperator.config import Settings
from ccoperator.core.errors import ConflictError, TaskResultError
from ccoperator.domain.models import (
    TERMINAL_STATES,
    CruiseControlOperation,
    CruiseControlTask,
    ErrorPolicy,
    TaskOperation,
    TaskState,
)
from ccoperator.executor.base import TaskExecutor, TaskResult
from ccoperator.store.base import OperationStore

logger = structlog.get_logger()

DEFAULT_FAILED_TASKS_HISTORY_MAX_LENGTH = 50
MISSING_TASK_RESULT_ERROR = "missing Cruise Control user task result"


def parse_start_time(value: str, default: datetime) -> datetime:
    """Parse the RFC 1123 start time reported for a user task."""
    if not value:
        return default
    try:
        started = parsedate_to_datetime(value)
    except (TypeError, ValueError) as exc:
        raise TaskResultError(
            "could not parse user task start time from Cruise Control API",
            {"started_at": value},
        ) from exc
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return started


def _assign(target: Any, field: str, value: Any) -> bool:
    if getattr(target, field) == value:
        return False
    setattr(target, field, value)
    return True


def archive_failed_task(
    operation: CruiseControlOperation,
    task: CruiseControlTask,
    *,
    history_limit: int = DEFAULT_FAILED_TASKS_HISTORY_MAX_LENGTH,
) -> None:
    """Move a failed attempt into history and count the retry."""
    failed_tasks = operation.status.failed_tasks
    failed_tasks.append(task.model_copy(deep=True))
    if len(failed_tasks) > history_limit:
        del failed_tasks[: len(failed_tasks) - history_limit]
    operation.status.retry_count += 1
    task.set_defaults()


def missing_result(operation: CruiseControlOperation) -> TaskResult:
    logger.error(
        "missing_user_task_result",
        name=operation.name,
        namespace=operation.namespace,
        task_id=operation.current_task_id,
        error=MISSING_TASK_RESULT_ERROR,
        hint=(
            "Cruise Control's max.cached.completed.user.tasks configuration value is "
            "probably too small; the task is handled as CompletedWithError"
        ),
    )
    return TaskResult(
        task_id=operation.current_task_id,
        state=TaskState.completed_with_error,
        error=MISSING_TASK_RESULT_ERROR,
    )


def merge_result(
    operation: CruiseControlOperation,
    result: TaskResult | None,
    *,
    after_execution: bool,
    now: datetime,
    task_operation: TaskOperation | None = None,
    history_limit: int = DEFAULT_FAILED_TASKS_HISTORY_MAX_LENGTH,
) -> bool:
    """Apply a task result to the operation's current task.

    after_execution marks the merge right after dispatching in the same
    pass: only then are the job ID, start time, summary and HTTP details
    recorded and failed attempts archived for retry.
    """
    if result is None:
        result = missing_result(operation)

    status = operation.status
    dirty = _assign(status, "error_policy", operation.spec.error_policy)

    if status.current_task is None:
        status.current_task = CruiseControlTask()
        dirty = True
    task = status.current_task

    if after_execution:
        # A retry replaces an attempt that failed while being polled.
        if task.id and task.state == TaskState.completed_with_error:
            archive_failed_task(operation, task, history_limit=history_limit)
            dirty = True
        if task_operation is not None:
            dirty |= _assign(task, "operation", task_operation.value)

    if result.state in TERMINAL_STATES and task.finished is None:
        task.finished = now
        dirty = True

    if after_execution:
        if task.started is None:
            task.started = parse_start_time(result.started_at, now)
            dirty = True
        dirty |= _assign(task, "id", result.task_id)
        summary = result.summary.as_status_summary() if result.summary else None
        dirty |= _assign(task, "summary", summary)
        if result.error:
            dirty |= _assign(task, "error_message", result.error)
        dirty |= _assign(task, "http_request", result.request_url)
        dirty |= _assign(task, "http_response_code", result.response_status_code)
    elif result.error:
        dirty |= _assign(task, "error_message", result.error)

    dirty |= _assign(task, "state", result.state)

    if (
        after_execution
        and result.state == TaskState.completed_with_error
        and status.error_policy == ErrorPolicy.retry
    ):
        archive_failed_task(operation, task, history_limit=history_limit)
        task.state = result.state
        dirty = True

    return dirty


async def update_status_on_conflict(
    store: OperationStore,
    operation: CruiseControlOperation,
    mutate: Callable[[CruiseControlOperation], bool],
    *,
    settings: Settings,
) -> CruiseControlOperation:
    """Apply mutate and write the status, reloading on version conflicts.

    mutate returns False when it made no change; nothing is written then.
    """
    current = operation
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(settings.conflict_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.conflict_retry_initial_seconds,
            max=settings.conflict_retry_max_seconds,
        ),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            if not mutate(current):
                return current
            try:
                return await store.update_status(current)
            except ConflictError:
                logger.info(
                    "status_update_conflict",
                    name=current.name,
                    namespace=current.namespace,
                    attempt=attempt.retry_state.attempt_number,
                )
                current = await store.get(current.namespace, current.name)
                raise
    return current


async def sync_current_tasks(
    store: OperationStore,
    executor: TaskExecutor,
    operations: Sequence[CruiseControlOperation],
    *,
    now: datetime,
    settings: Settings,
) -> list[CruiseControlOperation]:
    """Poll Cruise Control for every dispatched task and persist changes.

    Returns the operations in the same order, replaced by their stored
    version where a status write happened.
    """
    task_ids = [op.current_task_id for op in operations if op.current_task_id]
    if not task_ids:
        return list(operations)

    results = {result.task_id: result for result in await executor.user_tasks(task_ids)}

    synced: list[CruiseControlOperation] = []
    for operation in operations:
        if operation.current_task_id and not operation.is_done():
            task_id = operation.current_task_id

            def poll_merge(current: CruiseControlOperation, task_id: str = task_id) -> bool:
                if current.current_task_id != task_id or current.is_done():
                    return False
                return merge_result(
                    current,
                    results.get(task_id),
                    after_execution=False,
                    now=now,
                    history_limit=settings.failed_tasks_history_max_length,
                )

            operation = await update_status_on_conflict(
                store, operation, poll_merge, settings=settings
            )
        synced.append(operation)
    return synced


async def record_execution_result(
    store: OperationStore,
    operation: CruiseControlOperation,
    result: TaskResult,
    *,
    task_operation: TaskOperation,
    now: datetime,
    settings: Settings,
) -> CruiseControlOperation:
    """Persist the result of a dispatch so the task is never run twice."""

    def execution_merge(current: CruiseControlOperation) -> bool:
        return merge_result(
            current,
            result,
            after_execution=True,
            now=now,
            task_operation=task_operation,
            history_limit=settings.failed_tasks_history_max_length,
        )

    return await update_status_on_conflict(store, operation, execution_merge, settings=settings)
