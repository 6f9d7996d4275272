"""
Classification and selection of pending operations.

Everything here is pure: it takes the records of one Kafka cluster plus
the engine's busy signal and returns a Decision. No store or Cruise
Control I/O happens in this module.

Ordering inside a queue:
    1. operation priority, highest first (add_broker > remove_broker > rebalance)
    2. creation time, oldest first

Selection order:
    1. stop execution for a running record that is being deleted
    2. add_broker waiting for its first execution
    3. failed record waiting for retry, once its backoff window elapsed
    4. any other record waiting for its first execution
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Sequence

from ccoperator.domain.models import CruiseControlOperation, TaskOperation
from ccoperator.reconcile.finalizers import is_waiting_for_finalization

EXECUTION_PRIORITY: dict[str, int] = {
    TaskOperation.add_broker: 2,
    TaskOperation.remove_broker: 1,
    TaskOperation.rebalance: 0,
}

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


class ExecutionQueue(Enum):
    stop_execution = "stop_execution"
    first_execution = "first_execution"
    retry_execution = "retry_execution"
    in_progress = "in_progress"


@dataclass(frozen=True)
class ClassifiedOperations:
    stop_execution: tuple[CruiseControlOperation, ...] = ()
    first_execution: tuple[CruiseControlOperation, ...] = ()
    retry_execution: tuple[CruiseControlOperation, ...] = ()
    in_progress: tuple[CruiseControlOperation, ...] = ()

    def queue(self, queue: ExecutionQueue) -> tuple[CruiseControlOperation, ...]:
        return getattr(self, queue.value)

    def is_empty(self) -> bool:
        return not any(self.queue(queue) for queue in ExecutionQueue)

    def counts(self) -> dict[str, int]:
        return {queue.value: len(self.queue(queue)) for queue in ExecutionQueue}


@dataclass(frozen=True)
class Selection:
    """Operation chosen for execution and the task it has to run."""

    operation: CruiseControlOperation
    task_operation: TaskOperation
    queue: ExecutionQueue

    @property
    def is_stop(self) -> bool:
        return self.task_operation == TaskOperation.stop_execution


class DecisionKind(Enum):
    done = "done"
    requeue = "requeue"
    execute = "execute"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    classified: ClassifiedOperations
    selection: Selection | None = None
    reason: str = ""


def execution_priority(operation: CruiseControlOperation) -> int:
    return EXECUTION_PRIORITY.get(operation.current_task_operation, 0)


def execution_order(
    operations: Iterable[CruiseControlOperation],
) -> list[CruiseControlOperation]:
    """Sort by priority (descending) then creation time (ascending)."""
    return sorted(
        operations,
        key=lambda op: (
            -execution_priority(op),
            op.metadata.creation_timestamp or _LATEST,
        ),
    )


def classify_operation(operation: CruiseControlOperation) -> ExecutionQueue | None:
    if not operation.is_current_task_operation_valid() or operation.is_done():
        return None
    if is_waiting_for_finalization(operation):
        return ExecutionQueue.stop_execution
    if operation.is_waiting_for_first_execution():
        return ExecutionQueue.first_execution
    if operation.is_waiting_for_retry_execution():
        return ExecutionQueue.retry_execution
    if operation.is_in_progress():
        return ExecutionQueue.in_progress
    return None


def classify(operations: Iterable[CruiseControlOperation]) -> ClassifiedOperations:
    queues: dict[ExecutionQueue, list[CruiseControlOperation]] = {
        queue: [] for queue in ExecutionQueue
    }
    for operation in operations:
        queue = classify_operation(operation)
        if queue is not None:
            queues[queue].append(operation)
    return ClassifiedOperations(
        stop_execution=tuple(execution_order(queues[ExecutionQueue.stop_execution])),
        first_execution=tuple(execution_order(queues[ExecutionQueue.first_execution])),
        retry_execution=tuple(execution_order(queues[ExecutionQueue.retry_execution])),
        in_progress=tuple(execution_order(queues[ExecutionQueue.in_progress])),
    )


def _selection(operation: CruiseControlOperation, queue: ExecutionQueue) -> Selection:
    return Selection(operation, TaskOperation(operation.current_task_operation), queue)


def select_operation(
    classified: ClassifiedOperations,
    *,
    now: datetime,
    retry_backoff: timedelta,
) -> Selection | None:
    if classified.stop_execution:
        return Selection(
            classified.stop_execution[0],
            TaskOperation.stop_execution,
            ExecutionQueue.stop_execution,
        )

    first = classified.first_execution
    if first and first[0].current_task_operation == TaskOperation.add_broker:
        return _selection(first[0], ExecutionQueue.first_execution)

    if classified.retry_execution:
        head = classified.retry_execution[0]
        if head.is_ready_for_retry_execution(now, retry_backoff):
            return _selection(head, ExecutionQueue.retry_execution)
        return None

    if first:
        return _selection(first[0], ExecutionQueue.first_execution)
    return None


def decide(
    operations: Sequence[CruiseControlOperation],
    *,
    engine_busy: bool,
    now: datetime,
    retry_backoff: timedelta,
) -> Decision:
    """Pick the next operation to dispatch for one Kafka cluster."""
    classified = classify(operations)
    if classified.is_empty():
        return Decision(DecisionKind.done, classified, reason="no_pending_operations")

    selection = select_operation(classified, now=now, retry_backoff=retry_backoff)
    if selection is None:
        return Decision(DecisionKind.requeue, classified, reason="nothing_to_execute")

    if (engine_busy or classified.in_progress) and not selection.is_stop:
        return Decision(DecisionKind.requeue, classified, selection, reason="engine_busy")

    return Decision(DecisionKind.execute, classified, selection)
