from __future__ import annotations

import structlog

from ccoperator.core.errors import DispatchError, ExecutorError, UnsupportedOperationError
from ccoperator.domain.models import TaskOperation
from ccoperator.executor.base import TaskExecutor, TaskResult
from ccoperator.reconcile.scheduling import Selection

logger = structlog.get_logger()


async def execute_operation(executor: TaskExecutor, selection: Selection) -> TaskResult:
    """Run the selected operation on Cruise Control.

    A returned TaskResult may still carry an error (the engine answered but
    rejected the task); it has to be merged so the attempt is recorded.
    DispatchError means there is no result at all and the record must be
    left untouched.
    """
    operation = selection.operation
    parameters = operation.current_task_parameters
    details = {
        "name": operation.name,
        "namespace": operation.namespace,
        "operation": str(selection.task_operation),
        "parameters": parameters,
    }

    try:
        if selection.task_operation == TaskOperation.add_broker:
            result = await executor.add_brokers(parameters)
        elif selection.task_operation == TaskOperation.remove_broker:
            result = await executor.remove_brokers(parameters)
        elif selection.task_operation == TaskOperation.rebalance:
            result = await executor.rebalance(parameters)
        elif selection.task_operation == TaskOperation.stop_execution:
            result = await executor.stop_execution()
        else:
            raise UnsupportedOperationError("Cruise Control operation not supported", details)
    except ExecutorError as exc:
        raise DispatchError(
            "Cruise Control task execution got an error",
            details | {"cause": exc.message},
        ) from exc

    if result.error:
        logger.error(
            "cruise_control_task_failed",
            task_id=result.task_id,
            state=result.state.value,
            error=result.error,
            **details,
        )
    return result
