"""Deletion guard lifecycle for CruiseControlOperation records."""

from __future__ import annotations

import structlog

from ccoperator.domain.models import FINALIZER, CruiseControlOperation
from ccoperator.store.base import OperationStore

logger = structlog.get_logger()


def is_finalizer_needed(operation: CruiseControlOperation) -> bool:
    """The guard is still attached to a record that is being deleted."""
    return operation.has_finalizer() and operation.is_marked_for_deletion()


def is_waiting_for_finalization(operation: CruiseControlOperation) -> bool:
    """A running task blocks deletion until a stop command is issued."""
    return operation.is_current_task_running() and is_finalizer_needed(operation)


def should_add_finalizer(operation: CruiseControlOperation) -> bool:
    return (
        not operation.has_finalizer()
        and not operation.is_marked_for_deletion()
        and not operation.is_done()
    )


def should_remove_finalizer(operation: CruiseControlOperation) -> bool:
    if not operation.has_finalizer():
        return False
    if operation.is_done():
        return True
    return operation.is_marked_for_deletion() and not operation.is_current_task_running()


async def add_finalizer(
    store: OperationStore,
    operation: CruiseControlOperation,
) -> CruiseControlOperation:
    """Attach the deletion guard if the record does not carry it yet."""
    if not should_add_finalizer(operation):
        return operation
    operation.add_finalizer()
    updated = await store.update(operation)
    logger.debug("finalizer_added", operation=operation.key, finalizer=FINALIZER)
    return updated


async def remove_finalizer(
    store: OperationStore,
    operation: CruiseControlOperation,
) -> CruiseControlOperation:
    """Lift the deletion guard; a no-op when it is already gone."""
    if not operation.remove_finalizer():
        return operation
    updated = await store.update(operation)
    logger.info(
        "finalizer_removed",
        operation=operation.key,
        deleting=operation.is_marked_for_deletion(),
        done=operation.is_done(),
    )
    return updated
