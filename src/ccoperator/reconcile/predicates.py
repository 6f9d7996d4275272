"""Filters deciding which store events trigger a reconciliation pass."""

from __future__ import annotations

from ccoperator.domain.models import CruiseControlOperation
from ccoperator.store.base import EventType, OperationEvent


def _settled(operation: CruiseControlOperation) -> bool:
    """Done and not being deleted: nothing left to do for this record."""
    return operation.is_done() and not operation.is_marked_for_deletion()


def should_reconcile_create(operation: CruiseControlOperation) -> bool:
    return not _settled(operation) and operation.current_task_operation != ""


def should_reconcile_update(
    previous: CruiseControlOperation,
    current: CruiseControlOperation,
) -> bool:
    if _settled(current):
        return False
    return (
        previous.status.current_task != current.status.current_task
        or previous.metadata.deletion_timestamp != current.metadata.deletion_timestamp
        or previous.is_paused() != current.is_paused()
        or previous.metadata.generation != current.metadata.generation
    )


def should_reconcile(event: OperationEvent) -> bool:
    if event.type == EventType.created:
        return should_reconcile_create(event.operation)
    if event.type == EventType.updated:
        if event.previous is None:
            return should_reconcile_create(event.operation)
        return should_reconcile_update(event.previous, event.operation)
    return False
