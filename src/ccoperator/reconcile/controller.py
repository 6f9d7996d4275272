from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

import structlog

from ccoperator.config import Settings, get_settings
from ccoperator.core.errors import (
    CCOperatorError,
    ClusterReferenceError,
    ExecutorError,
    NotFoundError,
    StoreError,
    TaskResultError,
)
from ccoperator.domain.models import (
    ClusterReference,
    CruiseControlOperation,
    KafkaCluster,
    utcnow,
)
from ccoperator.executor.base import ExecutorFactory, TaskExecutor
from ccoperator.logging import bind_context
from ccoperator.reconcile.dispatch import execute_operation
from ccoperator.reconcile.finalizers import (
    add_finalizer,
    remove_finalizer,
    should_remove_finalizer,
)
from ccoperator.reconcile.leases import DispatchLeases
from ccoperator.reconcile.results import record_execution_result, sync_current_tasks
from ccoperator.reconcile.scheduling import DecisionKind, decide
from ccoperator.store.base import OperationStore


@dataclass(frozen=True, slots=True)
class ReconcileRequest:
    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_operation(cls, operation: CruiseControlOperation) -> ReconcileRequest:
        return cls(namespace=operation.namespace, name=operation.name)


@dataclass(slots=True)
class ReconcileResult:
    """Instruction for the scheduler invoking the reconciler."""

    requeue_after: float | None = None
    error: Exception | None = None

    @property
    def requeue(self) -> bool:
        return self.error is not None or self.requeue_after is not None


def reconciled() -> ReconcileResult:
    return ReconcileResult()


def requeue_after(seconds: float) -> ReconcileResult:
    return ReconcileResult(requeue_after=seconds)


def requeue_with_error(
    log: structlog.stdlib.BoundLogger,
    event: str,
    error: Exception,
) -> ReconcileResult:
    details = error.details if isinstance(error, CCOperatorError) else {}
    log.error(event, **(details | {"error": str(error), "error_type": type(error).__name__}))
    return ReconcileResult(error=error)


class CruiseControlOperationReconciler:
    """Reconciles CruiseControlOperation records against Cruise Control.

    Each pass lists every record in the namespace, keeps the deletion guard
    of the triggering record up to date, syncs the state of all dispatched
    tasks of the same Kafka cluster and dispatches at most one operation.
    """

    def __init__(
        self,
        store: OperationStore,
        executor_factory: ExecutorFactory,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        leases: DispatchLeases | None = None,
    ) -> None:
        self._store = store
        self._executor_factory = executor_factory
        self._settings = settings or get_settings()
        self._clock = clock
        self._leases = leases or DispatchLeases()

    def _requeue(self) -> ReconcileResult:
        return requeue_after(self._settings.requeue_interval_seconds)

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        log = bind_context(namespace=request.namespace, name=request.name)
        log.debug("reconciling_cruise_control_operation")

        try:
            operations = await self._store.list(request.namespace)
        except StoreError as exc:
            return requeue_with_error(log, "operation_list_failed", exc)

        current = next(
            (
                op
                for op in operations
                if op.name == request.name and op.namespace == request.namespace
            ),
            None,
        )
        if current is None:
            return reconciled()

        # A finished task cannot be running anymore.
        if current.is_done() and current.has_finalizer():
            try:
                await remove_finalizer(self._store, current)
            except StoreError as exc:
                return requeue_with_error(log, "finalizer_removal_failed", exc)
            return reconciled()

        if not current.is_current_task_operation_valid():
            log.error("unsupported_operation", operation=current.current_task_operation)
            return reconciled()

        try:
            cluster_ref = current.cluster_reference()
        except ClusterReferenceError as exc:
            return requeue_with_error(log, "kafka_cluster_reference_missing", exc)

        try:
            cluster = await self._store.get_cluster(cluster_ref.namespace, cluster_ref.name)
        except NotFoundError:
            if current.is_marked_for_deletion():
                log.info("kafka_cluster_removed", cluster=cluster_ref.key)
                try:
                    await remove_finalizer(self._store, current)
                except StoreError as exc:
                    return requeue_with_error(log, "finalizer_removal_failed", exc)
            return reconciled()
        except StoreError as exc:
            return requeue_with_error(log, "kafka_cluster_lookup_failed", exc)

        try:
            await add_finalizer(self._store, current)
        except StoreError as exc:
            return requeue_with_error(log, "finalizer_add_failed", exc)

        log = log.bind(cluster=cluster_ref.key)
        if self._leases.is_held(cluster_ref.key):
            log.debug("dispatch_lease_wait")
        async with self._leases.hold(cluster_ref.key):
            # Relist under the lease so writes of the previous holder are visible.
            try:
                operations = await self._store.list(request.namespace)
            except StoreError as exc:
                return requeue_with_error(log, "operation_list_failed", exc)
            current = next((op for op in operations if op.key == current.key), None)
            if current is None:
                return reconciled()

            try:
                executor = self._executor_factory(cluster)
            except CCOperatorError as exc:
                return requeue_with_error(log, "executor_create_failed", exc)
            try:
                return await self._reconcile_cluster(
                    log, executor, current, cluster, cluster_ref, operations
                )
            finally:
                await executor.aclose()

    async def _reconcile_cluster(
        self,
        log: structlog.stdlib.BoundLogger,
        executor: TaskExecutor,
        current: CruiseControlOperation,
        cluster: KafkaCluster,
        cluster_ref: ClusterReference,
        operations: Sequence[CruiseControlOperation],
    ) -> ReconcileResult:
        try:
            status = await executor.status()
        except ExecutorError as exc:
            log.error("cruise_control_status_failed", error=exc.message)
            return self._requeue()

        if not status.ready:
            log.info("cruise_control_not_ready", status=status.details)
            return self._requeue()

        pending = self._pending_operations(log, operations, cluster_ref)

        now = self._clock()
        try:
            pending = await sync_current_tasks(
                self._store, executor, pending, now=now, settings=self._settings
            )
        except (ExecutorError, StoreError, TaskResultError) as exc:
            log.error("current_task_sync_failed", **(exc.details | {"error": exc.message}))
            return self._requeue()

        current = next((op for op in pending if op.key == current.key), current)
        if should_remove_finalizer(current):
            try:
                await remove_finalizer(self._store, current)
            except StoreError as exc:
                return requeue_with_error(log, "finalizer_removal_failed", exc)
            if current.is_marked_for_deletion():
                return reconciled()

        decision = decide(
            pending,
            engine_busy=status.in_execution,
            now=now,
            retry_backoff=self._settings.retry_backoff,
        )
        if decision.kind is DecisionKind.done:
            log.info("no_operation_for_execution")
            return reconciled()
        if decision.kind is DecisionKind.requeue:
            log.debug(
                "operation_execution_postponed",
                reason=decision.reason,
                engine_busy=status.in_execution,
                **decision.classified.counts(),
            )
            return self._requeue()

        selection = decision.selection
        assert selection is not None
        target = selection.operation
        log.info(
            "executing_cruise_control_task",
            target=target.name,
            operation=selection.task_operation.value,
            parameters=target.current_task_parameters,
            queue=selection.queue.value,
        )
        try:
            result = await execute_operation(executor, selection)
        except CCOperatorError as exc:
            return requeue_with_error(log, "cruise_control_operation_invalid", exc)

        try:
            await record_execution_result(
                self._store,
                target,
                result,
                task_operation=selection.task_operation,
                now=self._clock(),
                settings=self._settings,
            )
        except CCOperatorError as exc:
            return requeue_with_error(log, "execution_result_update_failed", exc)

        return reconciled()

    def _pending_operations(
        self,
        log: structlog.stdlib.BoundLogger,
        operations: Sequence[CruiseControlOperation],
        cluster_ref: ClusterReference,
    ) -> list[CruiseControlOperation]:
        """Records of the same Kafka cluster that still have work to do."""
        pending: list[CruiseControlOperation] = []
        for operation in operations:
            try:
                ref = operation.cluster_reference()
            except ClusterReferenceError as exc:
                log.info("operation_without_cluster_reference", operation=operation.key, error=exc.message)
                continue
            if (
                ref == cluster_ref
                and operation.is_current_task_operation_valid()
                and not operation.is_done()
            ):
                pending.append(operation)
        return pending
