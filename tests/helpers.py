"""Builders and fakes shared by the test modules."""

from datetime import datetime, timedelta, timezone

from ccoperator.domain.models import (
    FINALIZER,
    KAFKA_CLUSTER_LABEL,
    CruiseControlOperation,
    CruiseControlTask,
    KafkaCluster,
    ObjectMeta,
    OperationSpec,
    OperationStatus,
    TaskState,
)
from ccoperator.executor.base import EngineStatus, TaskResult

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
NAMESPACE = "kafka"
CLUSTER = "kafka"


def make_operation(
    name,
    operation="rebalance",
    *,
    created=None,
    state=None,
    task_id="",
    finished=None,
    started=None,
    retry_count=0,
    error_policy="retry",
    cluster=CLUSTER,
    paused=False,
    deleting=False,
    finalizer=False,
    parameters=None,
):
    labels = {}
    if cluster:
        labels[KAFKA_CLUSTER_LABEL] = cluster
    if paused:
        labels["pause"] = "true"
    return CruiseControlOperation(
        metadata=ObjectMeta(
            name=name,
            namespace=NAMESPACE,
            labels=labels,
            finalizers=[FINALIZER] if finalizer else [],
            creation_timestamp=created or NOW - timedelta(minutes=10),
            deletion_timestamp=NOW if deleting else None,
        ),
        spec=OperationSpec(error_policy=error_policy),
        status=OperationStatus(
            current_task=CruiseControlTask(
                id=task_id,
                operation=operation,
                parameters=parameters or {},
                state=state,
                started=started,
                finished=finished,
            ),
            retry_count=retry_count,
            error_policy=error_policy,
        ),
    )


def make_cluster(name=CLUSTER, namespace=NAMESPACE):
    return KafkaCluster(metadata=ObjectMeta(name=name, namespace=namespace))


class ScriptedExecutor:
    """TaskExecutor fake returning queued answers and recording calls."""

    def __init__(self, *, ready=True, in_execution=False):
        self.engine_status = EngineStatus(ready=ready, in_execution=in_execution)
        self.calls = []
        self.results = {}
        self.task_results = {}
        self.status_error = None
        self.dispatch_error = None
        self.closed = False
        self._ids = iter(f"task-{n}" for n in range(1, 1000))

    async def status(self):
        if self.status_error is not None:
            raise self.status_error
        return self.engine_status

    async def _submit(self, kind, parameters=None):
        self.calls.append((kind, dict(parameters or {})))
        if self.dispatch_error is not None:
            raise self.dispatch_error
        result = self.results.get(kind)
        if result is None:
            state = TaskState.completed if kind == "stop_execution" else TaskState.active
            result = TaskResult(
                task_id=next(self._ids),
                state=state,
                started_at="Wed, 01 May 2024 11:59:00 GMT",
                request_url=f"http://cc/{kind}",
                response_status_code=202,
            )
        return result

    async def add_brokers(self, parameters):
        return await self._submit("add_broker", parameters)

    async def remove_brokers(self, parameters):
        return await self._submit("remove_broker", parameters)

    async def rebalance(self, parameters):
        return await self._submit("rebalance", parameters)

    async def stop_execution(self):
        return await self._submit("stop_execution")

    async def user_tasks(self, task_ids):
        self.calls.append(("user_tasks", list(task_ids)))
        return [self.task_results[task_id] for task_id in task_ids if task_id in self.task_results]

    async def aclose(self):
        self.closed = True

    @property
    def dispatched(self):
        return [kind for kind, _ in self.calls if kind != "user_tasks"]
