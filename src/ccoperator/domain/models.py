from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ccoperator.core.errors import ClusterReferenceError

FINALIZER = "finalizer.cruisecontroloperations.kafka.banzaicloud.io"
KAFKA_CLUSTER_LABEL = "kafka_cr"
PAUSE_LABEL = "pause"

_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


def utcnow() -> datetime:
    """Current time truncated to the second, as stored on records."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class TaskOperation(StrEnum):
    """Operations Cruise Control can run for a record."""

    add_broker = "add_broker"
    remove_broker = "remove_broker"
    rebalance = "rebalance"
    stop_execution = "stop_execution"


class TaskState(StrEnum):
    """Cruise Control user task states."""

    active = "Active"
    in_execution = "InExecution"
    completed = "Completed"
    completed_with_error = "CompletedWithError"


class ErrorPolicy(StrEnum):
    ignore = "ignore"
    retry = "retry"


SUPPORTED_OPERATIONS = frozenset(op.value for op in TaskOperation)
RUNNING_STATES = frozenset({TaskState.active, TaskState.in_execution})
TERMINAL_STATES = frozenset({TaskState.completed, TaskState.completed_with_error})


class ResourceModel(BaseModel):
    """Base for store objects: camelCase on the wire, unknown fields kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_resource(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ObjectMeta(ResourceModel):
    name: str
    namespace: str = "default"
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None
    generation: int = 0
    resource_version: str = ""


class CruiseControlTask(ResourceModel):
    """A single execution attempt of an operation."""

    id: str = ""
    operation: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)
    state: TaskState | None = None
    started: datetime | None = None
    finished: datetime | None = None
    http_request: str = ""
    http_response_code: int | None = None
    error_message: str = ""
    summary: dict[str, str] | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _empty_state(cls, value: Any) -> Any:
        return value or None

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_STATES and self.finished is None

    def set_defaults(self) -> None:
        """Clear attempt-level fields, keeping the operation and its parameters."""
        self.id = ""
        self.state = None
        self.started = None
        self.finished = None
        self.http_request = ""
        self.http_response_code = None
        self.error_message = ""
        self.summary = None


class OperationSpec(ResourceModel):
    error_policy: ErrorPolicy = ErrorPolicy.retry
    ttl_seconds_after_finished: int | None = None

    @field_validator("error_policy", mode="before")
    @classmethod
    def _default_policy(cls, value: Any) -> Any:
        return value or ErrorPolicy.retry


class OperationStatus(ResourceModel):
    current_task: CruiseControlTask | None = None
    failed_tasks: list[CruiseControlTask] = Field(default_factory=list)
    retry_count: int = 0
    error_policy: ErrorPolicy = ErrorPolicy.retry

    @field_validator("error_policy", mode="before")
    @classmethod
    def _default_policy(cls, value: Any) -> Any:
        return value or ErrorPolicy.retry


@dataclass(frozen=True, slots=True)
class ClusterReference:
    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class CruiseControlOperation(ResourceModel):
    """Declarative request for one Cruise Control operation."""

    api_version: str = "kafka.banzaicloud.io/v1alpha1"
    kind: str = "CruiseControlOperation"
    metadata: ObjectMeta
    spec: OperationSpec = Field(default_factory=OperationSpec)
    status: OperationStatus = Field(default_factory=OperationStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def current_task(self) -> CruiseControlTask | None:
        return self.status.current_task

    @property
    def current_task_operation(self) -> str:
        task = self.status.current_task
        return task.operation if task else ""

    @property
    def current_task_id(self) -> str:
        task = self.status.current_task
        return task.id if task else ""

    @property
    def current_task_state(self) -> TaskState | None:
        task = self.status.current_task
        return task.state if task else None

    @property
    def current_task_parameters(self) -> dict[str, str]:
        task = self.status.current_task
        return dict(task.parameters) if task else {}

    def is_current_task_operation_valid(self) -> bool:
        return self.current_task_operation in SUPPORTED_OPERATIONS

    def is_paused(self) -> bool:
        return self.metadata.labels.get(PAUSE_LABEL) == "true"

    def is_marked_for_deletion(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str = FINALIZER) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str = FINALIZER) -> bool:
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str = FINALIZER) -> bool:
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [f for f in self.metadata.finalizers if f != finalizer]
        return True

    def is_done(self) -> bool:
        state = self.current_task_state
        if state == TaskState.completed:
            return True
        return (
            state == TaskState.completed_with_error
            and self.status.error_policy == ErrorPolicy.ignore
        )

    def is_current_task_running(self) -> bool:
        task = self.status.current_task
        return task is not None and task.is_running

    def is_in_progress(self) -> bool:
        return self.current_task_id != "" and self.is_current_task_running()

    def is_waiting_for_first_execution(self) -> bool:
        return (
            self.current_task_state is None
            and self.current_task_id == ""
            and self.status.retry_count == 0
            and not self.is_paused()
            and not self.is_marked_for_deletion()
        )

    def is_waiting_for_retry_execution(self) -> bool:
        if self.is_paused() or self.is_marked_for_deletion():
            return False
        if self.status.error_policy != ErrorPolicy.retry:
            return False
        state = self.current_task_state
        if state == TaskState.completed_with_error:
            return True
        return state is None and self.status.retry_count > 0

    @property
    def last_attempt_at(self) -> datetime | None:
        task = self.status.current_task
        if task is not None and task.finished is not None:
            return task.finished
        if self.status.failed_tasks and self.status.failed_tasks[-1].finished is not None:
            return self.status.failed_tasks[-1].finished
        return task.started if task is not None else None

    def is_ready_for_retry_execution(self, now: datetime, backoff: timedelta) -> bool:
        last_attempt = self.last_attempt_at
        if last_attempt is None:
            return True
        return last_attempt + backoff < now

    def cluster_reference(self) -> ClusterReference:
        name = self.metadata.labels.get(KAFKA_CLUSTER_LABEL, "")
        details = {"label": KAFKA_CLUSTER_LABEL, "name": self.name, "namespace": self.namespace}
        if not name:
            raise ClusterReferenceError(
                "could not find kafka cluster reference label for CruiseControlOperation",
                details,
            )
        if len(name) > 253 or not _DNS_SUBDOMAIN.match(name):
            raise ClusterReferenceError(
                f"invalid kafka cluster reference {name!r} on CruiseControlOperation",
                details,
            )
        return ClusterReference(namespace=self.namespace, name=name)


class KafkaCluster(ResourceModel):
    api_version: str = "kafka.banzaicloud.io/v1beta1"
    kind: str = "KafkaCluster"
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)

    @property
    def reference(self) -> ClusterReference:
        return ClusterReference(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def cruise_control_endpoint(self) -> str | None:
        config = self.spec.get("cruiseControlConfig") or {}
        return config.get("cruiseControlEndpoint") or None
