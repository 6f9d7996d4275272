from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Protocol, Sequence

from ccoperator.domain.models import KafkaCluster, TaskState


@dataclass(frozen=True)
class EngineStatus:
    """Health of Cruise Control as seen by the reconciler."""

    ready: bool
    in_execution: bool
    details: str | None = None


@dataclass(frozen=True)
class OptimizationSummary:
    data_to_move_mb: int = 0
    num_replica_movements: int = 0
    intra_broker_data_to_move_mb: int = 0
    num_intra_broker_replica_movements: int = 0
    num_leader_movements: int = 0
    recent_windows: int = 0
    provision_recommendation: str = ""

    def as_status_summary(self) -> dict[str, str]:
        return {
            "Data to move": str(self.data_to_move_mb),
            "Number of replica movements": str(self.num_replica_movements),
            "Intra broker data to move": str(self.intra_broker_data_to_move_mb),
            "Number of intra broker replica movements": str(
                self.num_intra_broker_replica_movements
            ),
            "Number of leader movements": str(self.num_leader_movements),
            "Recent windows": str(self.recent_windows),
            "Provision recommendation": self.provision_recommendation,
        }


@dataclass(slots=True)
class TaskResult:
    """Outcome of a Cruise Control user task as reported by the engine."""

    task_id: str
    state: TaskState
    started_at: str = ""
    request_url: str = ""
    response_status_code: int = 0
    summary: OptimizationSummary | None = None
    error: str | None = None


class TaskExecutor(Protocol):
    """Contract for the remote optimization engine."""

    async def status(self) -> EngineStatus:
        ...

    async def add_brokers(self, parameters: Mapping[str, str]) -> TaskResult:
        ...

    async def remove_brokers(self, parameters: Mapping[str, str]) -> TaskResult:
        ...

    async def rebalance(self, parameters: Mapping[str, str]) -> TaskResult:
        ...

    async def stop_execution(self) -> TaskResult:
        ...

    async def user_tasks(self, task_ids: Sequence[str]) -> list[TaskResult]:
        ...

    async def aclose(self) -> None:
        ...


ExecutorFactory = Callable[[KafkaCluster], TaskExecutor]
