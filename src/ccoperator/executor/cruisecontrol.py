"""
Cruise Control backed task executor.

Translates the Cruise Control REST API into TaskResults:

- the ``User-Task-ID`` response header is the job ID
- the HTTP ``Date`` header is the RFC 1123 start time of the task
- 202 means the task is still being computed (Active), 200 means the
  proposal was accepted and is executing (InExecution)
- a non-2xx answer to a submission is a partial result in
  CompletedWithError carrying the engine's ``errorMessage``

Transport failures with no HTTP answer raise ExecutorError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Awaitable, Callable, Mapping, Sequence

import structlog
from circuitbreaker import CircuitBreakerError

from ccoperator.clients.base import HTTPResponse, PermanentHTTPError, RetryableHTTPError
from ccoperator.clients.cruisecontrol import CruiseControlClient
from ccoperator.config import Settings, get_settings
from ccoperator.core.errors import ExecutorError
from ccoperator.domain.models import KafkaCluster, TaskState, utcnow
from ccoperator.executor.base import (
    EngineStatus,
    ExecutorFactory,
    OptimizationSummary,
    TaskResult,
)

logger = structlog.get_logger()

USER_TASK_ID_HEADER = "user-task-id"
MONITOR_READY_STATES = frozenset({"RUNNING", "SAMPLING"})
EXECUTOR_IDLE_STATE = "NO_TASK_IN_PROGRESS"

_USER_TASK_STATES = {state.value: state for state in TaskState}


def _error_message(response: HTTPResponse) -> str:
    body = response.body if isinstance(response.body, dict) else {}
    return str(body.get("errorMessage") or body.get("raw") or f"HTTP {response.status_code}")


def _parse_summary(body: Any) -> OptimizationSummary | None:
    if not isinstance(body, dict) or not isinstance(body.get("summary"), dict):
        return None
    summary = body["summary"]
    return OptimizationSummary(
        data_to_move_mb=int(summary.get("dataToMoveMB", 0)),
        num_replica_movements=int(summary.get("numReplicaMovements", 0)),
        intra_broker_data_to_move_mb=int(summary.get("intraBrokerDataToMoveMB", 0)),
        num_intra_broker_replica_movements=int(summary.get("numIntraBrokerReplicaMovements", 0)),
        num_leader_movements=int(summary.get("numLeaderMovements", 0)),
        recent_windows=int(summary.get("recentWindows", 0)),
        provision_recommendation=str(summary.get("provisionRecommendation", "")),
    )


def _format_start_ms(value: Any) -> str:
    started = datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    return format_datetime(started, usegmt=True)


class CruiseControlExecutor:
    """TaskExecutor implementation talking to one Cruise Control instance."""

    def __init__(
        self,
        client: CruiseControlClient,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    async def status(self) -> EngineStatus:
        try:
            response = await self._client.state()
        except (RetryableHTTPError, PermanentHTTPError, CircuitBreakerError) as exc:
            raise ExecutorError("could not get Cruise Control state", {"cause": str(exc)}) from exc

        body = response.body if isinstance(response.body, dict) else {}
        monitor_state = (body.get("MonitorState") or {}).get("state")
        executor_state = (body.get("ExecutorState") or {}).get("state")
        proposal_ready = bool((body.get("AnalyzerState") or {}).get("isProposalReady", False))

        ready = monitor_state in MONITOR_READY_STATES and proposal_ready and executor_state is not None
        in_execution = executor_state is not None and executor_state != EXECUTOR_IDLE_STATE
        return EngineStatus(
            ready=ready,
            in_execution=in_execution,
            details=f"monitor={monitor_state} executor={executor_state} proposal_ready={proposal_ready}",
        )

    async def add_brokers(self, parameters: Mapping[str, str]) -> TaskResult:
        return await self._submit(self._client.add_broker, parameters)

    async def remove_brokers(self, parameters: Mapping[str, str]) -> TaskResult:
        return await self._submit(self._client.remove_broker, parameters)

    async def rebalance(self, parameters: Mapping[str, str]) -> TaskResult:
        return await self._submit(self._client.rebalance, parameters)

    async def stop_execution(self) -> TaskResult:
        return await self._submit(
            lambda _: self._client.stop_proposal_execution(),
            {},
            accepted_state=TaskState.completed,
        )

    async def user_tasks(self, task_ids: Sequence[str]) -> list[TaskResult]:
        if not task_ids:
            return []
        try:
            response = await self._client.user_tasks(task_ids)
        except (RetryableHTTPError, PermanentHTTPError, CircuitBreakerError) as exc:
            raise ExecutorError(
                "could not get user tasks from Cruise Control API", {"cause": str(exc)}
            ) from exc

        body = response.body if isinstance(response.body, dict) else {}
        results: list[TaskResult] = []
        for task in body.get("userTasks", []):
            state = _USER_TASK_STATES.get(task.get("Status", ""))
            if state is None:
                logger.warning(
                    "unknown_user_task_state",
                    task_id=task.get("UserTaskId"),
                    state=task.get("Status"),
                )
                continue
            start_ms = task.get("StartMs")
            results.append(
                TaskResult(
                    task_id=task.get("UserTaskId", ""),
                    state=state,
                    started_at=_format_start_ms(start_ms) if start_ms is not None else "",
                    request_url=task.get("RequestURL", ""),
                )
            )
        return results

    async def _submit(
        self,
        call: Callable[[Mapping[str, str]], Awaitable[HTTPResponse]],
        parameters: Mapping[str, str],
        *,
        accepted_state: TaskState = TaskState.in_execution,
    ) -> TaskResult:
        try:
            response = await call(parameters)
        except PermanentHTTPError as exc:
            if exc.response is None:
                raise ExecutorError("Cruise Control request failed", {"cause": str(exc)}) from exc
            return self._result(
                exc.response,
                TaskState.completed_with_error,
                error=_error_message(exc.response),
            )
        except (RetryableHTTPError, CircuitBreakerError) as exc:
            raise ExecutorError("Cruise Control is unreachable", {"cause": str(exc)}) from exc

        state = TaskState.active if response.status_code == 202 else accepted_state
        return self._result(response, state)

    def _result(
        self,
        response: HTTPResponse,
        state: TaskState,
        *,
        error: str | None = None,
    ) -> TaskResult:
        started_at = response.headers.get("date") or format_datetime(self._clock(), usegmt=True)
        return TaskResult(
            task_id=response.headers.get(USER_TASK_ID_HEADER, ""),
            state=state,
            started_at=started_at,
            request_url=response.url,
            response_status_code=response.status_code,
            summary=_parse_summary(response.body),
            error=error,
        )


def cruise_control_url(cluster: KafkaCluster, template: str) -> str:
    """Resolve the Cruise Control base URL for a Kafka cluster."""
    endpoint = cluster.cruise_control_endpoint
    if endpoint:
        return endpoint if "://" in endpoint else f"http://{endpoint}"
    return template.format(name=cluster.metadata.name, namespace=cluster.metadata.namespace)


def cruise_control_executor_factory(settings: Settings | None = None) -> ExecutorFactory:
    """Build executors for clusters using the configured HTTP settings."""
    settings = settings or get_settings()

    def factory(cluster: KafkaCluster) -> CruiseControlExecutor:
        client = CruiseControlClient(
            cruise_control_url(cluster, settings.cruise_control_url_template),
            timeout=settings.http_timeout,
            max_retries=settings.http_max_retries,
            backoff_factor=settings.http_retry_backoff_factor,
        )
        return CruiseControlExecutor(client)

    return factory
