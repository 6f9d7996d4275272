"""Tests for the Cruise Control client and executor."""

import httpx
import pytest
import respx
from httpx import Response
from circuitbreaker import CircuitBreakerError
from ccoperator.clients.base import PermanentHTTPError, RetryableHTTPError, is_retryable_status
from ccoperator.clients.cruisecontrol import CruiseControlClient
from ccoperator.config import Settings
from ccoperator.core.errors import ExecutorError
from ccoperator.domain.models import KafkaCluster, TaskState
from ccoperator.executor.cruisecontrol import (
    CruiseControlExecutor,
    cruise_control_executor_factory,
    cruise_control_url,
)
from helpers import NOW, make_cluster

BASE = "http://cc.example.com:8090"
API = f"{BASE}/kafkacruisecontrol"

STATE_READY = {
    "MonitorState": {"state": "RUNNING"},
    "ExecutorState": {"state": "NO_TASK_IN_PROGRESS"},
    "AnalyzerState": {"isProposalReady": True},
}


@pytest.fixture
def cc_executor():
    return CruiseControlExecutor(CruiseControlClient(BASE), clock=lambda: NOW)


class TestRetryPolicy:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_reads_retry_transient_statuses(self, status):
        assert is_retryable_status(status, "GET")

    def test_submissions_retry_only_throttling(self):
        assert is_retryable_status(429, "POST")
        assert is_retryable_status(503, "POST")
        assert not is_retryable_status(500, "POST")
        assert not is_retryable_status(504, "POST")

    @pytest.mark.asyncio
    async def test_get_retries_on_503(self):
        client = CruiseControlClient(BASE)

        with respx.mock:
            route = respx.get(f"{API}/state")
            route.side_effect = [Response(503), Response(200, json=STATE_READY)]

            response = await client.state()

        assert response.body == STATE_READY
        assert route.call_count == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_post_is_not_retried_on_500(self):
        client = CruiseControlClient(BASE)

        with respx.mock:
            route = respx.post(f"{API}/rebalance")
            route.mock(return_value=Response(500, json={"errorMessage": "boom"}))

            with pytest.raises(PermanentHTTPError) as exc_info:
                await client.rebalance({})

        assert route.call_count == 1
        assert exc_info.value.response.status_code == 500
        await client.aclose()

    @pytest.mark.asyncio
    async def test_attempts_follow_max_retries(self):
        client = CruiseControlClient(BASE, max_retries=1)

        with respx.mock:
            route = respx.get(f"{API}/state").mock(return_value=Response(503))

            with pytest.raises(RetryableHTTPError):
                await client.state()

        assert route.call_count == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_open_circuit_is_scoped_to_one_engine(self):
        unhealthy = CruiseControlClient("http://cc-a.example.com:8090", max_retries=1, failure_threshold=2)
        healthy = CruiseControlClient("http://cc-b.example.com:8090", max_retries=1, failure_threshold=2)

        with respx.mock:
            failing = respx.get("http://cc-a.example.com:8090/kafkacruisecontrol/state").mock(
                return_value=Response(503)
            )
            respx.get("http://cc-b.example.com:8090/kafkacruisecontrol/state").mock(
                return_value=Response(200, json=STATE_READY)
            )

            for _ in range(2):
                with pytest.raises(RetryableHTTPError):
                    await unhealthy.state()
            with pytest.raises(CircuitBreakerError):
                await unhealthy.state()

            response = await healthy.state()

        assert failing.call_count == 2
        assert response.body == STATE_READY
        await unhealthy.aclose()
        await healthy.aclose()


class TestClientRequests:
    @pytest.mark.asyncio
    async def test_submission_parameters(self):
        client = CruiseControlClient(BASE)

        with respx.mock:
            route = respx.post(f"{API}/remove_broker").mock(return_value=Response(202, json={}))

            await client.remove_broker({"brokerid": "3", "dryrun": "true"})

        params = route.calls.last.request.url.params
        assert params["brokerid"] == "3"
        assert params["dryrun"] == "true"
        assert params["json"] == "true"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_user_tasks_joins_ids(self):
        client = CruiseControlClient(BASE)

        with respx.mock:
            route = respx.get(f"{API}/user_tasks").mock(
                return_value=Response(200, json={"userTasks": []})
            )

            await client.user_tasks(["a", "b"])

        assert route.calls.last.request.url.params["user_task_ids"] == "a,b"
        await client.aclose()


class TestExecutorStatus:
    @pytest.mark.asyncio
    async def test_ready_and_idle(self, cc_executor):
        with respx.mock:
            respx.get(f"{API}/state").mock(return_value=Response(200, json=STATE_READY))

            status = await cc_executor.status()

        assert status.ready
        assert not status.in_execution

    @pytest.mark.asyncio
    async def test_busy(self, cc_executor):
        body = dict(STATE_READY, ExecutorState={"state": "REPLICA_MOVEMENT_TASK_IN_PROGRESS"})
        with respx.mock:
            respx.get(f"{API}/state").mock(return_value=Response(200, json=body))

            status = await cc_executor.status()

        assert status.ready
        assert status.in_execution

    @pytest.mark.asyncio
    async def test_not_ready_while_loading(self, cc_executor):
        body = dict(STATE_READY, MonitorState={"state": "LOADING"})
        with respx.mock:
            respx.get(f"{API}/state").mock(return_value=Response(200, json=body))

            status = await cc_executor.status()

        assert not status.ready
        assert "LOADING" in status.details

    @pytest.mark.asyncio
    async def test_permanent_error_raises(self, cc_executor):
        with respx.mock:
            respx.get(f"{API}/state").mock(return_value=Response(401))

            with pytest.raises(ExecutorError):
                await cc_executor.status()


class TestExecutorSubmissions:
    @pytest.mark.asyncio
    async def test_accepted_but_computing(self, cc_executor):
        with respx.mock:
            respx.post(f"{API}/add_broker").mock(
                return_value=Response(
                    202,
                    json={"progress": []},
                    headers={"User-Task-ID": "abc-1", "Date": "Wed, 01 May 2024 11:59:00 GMT"},
                )
            )

            result = await cc_executor.add_brokers({"brokerid": "4"})

        assert result.task_id == "abc-1"
        assert result.state == TaskState.active
        assert result.started_at == "Wed, 01 May 2024 11:59:00 GMT"
        assert result.response_status_code == 202
        assert "brokerid=4" in result.request_url
        assert result.error is None

    @pytest.mark.asyncio
    async def test_executing_with_summary(self, cc_executor):
        body = {
            "summary": {
                "dataToMoveMB": 1024,
                "numReplicaMovements": 12,
                "numLeaderMovements": 3,
                "recentWindows": 5,
                "provisionRecommendation": "",
            }
        }
        with respx.mock:
            respx.post(f"{API}/rebalance").mock(
                return_value=Response(200, json=body, headers={"User-Task-ID": "abc-2"})
            )

            result = await cc_executor.rebalance({})

        assert result.state == TaskState.in_execution
        assert result.summary.as_status_summary()["Data to move"] == "1024"
        assert result.summary.as_status_summary()["Number of leader movements"] == "3"
        # No Date header: the local clock is used.
        assert result.started_at == "Wed, 01 May 2024 12:00:00 GMT"

    @pytest.mark.asyncio
    async def test_rejected_submission_is_partial_result(self, cc_executor):
        with respx.mock:
            respx.post(f"{API}/remove_broker").mock(
                return_value=Response(
                    400,
                    json={"errorMessage": "broker 9 does not exist"},
                    headers={"User-Task-ID": "abc-3"},
                )
            )

            result = await cc_executor.remove_brokers({"brokerid": "9"})

        assert result.state == TaskState.completed_with_error
        assert result.task_id == "abc-3"
        assert result.error == "broker 9 does not exist"
        assert result.response_status_code == 400

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self, cc_executor):
        with respx.mock:
            respx.post(f"{API}/rebalance").mock(side_effect=httpx.ReadTimeout("timed out"))

            with pytest.raises(ExecutorError):
                await cc_executor.rebalance({})

    @pytest.mark.asyncio
    async def test_stop_execution_completes(self, cc_executor):
        with respx.mock:
            route = respx.post(f"{API}/stop_proposal_execution").mock(
                return_value=Response(200, json={}, headers={"User-Task-ID": "stop-1"})
            )

            result = await cc_executor.stop_execution()

        assert route.call_count == 1
        assert result.state == TaskState.completed
        assert result.task_id == "stop-1"


class TestExecutorUserTasks:
    @pytest.mark.asyncio
    async def test_parses_known_tasks(self, cc_executor):
        body = {
            "userTasks": [
                {
                    "UserTaskId": "t1",
                    "Status": "Completed",
                    "StartMs": 1714564740000,
                    "RequestURL": "POST /kafkacruisecontrol/rebalance",
                },
                {"UserTaskId": "t2", "Status": "InExecution"},
                {"UserTaskId": "t3", "Status": "Mystery"},
            ]
        }
        with respx.mock:
            respx.get(f"{API}/user_tasks").mock(return_value=Response(200, json=body))

            results = await cc_executor.user_tasks(["t1", "t2", "t3"])

        assert [r.task_id for r in results] == ["t1", "t2"]
        assert results[0].state == TaskState.completed
        assert results[0].started_at == "Wed, 01 May 2024 11:59:00 GMT"
        assert results[1].state == TaskState.in_execution

    @pytest.mark.asyncio
    async def test_no_ids_no_request(self, cc_executor):
        with respx.mock:
            assert await cc_executor.user_tasks([]) == []


class TestFactory:
    def test_url_from_template(self):
        url = cruise_control_url(make_cluster("prod", "streaming"), Settings().cruise_control_url_template)
        assert url == "http://prod-cruisecontrol-svc.streaming.svc.cluster.local:8090"

    def test_url_from_cluster_spec(self):
        cluster = KafkaCluster.model_validate(
            {
                "metadata": {"name": "kafka", "namespace": "kafka"},
                "spec": {"cruiseControlConfig": {"cruiseControlEndpoint": "cc.internal:9090"}},
            }
        )
        assert cruise_control_url(cluster, "unused") == "http://cc.internal:9090"

    @pytest.mark.asyncio
    async def test_factory_builds_executor(self):
        executor = cruise_control_executor_factory(Settings())(make_cluster())
        assert isinstance(executor, CruiseControlExecutor)
        await executor.aclose()
