from __future__ import annotations

from typing import Any, Mapping, Sequence

from ccoperator.clients.base import BaseHTTPClient, HTTPResponse

API_PREFIX = "/kafkacruisecontrol"


class CruiseControlClient(BaseHTTPClient):
    """Cruise Control REST API client with retry logic and circuit breaker."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            max_retries=max_retries,
            backoff_factor=backoff_factor,
            **kwargs,
        )

    @staticmethod
    def _params(parameters: Mapping[str, str] | None = None) -> dict[str, str]:
        params = {"json": "true", "dryrun": "false"}
        if parameters:
            params.update(parameters)
        return params

    async def state(self) -> HTTPResponse:
        return await self.get(
            f"{API_PREFIX}/state",
            params={"json": "true", "substates": "executor,monitor,analyzer"},
        )

    async def add_broker(self, parameters: Mapping[str, str]) -> HTTPResponse:
        return await self.post(f"{API_PREFIX}/add_broker", params=self._params(parameters))

    async def remove_broker(self, parameters: Mapping[str, str]) -> HTTPResponse:
        return await self.post(f"{API_PREFIX}/remove_broker", params=self._params(parameters))

    async def rebalance(self, parameters: Mapping[str, str]) -> HTTPResponse:
        return await self.post(f"{API_PREFIX}/rebalance", params=self._params(parameters))

    async def stop_proposal_execution(self) -> HTTPResponse:
        return await self.post(f"{API_PREFIX}/stop_proposal_execution", params={"json": "true"})

    async def user_tasks(self, task_ids: Sequence[str]) -> HTTPResponse:
        params = {"json": "true"}
        if task_ids:
            params["user_task_ids"] = ",".join(task_ids)
        return await self.get(f"{API_PREFIX}/user_tasks", params=params)
