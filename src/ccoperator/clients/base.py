from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from circuitbreaker import CircuitBreaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(slots=True)
class HTTPResponse:
    """Decoded HTTP response kept together with its diagnostics."""

    status_code: int
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


class RetryableHTTPError(Exception):
    """HTTP errors that should be retried."""


class PermanentHTTPError(Exception):
    """HTTP errors that should not be retried."""

    def __init__(self, message: str, response: HTTPResponse | None = None) -> None:
        super().__init__(message)
        self.response = response


def is_retryable_status(status_code: int, method: str = "GET") -> bool:
    """Determine if HTTP status code is retryable for the given method."""
    if method.upper() in IDEMPOTENT_METHODS:
        return status_code in (408, 429, 500, 502, 503, 504)
    # Submissions may already have started a job on the server side.
    return status_code in (429, 503)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


class BaseHTTPClient:
    """Base HTTP client with retry logic and circuit breaker."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_factor = backoff_factor
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        # One breaker per endpoint; an unhealthy engine must not trip the others.
        self._breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            expected_exception=RetryableHTTPError,
            name=f"{type(self).__name__}:{self._base_url}",
        )
        self._guarded_request = self._breaker(self._request_with_retries)

    def _headers(self) -> dict[str, str]:
        """Override to provide custom headers."""
        return {"Accept": "application/json"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """Execute HTTP request with retry and circuit breaker."""
        return await self._guarded_request(method, path, params=params, headers=headers)

    async def _request_with_retries(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RetryableHTTPError),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff_factor, min=1, max=30),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(method, path, params=params, headers=headers)
        raise RetryableHTTPError(f"{method} {path}: retries exhausted")

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        url = f"{self._base_url}{path}"
        req_headers = self._headers()
        if headers:
            req_headers.update(headers)

        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                headers=req_headers,
            )
        except httpx.ConnectError as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise RetryableHTTPError(str(exc)) from exc
        except (httpx.TimeoutException, httpx.ReadError) as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            if method.upper() in IDEMPOTENT_METHODS:
                raise RetryableHTTPError(str(exc)) from exc
            raise PermanentHTTPError(str(exc)) from exc

        result = HTTPResponse(
            status_code=response.status_code,
            url=str(response.request.url),
            headers={key.lower(): value for key, value in response.headers.items()},
            body=_decode(response),
        )

        if is_retryable_status(response.status_code, method):
            logger.warning(
                "http_retryable_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise RetryableHTTPError(f"HTTP {response.status_code}: {response.text}")

        if response.is_error:
            logger.error(
                "http_permanent_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise PermanentHTTPError(f"HTTP {response.status_code}: {response.text}", result)

        return result

    async def get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """Execute GET request."""
        return await self._request("GET", path, params=params, headers=headers)

    async def post(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """Execute POST request."""
        return await self._request("POST", path, params=params, headers=headers)
