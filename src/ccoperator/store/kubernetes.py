"""
Kubernetes operation store.

Reads and writes CruiseControlOperation custom resources and looks up the
referenced KafkaCluster resources through the official kubernetes client.

Configuration:
    kubeconfig: Path to kubeconfig file (optional)
    context: Kubeconfig context to use (optional)
    resync_interval: Seconds between relists while watching

Environment variables:
    KUBECONFIG: Standard kubeconfig path
    CCOPERATOR_KUBE_CONTEXT: Kubeconfig context
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from functools import partial
from typing import Any, AsyncIterator

import structlog

from ccoperator.core.errors import ConflictError, NotFoundError, StoreError
from ccoperator.domain.models import CruiseControlOperation, KafkaCluster
from ccoperator.store.base import EventType, OperationEvent

logger = structlog.get_logger()

GROUP = "kafka.banzaicloud.io"
OPERATION_VERSION = "v1alpha1"
OPERATION_PLURAL = "cruisecontroloperations"
CLUSTER_VERSION = "v1beta1"
CLUSTER_PLURAL = "kafkaclusters"

# Lazy import kubernetes to allow optional installation
_kubernetes_available: bool | None = None


def _check_kubernetes_available() -> bool:
    """Check if kubernetes package is installed."""
    global _kubernetes_available
    if _kubernetes_available is None:
        try:
            import kubernetes  # noqa: F401

            _kubernetes_available = True
        except ImportError:
            _kubernetes_available = False
    return _kubernetes_available


def _translate_api_error(exc: Any, details: dict[str, Any]) -> StoreError:
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None) or str(exc)
    details = details | {"status": status}
    if status == 404:
        return NotFoundError(f"resource not found: {reason}", details)
    if status == 409:
        return ConflictError(f"resource version conflict: {reason}", details)
    return StoreError(f"kubernetes API request failed: {reason}", details)


@dataclass
class KubernetesOperationStore:
    """OperationStore backed by the Kubernetes API server."""

    kubeconfig: str | None = field(default_factory=lambda: os.environ.get("KUBECONFIG"))
    context: str | None = field(
        default_factory=lambda: os.environ.get("CCOPERATOR_KUBE_CONTEXT")
    )
    resync_interval: float = 30.0

    # Internal state
    _api_client: Any = field(default=None, repr=False, compare=False)
    _initialized: bool = field(default=False, repr=False, compare=False)

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes client if not already done."""
        if self._initialized:
            return

        if not _check_kubernetes_available():
            raise StoreError(
                "kubernetes package not installed. "
                "Install with: pip install ccoperator[kubernetes]"
            )

        from kubernetes import client, config

        # Try in-cluster config first, then kubeconfig
        try:
            config.load_incluster_config()
        except config.ConfigException:
            try:
                config.load_kube_config(
                    config_file=self.kubeconfig,
                    context=self.context,
                )
            except config.ConfigException as e:
                raise StoreError(f"Failed to load Kubernetes config: {e}") from e

        self._api_client = client.ApiClient()
        self._initialized = True

    def _get_custom_api(self) -> Any:
        """Get CustomObjectsApi client."""
        self._ensure_initialized()
        from kubernetes import client

        return client.CustomObjectsApi(self._api_client)

    async def _run_sync(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run synchronous kubernetes API call in executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def _call(self, method: str, details: dict[str, Any], *args: Any) -> Any:
        api = self._get_custom_api()
        from kubernetes.client.exceptions import ApiException

        try:
            return await self._run_sync(getattr(api, method), *args)
        except ApiException as exc:
            raise _translate_api_error(exc, details) from exc

    async def list(self, namespace: str) -> list[CruiseControlOperation]:
        response = await self._call(
            "list_namespaced_custom_object",
            {"namespace": namespace},
            GROUP,
            OPERATION_VERSION,
            namespace,
            OPERATION_PLURAL,
        )
        return [CruiseControlOperation.model_validate(item) for item in response.get("items", [])]

    async def get(self, namespace: str, name: str) -> CruiseControlOperation:
        response = await self._call(
            "get_namespaced_custom_object",
            {"namespace": namespace, "name": name},
            GROUP,
            OPERATION_VERSION,
            namespace,
            OPERATION_PLURAL,
            name,
        )
        return CruiseControlOperation.model_validate(response)

    async def update(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        response = await self._call(
            "replace_namespaced_custom_object",
            {"namespace": operation.namespace, "name": operation.name},
            GROUP,
            OPERATION_VERSION,
            operation.namespace,
            OPERATION_PLURAL,
            operation.name,
            operation.to_resource(),
        )
        return CruiseControlOperation.model_validate(response)

    async def update_status(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        response = await self._call(
            "replace_namespaced_custom_object_status",
            {"namespace": operation.namespace, "name": operation.name},
            GROUP,
            OPERATION_VERSION,
            operation.namespace,
            OPERATION_PLURAL,
            operation.name,
            operation.to_resource(),
        )
        return CruiseControlOperation.model_validate(response)

    async def get_cluster(self, namespace: str, name: str) -> KafkaCluster:
        response = await self._call(
            "get_namespaced_custom_object",
            {"namespace": namespace, "name": name, "kind": "KafkaCluster"},
            GROUP,
            CLUSTER_VERSION,
            namespace,
            CLUSTER_PLURAL,
            name,
        )
        return KafkaCluster.model_validate(response)

    async def watch(self, namespace: str) -> AsyncIterator[OperationEvent]:
        """Emit change events by periodically relisting the namespace."""
        known: dict[str, CruiseControlOperation] = {}
        while True:
            try:
                operations = await self.list(namespace)
            except StoreError as exc:
                logger.warning("operation_relist_failed", namespace=namespace, error=exc.message)
            else:
                seen: set[str] = set()
                for operation in operations:
                    seen.add(operation.name)
                    previous = known.get(operation.name)
                    if previous is None:
                        yield OperationEvent(EventType.created, operation)
                    elif previous.metadata.resource_version != operation.metadata.resource_version:
                        yield OperationEvent(EventType.updated, operation, previous=previous)
                    known[operation.name] = operation
                for name in sorted(set(known) - seen):
                    yield OperationEvent(EventType.deleted, known.pop(name))
            await asyncio.sleep(self.resync_interval)
