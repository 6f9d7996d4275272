from __future__ import annotations

import asyncio
import itertools
from datetime import datetime
from typing import AsyncIterator, Callable

from ccoperator.core.errors import ConflictError, NotFoundError, StoreError
from ccoperator.domain.models import CruiseControlOperation, KafkaCluster, utcnow
from ccoperator.store.base import EventType, OperationEvent


class InMemoryOperationStore:
    """Simple asyncio-backed store for local development and tests.

    Mirrors the object store semantics the reconciler relies on: resource
    version checks on every write, generation bumps on spec changes and
    finalizer-aware deletion.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._operations: dict[tuple[str, str], CruiseControlOperation] = {}
        self._clusters: dict[tuple[str, str], KafkaCluster] = {}
        self._versions = itertools.count(1)
        self._subscribers: list[tuple[str, asyncio.Queue[OperationEvent]]] = []

    async def create(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        key = (operation.namespace, operation.name)
        if key in self._operations:
            raise StoreError("operation already exists", {"key": operation.key})
        created = operation.model_copy(deep=True)
        created.metadata.resource_version = str(next(self._versions))
        created.metadata.generation = 1
        if created.metadata.creation_timestamp is None:
            created.metadata.creation_timestamp = self._clock()
        self._operations[key] = created
        self._emit(OperationEvent(EventType.created, created.model_copy(deep=True)))
        return created.model_copy(deep=True)

    async def list(self, namespace: str) -> list[CruiseControlOperation]:
        return [
            operation.model_copy(deep=True)
            for (ns, _), operation in sorted(self._operations.items())
            if ns == namespace
        ]

    async def get(self, namespace: str, name: str) -> CruiseControlOperation:
        return self._stored(namespace, name).model_copy(deep=True)

    async def update(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        stored = self._stored(operation.namespace, operation.name)
        self._check_version(stored, operation)

        updated = stored.model_copy(deep=True)
        updated.metadata = operation.metadata.model_copy(deep=True)
        updated.metadata.creation_timestamp = stored.metadata.creation_timestamp
        updated.metadata.deletion_timestamp = stored.metadata.deletion_timestamp
        updated.metadata.generation = stored.metadata.generation
        updated.spec = operation.spec.model_copy(deep=True)
        if updated.spec != stored.spec:
            updated.metadata.generation += 1
        return self._commit(stored, updated)

    async def update_status(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        stored = self._stored(operation.namespace, operation.name)
        self._check_version(stored, operation)

        updated = stored.model_copy(deep=True)
        updated.status = operation.status.model_copy(deep=True)
        return self._commit(stored, updated)

    async def delete(self, namespace: str, name: str) -> None:
        stored = self._stored(namespace, name)
        if stored.metadata.finalizers:
            if stored.metadata.deletion_timestamp is None:
                updated = stored.model_copy(deep=True)
                updated.metadata.deletion_timestamp = self._clock()
                self._commit(stored, updated)
            return
        del self._operations[(namespace, name)]
        self._emit(OperationEvent(EventType.deleted, stored.model_copy(deep=True)))

    def add_cluster(self, cluster: KafkaCluster) -> None:
        self._clusters[(cluster.metadata.namespace, cluster.metadata.name)] = cluster.model_copy(
            deep=True
        )

    def remove_cluster(self, namespace: str, name: str) -> None:
        self._clusters.pop((namespace, name), None)

    async def get_cluster(self, namespace: str, name: str) -> KafkaCluster:
        cluster = self._clusters.get((namespace, name))
        if cluster is None:
            raise NotFoundError(
                "kafka cluster not found", {"namespace": namespace, "name": name}
            )
        return cluster.model_copy(deep=True)

    async def watch(self, namespace: str) -> AsyncIterator[OperationEvent]:
        queue: asyncio.Queue[OperationEvent] = asyncio.Queue()
        subscription = (namespace, queue)
        self._subscribers.append(subscription)
        try:
            for operation in await self.list(namespace):
                yield OperationEvent(EventType.created, operation)
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(subscription)

    def _stored(self, namespace: str, name: str) -> CruiseControlOperation:
        stored = self._operations.get((namespace, name))
        if stored is None:
            raise NotFoundError(
                "CruiseControlOperation not found", {"namespace": namespace, "name": name}
            )
        return stored

    @staticmethod
    def _check_version(stored: CruiseControlOperation, operation: CruiseControlOperation) -> None:
        expected = operation.metadata.resource_version
        if expected and expected != stored.metadata.resource_version:
            raise ConflictError(
                "the object has been modified; please apply your changes to the latest version",
                {"key": stored.key, "resource_version": expected},
            )

    def _commit(
        self,
        stored: CruiseControlOperation,
        updated: CruiseControlOperation,
    ) -> CruiseControlOperation:
        key = (stored.namespace, stored.name)
        updated.metadata.resource_version = str(next(self._versions))
        if updated.is_marked_for_deletion() and not updated.metadata.finalizers:
            del self._operations[key]
            self._emit(OperationEvent(EventType.deleted, updated.model_copy(deep=True)))
            return updated.model_copy(deep=True)

        self._operations[key] = updated
        self._emit(
            OperationEvent(
                EventType.updated,
                updated.model_copy(deep=True),
                previous=stored.model_copy(deep=True),
            )
        )
        return updated.model_copy(deep=True)

    def _emit(self, event: OperationEvent) -> None:
        for namespace, queue in self._subscribers:
            if namespace == event.operation.namespace:
                queue.put_nowait(event)
