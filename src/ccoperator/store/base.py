from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import AsyncIterator, Protocol

from ccoperator.domain.models import CruiseControlOperation, KafkaCluster


class EventType(StrEnum):
    created = "created"
    updated = "updated"
    deleted = "deleted"


@dataclass(slots=True)
class OperationEvent:
    """Change notification for a single operation record."""

    type: EventType
    operation: CruiseControlOperation
    previous: CruiseControlOperation | None = None


class OperationStore(Protocol):
    """Contract for the declarative store holding operation records.

    Writes are optimistic: an object carrying a stale resource version is
    rejected with ConflictError. Missing objects raise NotFoundError.
    """

    async def list(self, namespace: str) -> list[CruiseControlOperation]:
        ...

    async def get(self, namespace: str, name: str) -> CruiseControlOperation:
        ...

    async def update(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        ...

    async def update_status(self, operation: CruiseControlOperation) -> CruiseControlOperation:
        ...

    async def get_cluster(self, namespace: str, name: str) -> KafkaCluster:
        ...

    def watch(self, namespace: str) -> AsyncIterator[OperationEvent]:
        ...
