from ccoperator.store.base import EventType, OperationEvent, OperationStore
from ccoperator.store.memory import InMemoryOperationStore

__all__ = ["EventType", "InMemoryOperationStore", "OperationEvent", "OperationStore"]
