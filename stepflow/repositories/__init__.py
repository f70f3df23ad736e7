"""Repository modules - Definition registry and instance state stores"""
from .state_store import StateStore, InMemoryStateStore
from .definition_registry import WorkflowRegistry
from .mongo_state_store import MongoStateStore

__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "WorkflowRegistry",
    "MongoStateStore",
]
