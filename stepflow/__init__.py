"""StepFlow - Versioned workflow definitions executed as persisted state machines"""
from .engine import OperationCatalog, WorkflowRunner
from .repositories import InMemoryStateStore, MongoStateStore, WorkflowRegistry

__version__ = "0.1.0"

__all__ = [
    "OperationCatalog",
    "WorkflowRunner",
    "WorkflowRegistry",
    "InMemoryStateStore",
    "MongoStateStore",
]
