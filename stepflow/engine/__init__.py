"""Workflow Engine - Validation, guards, step execution and orchestration"""
from .condition_evaluator import ConditionEvaluator
from .operation_catalog import OperationCatalog, OperationInvoker
from .definition_validator import DefinitionValidator
from .transition_resolver import TransitionResolver
from .step_executor import StepExecutor
from .audit_writer import AuditWriter
from .runner import WorkflowRunner

__all__ = [
    "ConditionEvaluator",
    "OperationCatalog",
    "OperationInvoker",
    "DefinitionValidator",
    "TransitionResolver",
    "StepExecutor",
    "AuditWriter",
    "WorkflowRunner",
]
