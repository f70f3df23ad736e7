"""
Pytest Configuration and Fixtures

Shared fixtures: fast engine settings, a fresh registry/catalogue/store per
test, and the two reference workflows used across the suite.
"""
from typing import Any, Dict, List, Tuple

import pytest

from stepflow.config.settings import EngineSettings
from stepflow.domain.models import WorkflowDefinition
from stepflow.engine.operation_catalog import OperationCatalog
from stepflow.engine.runner import WorkflowRunner
from stepflow.repositories.definition_registry import WorkflowRegistry
from stepflow.repositories.state_store import InMemoryStateStore


def payment_flow_definition(**overrides: Any) -> WorkflowDefinition:
    """prepare -> charge -> confirm, with charge -> confirm guarded by output.success"""
    data: Dict[str, Any] = {
        "key": "paymentFlow",
        "version": "1.0.0",
        "title": "Payment",
        "entryStepId": "prepare",
        "steps": [
            {"id": "prepare", "type": "automation",
             "action": {"operationKey": "payments.prepare", "operationVersion": "1"}},
            {"id": "charge", "type": "automation",
             "action": {"operationKey": "payments.charge", "operationVersion": "1"}},
            {"id": "confirm", "type": "automation",
             "action": {"operationKey": "payments.confirm", "operationVersion": "1"}},
        ],
        "transitions": [
            {"from": "prepare", "to": "charge"},
            {"from": "charge", "to": "confirm", "condition": "output.success === true"},
        ],
    }
    data.update(overrides)
    return WorkflowDefinition.model_validate(data)


def approval_definition(**overrides: Any) -> WorkflowDefinition:
    """submit -> approve (human) -> fulfil | reject"""
    data: Dict[str, Any] = {
        "key": "expenseApproval",
        "version": "1",
        "entryStepId": "submit",
        "steps": [
            {"id": "submit", "type": "automation",
             "action": {"operationKey": "expenses.submit", "operationVersion": "1"}},
            {"id": "approve", "label": "Manager approval", "type": "human"},
            {"id": "fulfil", "type": "automation",
             "action": {"operationKey": "expenses.fulfil", "operationVersion": "1"}},
            {"id": "reject", "type": "automation",
             "action": {"operationKey": "expenses.reject", "operationVersion": "1"}},
        ],
        "transitions": [
            {"from": "submit", "to": "approve"},
            {"from": "approve", "to": "fulfil", "condition": "output.approved === true"},
            {"from": "approve", "to": "reject", "condition": "output.approved === false"},
        ],
    }
    data.update(overrides)
    return WorkflowDefinition.model_validate(data)


class OperationCalls:
    """Records (operation_key, input, context) for every handler call"""

    def __init__(self):
        self.calls: List[Tuple[str, Dict[str, Any], Any]] = []

    def handler(self, operation_key: str, result: Any = None):
        def _handle(input, context):
            self.calls.append((operation_key, input, context))
            return result
        return _handle

    def keys(self) -> List[str]:
        return [key for key, _, _ in self.calls]


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings with no backoff delay"""
    return EngineSettings(
        retry_max_attempts=3,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
        retry_jitter=0,
        step_timeout_seconds=2,
        conflict_max_retries=3,
    )


@pytest.fixture
def calls() -> OperationCalls:
    return OperationCalls()


@pytest.fixture
def charge_result() -> Dict[str, Any]:
    """Mutable output returned by payments.charge"""
    return {"success": True}


@pytest.fixture
def catalog(calls: OperationCalls, charge_result: Dict[str, Any]) -> OperationCatalog:
    catalog = OperationCatalog()
    catalog.register("payments.prepare", "1", calls.handler("payments.prepare", {"amount": 42}))
    catalog.register("payments.charge", "1", calls.handler("payments.charge", charge_result))
    catalog.register("payments.confirm", "1", calls.handler("payments.confirm", {"receipt": "R-1"}))
    catalog.register("expenses.submit", "1", calls.handler("expenses.submit", {"submitted": True}))
    catalog.register("expenses.fulfil", "1", calls.handler("expenses.fulfil", {"paid": True}))
    catalog.register("expenses.reject", "1", calls.handler("expenses.reject", {"notified": True}))
    return catalog


@pytest.fixture
def registry(catalog: OperationCatalog) -> WorkflowRegistry:
    registry = WorkflowRegistry(operation_catalog=catalog)
    registry.register(payment_flow_definition())
    registry.register(approval_definition())
    return registry


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def events() -> List[Tuple[str, Dict[str, Any]]]:
    return []


@pytest.fixture
def runner(registry, store, catalog, settings, events):
    runner = WorkflowRunner(
        registry,
        store,
        catalog,
        settings=settings,
        event_sink=lambda name, payload: events.append((name, payload))
    )
    yield runner
    runner.close()
