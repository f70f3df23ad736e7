"""Tests for definition validation and the workflow registry"""
import pytest

from stepflow.domain.enums import IssueLevel
from stepflow.domain.errors import DefinitionConflictError, DefinitionError, DefinitionNotFoundError
from stepflow.domain.models import WorkflowDefinition
from stepflow.engine.definition_validator import DefinitionValidator
from stepflow.engine.operation_catalog import OperationCatalog
from stepflow.repositories.definition_registry import WorkflowRegistry

from .conftest import payment_flow_definition


def _auto(step_id, op="ops.noop"):
    return {"id": step_id, "type": "automation", "action": {"operationKey": op, "operationVersion": "1"}}


def _definition(steps, transitions, entry="a", **extra):
    return WorkflowDefinition.model_validate({
        "key": "wf", "version": "1", "entryStepId": entry,
        "steps": steps, "transitions": transitions, **extra
    })


def _messages(error: DefinitionError):
    return [issue.message for issue in error.issues if issue.level == IssueLevel.ERROR]


@pytest.fixture
def bare_registry():
    return WorkflowRegistry()


def test_register_then_get_returns_equal_definition(bare_registry):
    definition = payment_flow_definition()
    bare_registry.register(definition)

    fetched = bare_registry.get("paymentFlow", "1.0.0")
    assert fetched == definition
    assert fetched.model_dump(by_alias=True) == definition.model_dump(by_alias=True)


def test_duplicate_key_version_is_a_conflict(bare_registry):
    bare_registry.register(payment_flow_definition())
    with pytest.raises(DefinitionConflictError):
        bare_registry.register(payment_flow_definition(title="Other"))


def test_new_version_of_same_key_is_allowed(bare_registry):
    bare_registry.register(payment_flow_definition())
    bare_registry.register(payment_flow_definition(version="1.1.0"))
    assert sorted(bare_registry.versions("paymentFlow")) == ["1.0.0", "1.1.0"]
    assert len(bare_registry.list()) == 2


def test_get_unknown_raises_not_found(bare_registry):
    with pytest.raises(DefinitionNotFoundError):
        bare_registry.get("missing", "1")


def test_numeric_version_is_normalised_to_text(bare_registry):
    bare_registry.register(payment_flow_definition(version=2))
    assert bare_registry.get("paymentFlow", "2").version == "2"


def test_registries_are_isolated():
    first, second = WorkflowRegistry(), WorkflowRegistry()
    first.register(payment_flow_definition())
    with pytest.raises(DefinitionNotFoundError):
        second.get("paymentFlow", "1.0.0")


def test_rejects_definition_without_steps(bare_registry):
    with pytest.raises(DefinitionError):
        bare_registry.register(_definition([], []))


def test_rejects_duplicate_step_ids(bare_registry):
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(_definition([_auto("a"), _auto("a")], []))
    assert any("Duplicate step id" in m for m in _messages(exc.value))


def test_rejects_unknown_entry_step(bare_registry):
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(_definition([_auto("a")], [], entry="zz"))
    assert any("Entry step 'zz'" in m for m in _messages(exc.value))


def test_rejects_unreachable_step(bare_registry):
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(_definition([_auto("a"), _auto("b")], []))
    assert any("'b' is unreachable" in m for m in _messages(exc.value))


def test_rejects_transition_to_unknown_step(bare_registry):
    with pytest.raises(DefinitionError):
        bare_registry.register(_definition([_auto("a")], [{"from": "a", "to": "nowhere"}]))


def test_rejects_ambiguous_unconditioned_fan_out(bare_registry):
    definition = _definition(
        [_auto("a"), _auto("b"), _auto("c")],
        [{"from": "a", "to": "b"}, {"from": "a", "to": "c"}]
    )
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(definition)
    assert any("2 unconditioned transitions" in m for m in _messages(exc.value))


def test_rejects_cycles(bare_registry):
    definition = _definition(
        [_auto("a"), _auto("b")],
        [{"from": "a", "to": "b"}, {"from": "b", "to": "a", "condition": "output.again === true"}]
    )
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(definition)
    assert any("cycle" in m for m in _messages(exc.value))


def test_rejects_malformed_guard(bare_registry):
    definition = _definition(
        [_auto("a"), _auto("b")],
        [{"from": "a", "to": "b", "condition": "output.ok == true"}]
    )
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(definition)
    assert any("malformed" in m for m in _messages(exc.value))


def test_rejects_empty_step_guard(bare_registry):
    steps = [{**_auto("a"), "guard": "  "}]
    with pytest.raises(DefinitionError):
        bare_registry.register(_definition(steps, []))


def test_step_type_and_action_must_agree(bare_registry):
    steps = [
        {"id": "a", "type": "automation"},
        {"id": "b", "type": "human", "action": {"operationKey": "x", "operationVersion": "1"}},
    ]
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(_definition(steps, [{"from": "a", "to": "b"}]))
    messages = _messages(exc.value)
    assert any("must declare an action" in m for m in messages)
    assert any("must not declare an action" in m for m in messages)


def test_unknown_operation_is_rejected_against_catalog():
    catalog = OperationCatalog()
    catalog.register("ops.known", "1", lambda input, context: None)
    registry = WorkflowRegistry(operation_catalog=catalog)

    with pytest.raises(DefinitionError) as exc:
        registry.register(_definition([_auto("a", op="ops.unknown")], []))
    assert any("unknown operation ops.unknown@1" in m for m in _messages(exc.value))


def test_collects_every_issue_in_one_pass(bare_registry):
    definition = _definition(
        [_auto("a"), _auto("a"), _auto("orphan")],
        [{"from": "a", "to": "ghost"}],
        entry="a"
    )
    with pytest.raises(DefinitionError) as exc:
        bare_registry.register(definition)
    assert len(_messages(exc.value)) >= 3
    assert exc.value.to_dict()["details"]["issues"]


def test_unconditioned_before_conditioned_is_a_warning():
    definition = _definition(
        [_auto("a"), _auto("b"), _auto("c")],
        [{"from": "a", "to": "b"}, {"from": "a", "to": "c", "condition": "output.x === 1"}]
    )
    issues = DefinitionValidator().validate(definition)
    assert [i.level for i in issues] == [IssueLevel.WARNING]


def test_valid_definition_has_no_issues():
    assert DefinitionValidator().validate(payment_flow_definition()) == []
