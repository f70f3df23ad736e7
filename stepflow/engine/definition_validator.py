"""Definition Validator - Structure, references, guards and reachability"""
from collections import deque
from typing import Dict, List, Optional, Set

from ..domain.enums import IssueLevel, StepType
from ..domain.errors import GuardEvaluationError
from ..domain.models import Expression, Step, ValidationIssue, WorkflowDefinition
from .operation_catalog import OperationCatalog


class DefinitionValidator:
    """
    Validate a workflow definition before registration

    Collects every issue rather than stopping at the first one. Errors
    block registration; warnings are reported and logged by the registry.
    """

    def __init__(self, operation_catalog: Optional[OperationCatalog] = None):
        self.operation_catalog = operation_catalog

    def validate(self, definition: WorkflowDefinition) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        if not definition.steps:
            issues.append(_error("Workflow must declare at least one step"))
            return issues

        steps_by_id = self._index_steps(definition, issues)

        if definition.entry_step_id not in steps_by_id:
            issues.append(_error(
                f"Entry step '{definition.entry_step_id}' is not defined in steps",
                entry_step_id=definition.entry_step_id
            ))

        adjacency = self._build_adjacency(definition, steps_by_id, issues)
        self._check_fan_out(definition, steps_by_id, issues)
        self._check_reachability(definition.entry_step_id, steps_by_id, adjacency, issues)
        self._check_cycles(adjacency, issues)

        return issues

    # =========================================================================
    # Steps
    # =========================================================================

    def _index_steps(self, definition: WorkflowDefinition, issues: List[ValidationIssue]) -> Dict[str, Step]:
        steps_by_id: Dict[str, Step] = {}
        for step in definition.steps:
            if step.id in steps_by_id:
                issues.append(_error(f"Duplicate step id '{step.id}'", step_id=step.id))
                continue
            steps_by_id[step.id] = step

            if step.type == StepType.AUTOMATION and step.action is None:
                issues.append(_error(f"Automation step '{step.id}' must declare an action", step_id=step.id))
            if step.type == StepType.HUMAN and step.action is not None:
                issues.append(_error(f"Human step '{step.id}' must not declare an action", step_id=step.id))

            if step.action is not None and self.operation_catalog is not None:
                if not self.operation_catalog.contains(step.action):
                    issues.append(_error(
                        f"Step '{step.id}' references unknown operation {step.action.ref}",
                        step_id=step.id,
                        operation=step.action.ref
                    ))

            if step.guard is not None:
                self._check_expression(step.guard, issues, f"Guard for step '{step.id}'", step_id=step.id)

            if step.retry is not None and step.retry.max_delay_seconds < step.retry.base_delay_seconds:
                issues.append(_warning(
                    f"Step '{step.id}' retry max_delay_seconds is less than base_delay_seconds",
                    step_id=step.id
                ))
        return steps_by_id

    # =========================================================================
    # Transitions
    # =========================================================================

    def _build_adjacency(
        self,
        definition: WorkflowDefinition,
        steps_by_id: Dict[str, Step],
        issues: List[ValidationIssue]
    ) -> Dict[str, Set[str]]:
        adjacency: Dict[str, Set[str]] = {step_id: set() for step_id in steps_by_id}

        for t in definition.transitions:
            label = f"Transition {t.from_step_id} -> {t.to_step_id}"
            if t.from_step_id not in steps_by_id:
                issues.append(_error(f"{label} refers to unknown 'from' step", from_step_id=t.from_step_id))
                continue
            if t.to_step_id not in steps_by_id:
                issues.append(_error(f"{label} refers to unknown 'to' step", to_step_id=t.to_step_id))
                continue
            adjacency[t.from_step_id].add(t.to_step_id)

            if t.condition is not None:
                self._check_expression(
                    t.condition, issues, f"Condition of {label}",
                    from_step_id=t.from_step_id, to_step_id=t.to_step_id
                )
        return adjacency

    def _check_fan_out(
        self,
        definition: WorkflowDefinition,
        steps_by_id: Dict[str, Step],
        issues: List[ValidationIssue]
    ) -> None:
        for step_id in steps_by_id:
            outgoing = definition.outgoing(step_id)
            unconditioned = [t for t in outgoing if not t.is_conditional]
            if len(unconditioned) > 1:
                issues.append(_error(
                    f"Step '{step_id}' has {len(unconditioned)} unconditioned transitions; "
                    "at most one is allowed",
                    step_id=step_id,
                    targets=[t.to_step_id for t in unconditioned]
                ))
            elif unconditioned and outgoing.index(unconditioned[0]) < len(outgoing) - 1:
                issues.append(_warning(
                    f"Unconditioned transition from '{step_id}' is declared before conditioned ones, "
                    "which can never be selected",
                    step_id=step_id
                ))

    # =========================================================================
    # Graph
    # =========================================================================

    def _check_reachability(
        self,
        entry_step_id: str,
        steps_by_id: Dict[str, Step],
        adjacency: Dict[str, Set[str]],
        issues: List[ValidationIssue]
    ) -> None:
        if entry_step_id not in steps_by_id:
            return
        visited = {entry_step_id}
        queue = deque([entry_step_id])
        while queue:
            current = queue.popleft()
            for nxt in adjacency.get(current, ()):
                if nxt not in visited:
                    visited.add(nxt)
                    queue.append(nxt)

        for step_id in steps_by_id:
            if step_id not in visited:
                issues.append(_error(
                    f"Step '{step_id}' is unreachable from entry step '{entry_step_id}'",
                    step_id=step_id
                ))

    def _check_cycles(self, adjacency: Dict[str, Set[str]], issues: List[ValidationIssue]) -> None:
        # Iterative DFS with white/grey/black colouring
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {node: WHITE for node in adjacency}

        for root in adjacency:
            if colour[root] != WHITE:
                continue
            stack = [(root, iter(sorted(adjacency[root])))]
            colour[root] = GREY
            while stack:
                node, children = stack[-1]
                advanced = False
                for child in children:
                    if colour[child] == GREY:
                        issues.append(_error(f"Workflow contains a cycle involving step '{child}'", step_id=child))
                        return
                    if colour[child] == WHITE:
                        colour[child] = GREY
                        stack.append((child, iter(sorted(adjacency[child]))))
                        advanced = True
                        break
                if not advanced:
                    colour[node] = BLACK
                    stack.pop()

    # =========================================================================
    # Expressions
    # =========================================================================

    def _check_expression(self, expression: Expression, issues: List[ValidationIssue], label: str, **context) -> None:
        if not expression.raw.strip():
            issues.append(_error(f"{label} must not be empty", **context))
            return
        try:
            expression.compiled()
        except GuardEvaluationError as e:
            issues.append(_error(f"{label} is malformed: {e.message}", raw=expression.raw, **context))


def _error(message: str, **context) -> ValidationIssue:
    return ValidationIssue(level=IssueLevel.ERROR, message=message, context=context)


def _warning(message: str, **context) -> ValidationIssue:
    return ValidationIssue(level=IssueLevel.WARNING, message=message, context=context)
