"""Transition Resolver - Determine next step based on step output and conditions"""
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, List, Optional

from ..domain.errors import NoTransitionMatchedError
from ..domain.models import Transition, WorkflowDefinition, WorkflowInstance
from .condition_evaluator import ConditionEvaluator
from ..utils.logger import get_logger

logger = get_logger(__name__)


_NO_OUTPUT = object()


def build_guard_context(instance: WorkflowInstance, output: Any = _NO_OUTPUT) -> Mapping:
    """
    Read-only context guards are evaluated against

    - output: output of the step being left (absent for step guards)
    - steps:  every recorded step output, keyed by step id
    - input:  data supplied when the instance was created
    """
    context = {
        "steps": MappingProxyType(dict(instance.step_outputs)),
        "input": MappingProxyType(dict(instance.input)),
    }
    if output is not _NO_OUTPUT:
        context["output"] = output
    return MappingProxyType(context)


class TransitionResolver:
    """
    Resolve the next step from the current step's output

    Given current step S:
    1. Collect transitions with from = S, in declaration order
    2. Pick the first whose condition is true (or that has none)
    3. No outgoing transitions -> None (instance completes)
    4. Outgoing transitions but none matched -> NoTransitionMatchedError
    """

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    def resolve_next_step(
        self,
        definition: WorkflowDefinition,
        current_step_id: str,
        context: Mapping
    ) -> Optional[str]:
        """
        Resolve the next step ID

        Args:
            definition: Workflow definition
            current_step_id: Step that just completed
            context: Guard context (see build_guard_context)

        Returns:
            Next step ID or None if the step is terminal

        Raises:
            NoTransitionMatchedError: If no condition matched
        """
        candidates = self.get_outgoing_transitions(definition, current_step_id)

        if not candidates:
            return None

        for transition in candidates:
            if transition.condition is None or self.condition_evaluator.evaluate(transition.condition, context):
                logger.info(
                    f"Resolved transition: {current_step_id} -> {transition.to_step_id}",
                    extra={"step_id": current_step_id, "definition_key": definition.key}
                )
                return transition.to_step_id

        raise NoTransitionMatchedError(
            current_step_id,
            details={
                "definition": definition.ref,
                "candidates": [t.to_step_id for t in candidates]
            }
        )

    def get_outgoing_transitions(self, definition: WorkflowDefinition, step_id: str) -> List[Transition]:
        """Get all outgoing transitions from a step"""
        return definition.outgoing(step_id)
