"""
Workflow Runner - Instance lifecycle orchestration

=============================================================================
STATE MACHINE
=============================================================================

    running          -(step executes, transition resolves)-> running
                                                           | waitingForHuman
                                                           | completed
                                                           | failed
    waitingForHuman  -(submit_decision)-> running
    any non-terminal -(cancel)-> cancelled

completed, failed and cancelled are terminal. The engine never retries a
whole instance; operators act on terminal instances explicitly.

=============================================================================
CONCURRENCY
=============================================================================

Every mutation goes through StateStore.save(), a compare-and-swap on the
instance version. On ConcurrencyConflictError the runner reloads and
re-applies its change only if the instance is still where it left it;
otherwise it returns the fresh instance (e.g. a cancel landed while a step
was running, and the stale step result is dropped). After
conflict_max_retries the conflict is raised to the caller.

=============================================================================
"""
import copy
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..config.settings import EngineSettings, get_settings
from ..domain.enums import InstanceStatus, StepOutcome, StepType
from ..domain.errors import ConcurrencyConflictError, InvalidStateTransitionError, NoTransitionMatchedError
from ..domain.models import (
    ErrorInfo, HistoryEntry, Step, StepResult, WorkflowDefinition, WorkflowInstance
)
from ..repositories.state_store import StateStore
from .audit_writer import AuditWriter, EventSink
from .operation_catalog import OperationInvoker
from .step_executor import StepExecutor
from .transition_resolver import TransitionResolver, build_guard_context
from ..utils.idgen import generate_instance_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..repositories.definition_registry import WorkflowRegistry

logger = get_logger(__name__)


class WorkflowRunner:
    """
    Central orchestrator for workflow instances

    Dependencies are injected at the composition root:
    - registry: WorkflowRegistry holding validated definitions
    - state_store: StateStore implementation
    - invoker: OperationInvoker used by automation steps
    """

    def __init__(
        self,
        registry: "WorkflowRegistry",
        state_store: StateStore,
        invoker: OperationInvoker,
        settings: Optional[EngineSettings] = None,
        event_sink: Optional[EventSink] = None,
        step_executor: Optional[StepExecutor] = None,
        transition_resolver: Optional[TransitionResolver] = None
    ):
        self.registry = registry
        self.state_store = state_store
        self.settings = settings or get_settings()
        self.step_executor = step_executor or StepExecutor(invoker, settings=self.settings)
        self.transition_resolver = transition_resolver or TransitionResolver()
        self.audit_writer = AuditWriter(sink=event_sink)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create(
        self,
        definition_key: str,
        definition_version: str,
        input: Optional[Dict[str, Any]] = None
    ) -> WorkflowInstance:
        """
        Create a new instance at the definition's entry step

        Nothing is executed until advance() is called.
        """
        definition = self.registry.get(definition_key, definition_version)
        now = utc_now()

        instance = WorkflowInstance(
            instance_id=generate_instance_id(),
            definition_key=definition.key,
            definition_version=definition.version,
            current_step_id=definition.entry_step_id,
            status=InstanceStatus.RUNNING,
            input=dict(input or {}),
            created_at=now,
            updated_at=now
        )
        instance = self.state_store.create(instance)
        self.audit_writer.write_started(instance)
        return instance

    def advance(self, instance_id: str) -> WorkflowInstance:
        """
        Run the instance until it suspends or terminates

        Automation chains run back to back; a human step or a terminal
        status returns control to the caller.

        Returns:
            The latest persisted instance
        """
        while True:
            # Reload every iteration so a concurrent cancel is observed
            instance = self.state_store.load(instance_id)

            if instance.status != InstanceStatus.RUNNING:
                logger.debug(
                    f"Instance {instance_id} not runnable (status={instance.status.value})",
                    extra={"instance_id": instance_id, "status": instance.status.value}
                )
                return instance

            definition = self.registry.get(instance.definition_key, instance.definition_version)
            step = definition.get_step(instance.current_step_id)

            result = self.step_executor.execute(definition, instance, step)
            saved = self._persist_step_result(instance, definition, step, result)

            if saved.status != InstanceStatus.RUNNING:
                return saved

    def submit_decision(self, instance_id: str, step_id: str, payload: Any) -> Any:
        """
        Record a human decision and resume the instance

        Submitting again for a human step whose decision is already recorded
        is a no-op that returns the recorded output.

        Raises:
            InvalidStateTransitionError: If the instance is not waiting at step_id,
                including when step_id names an automation step
        """
        for _ in range(self.settings.conflict_max_retries + 1):
            instance = self.state_store.load(instance_id)

            definition = self.registry.get(instance.definition_key, instance.definition_version)
            step = definition.get_step(step_id)

            # Only a human step's output is a decision; automation outputs never are
            if step is not None and step.type == StepType.HUMAN and step_id in instance.step_outputs:
                logger.info(
                    f"Decision for step {step_id} already recorded; ignoring resubmission",
                    extra={"instance_id": instance_id, "step_id": step_id}
                )
                return copy.deepcopy(instance.step_outputs[step_id])

            if instance.current_step_id != step_id or instance.status != InstanceStatus.WAITING_FOR_HUMAN:
                raise InvalidStateTransitionError(
                    f"Instance {instance_id} is not waiting for a decision at step {step_id}",
                    details={
                        "instance_id": instance_id,
                        "step_id": step_id,
                        "current_step_id": instance.current_step_id,
                        "status": instance.status.value
                    }
                )

            instance.step_outputs[step_id] = copy.deepcopy(payload)
            instance.status = InstanceStatus.RUNNING
            try:
                saved = self.state_store.save(instance)
                break
            except ConcurrencyConflictError:
                logger.info(
                    f"Conflict recording decision for {instance_id}; reloading",
                    extra={"instance_id": instance_id, "step_id": step_id}
                )
        else:
            raise self._conflict_exhausted(instance_id, "submit_decision")

        self.audit_writer.write_decision_submitted(saved, step_id)
        self.advance(instance_id)
        return copy.deepcopy(payload)

    def cancel(self, instance_id: str) -> WorkflowInstance:
        """Cancel a non-terminal instance; a no-op for terminal ones"""
        for _ in range(self.settings.conflict_max_retries + 1):
            instance = self.state_store.load(instance_id)

            if instance.is_terminal:
                logger.info(
                    f"Instance {instance_id} already {instance.status.value}; cancel is a no-op",
                    extra={"instance_id": instance_id, "status": instance.status.value}
                )
                return instance

            now = utc_now()
            entry = instance.open_history_entry(instance.current_step_id)
            if entry is not None:
                entry.outcome = StepOutcome.CANCELLED
                entry.exited_at = now
            instance.status = InstanceStatus.CANCELLED

            try:
                saved = self.state_store.save(instance)
            except ConcurrencyConflictError:
                logger.info(f"Conflict cancelling {instance_id}; reloading", extra={"instance_id": instance_id})
                continue

            self.audit_writer.write_cancelled(saved)
            return saved

        raise self._conflict_exhausted(instance_id, "cancel")

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Get the current persisted state of an instance"""
        return self.state_store.load(instance_id)

    # =========================================================================
    # Step result handling
    # =========================================================================

    def _persist_step_result(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: Step,
        result: StepResult
    ) -> WorkflowInstance:
        """Apply a step result and save it, re-applying onto fresh state on conflict"""
        for _ in range(self.settings.conflict_max_retries + 1):
            updated = self._apply_step_result(instance.model_copy(deep=True), definition, step, result)
            try:
                saved = self.state_store.save(updated)
            except ConcurrencyConflictError:
                fresh = self.state_store.load(instance.instance_id)
                if fresh.status != InstanceStatus.RUNNING or fresh.current_step_id != step.id:
                    logger.info(
                        f"Instance {instance.instance_id} moved on while step {step.id} ran "
                        f"(status={fresh.status.value}); discarding step result",
                        extra={"instance_id": instance.instance_id, "step_id": step.id, "status": fresh.status.value}
                    )
                    return fresh
                instance = fresh
                continue

            self.audit_writer.write_step_result(saved, result)
            if saved.status == InstanceStatus.COMPLETED:
                self.audit_writer.write_completed(saved)
            elif saved.status == InstanceStatus.FAILED:
                self.audit_writer.write_failed(saved)
            return saved

        raise self._conflict_exhausted(instance.instance_id, "advance")

    def _apply_step_result(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: Step,
        result: StepResult
    ) -> WorkflowInstance:
        entry = instance.open_history_entry(step.id)
        if entry is None:
            entry = HistoryEntry(step_id=step.id, entered_at=result.entered_at, outcome=result.outcome)
            instance.history.append(entry)
        entry.outcome = result.outcome
        entry.exited_at = result.exited_at
        entry.attempts = result.attempts
        entry.error = result.error

        if result.outcome == StepOutcome.WAITING:
            instance.status = InstanceStatus.WAITING_FOR_HUMAN
            return instance

        if result.outcome == StepOutcome.FAILED:
            instance.status = InstanceStatus.FAILED
            instance.error = result.error
            return instance

        instance.step_outputs[step.id] = result.output
        try:
            next_step_id = self.transition_resolver.resolve_next_step(
                definition, step.id, build_guard_context(instance, result.output)
            )
        except NoTransitionMatchedError as e:
            logger.warning(e.message, extra={"instance_id": instance.instance_id, "step_id": step.id})
            instance.status = InstanceStatus.FAILED
            instance.error = ErrorInfo.from_exception(e)
            return instance

        if next_step_id is None:
            instance.status = InstanceStatus.COMPLETED
        else:
            instance.current_step_id = next_step_id
        return instance

    def _conflict_exhausted(self, instance_id: str, operation: str) -> ConcurrencyConflictError:
        logger.error(
            f"Giving up {operation} on {instance_id} after {self.settings.conflict_max_retries} conflict retries",
            extra={"instance_id": instance_id}
        )
        return ConcurrencyConflictError(
            f"Instance {instance_id} kept changing during {operation}",
            details={"instance_id": instance_id, "retries": self.settings.conflict_max_retries}
        )

    # =========================================================================
    # Resources
    # =========================================================================

    def close(self, timeout: float = 0.0) -> int:
        """Wait up to `timeout` seconds for in-flight operation calls; returns how many remain"""
        return self.step_executor.close(timeout)

    def __enter__(self) -> "WorkflowRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
