"""Audit Writer - Lifecycle events for workflow instances"""
from typing import Any, Callable, Dict, Optional

from ..domain.enums import LifecycleEvent, StepOutcome
from ..domain.models import StepResult, WorkflowInstance
from ..utils.time import format_iso, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

EventSink = Callable[[str, Dict[str, Any]], None]


class AuditWriter:
    """
    Write lifecycle events

    Every event is logged; when a sink is injected it also receives
    (event_name, payload). Events are written after the state change they
    describe has been persisted, so a failing sink is logged and does not
    undo engine state.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink

    def write_event(
        self,
        event: LifecycleEvent,
        instance: WorkflowInstance,
        step_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Write a single lifecycle event"""
        payload: Dict[str, Any] = {
            "instance_id": instance.instance_id,
            "definition_key": instance.definition_key,
            "definition_version": instance.definition_version,
            "status": instance.status.value,
            "timestamp": format_iso(utc_now()),
        }
        if step_id is not None:
            payload["step_id"] = step_id
        if details:
            payload.update(details)

        logger.info(
            f"{event.value}: {instance.instance_id}",
            extra={
                "event": event.value,
                "instance_id": instance.instance_id,
                "definition_key": instance.definition_key,
                "definition_version": instance.definition_version,
                "status": instance.status.value,
                "step_id": step_id,
            }
        )

        if self.sink is not None:
            try:
                self.sink(event.value, payload)
            except Exception:
                logger.exception(f"Event sink failed for {event.value}", extra={"instance_id": instance.instance_id})
        return payload

    def write_started(self, instance: WorkflowInstance) -> Dict[str, Any]:
        """Write instance creation event"""
        return self.write_event(
            LifecycleEvent.STARTED,
            instance,
            step_id=instance.current_step_id
        )

    def write_step_result(self, instance: WorkflowInstance, result: StepResult) -> Dict[str, Any]:
        """Write the event matching a persisted step result"""
        if result.outcome == StepOutcome.SUCCESS:
            return self.write_event(
                LifecycleEvent.STEP_COMPLETED,
                instance,
                step_id=result.step_id,
                details={"attempts": result.attempts}
            )
        if result.outcome == StepOutcome.WAITING:
            return self.write_event(LifecycleEvent.WAITING, instance, step_id=result.step_id)
        return self.write_event(
            LifecycleEvent.STEP_FAILED,
            instance,
            step_id=result.step_id,
            details={"error": result.error.model_dump() if result.error else None}
        )

    def write_completed(self, instance: WorkflowInstance) -> Dict[str, Any]:
        return self.write_event(LifecycleEvent.COMPLETED, instance)

    def write_failed(self, instance: WorkflowInstance) -> Dict[str, Any]:
        return self.write_event(
            LifecycleEvent.FAILED,
            instance,
            step_id=instance.current_step_id,
            details={"error": instance.error.model_dump() if instance.error else None}
        )

    def write_decision_submitted(self, instance: WorkflowInstance, step_id: str) -> Dict[str, Any]:
        return self.write_event(LifecycleEvent.DECISION_SUBMITTED, instance, step_id=step_id)

    def write_cancelled(self, instance: WorkflowInstance) -> Dict[str, Any]:
        return self.write_event(LifecycleEvent.CANCELLED, instance, step_id=instance.current_step_id)
