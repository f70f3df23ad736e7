"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class StepType(str, Enum):
    """Types of workflow steps"""
    AUTOMATION = "automation"  # Invokes an external operation
    HUMAN = "human"  # Suspends until a decision is submitted


class InstanceStatus(str, Enum):
    """Global workflow instance status"""
    RUNNING = "running"
    WAITING_FOR_HUMAN = "waitingForHuman"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (InstanceStatus.COMPLETED, InstanceStatus.FAILED, InstanceStatus.CANCELLED)


class StepOutcome(str, Enum):
    """Outcome recorded on a history entry"""
    SUCCESS = "success"
    WAITING = "waiting"
    FAILED = "failed"
    CANCELLED = "cancelled"


class IssueLevel(str, Enum):
    """Definition validation issue severity"""
    ERROR = "error"
    WARNING = "warning"


class LifecycleEvent(str, Enum):
    """Lifecycle events written by the audit writer"""
    STARTED = "workflow.started"
    STEP_COMPLETED = "workflow.step_completed"
    STEP_FAILED = "workflow.step_failed"
    WAITING = "workflow.waiting"
    DECISION_SUBMITTED = "workflow.decision_submitted"
    COMPLETED = "workflow.completed"
    FAILED = "workflow.failed"
    CANCELLED = "workflow.cancelled"
