"""Domain Models - Pydantic schemas for definitions and instances"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .enums import InstanceStatus, IssueLevel, StepOutcome, StepType
from .errors import DomainError
from .expressions import Node, parse_expression


# ============================================================================
# Errors attached to history
# ============================================================================

class ErrorInfo(BaseModel):
    """Serialisable snapshot of a domain error"""
    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human readable message")
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        if isinstance(error, DomainError):
            return cls.model_validate(error.to_dict())
        return cls(code=type(error).__name__, message=str(error))


# ============================================================================
# Workflow Definition (authoring shape, camelCase aliases accepted)
# ============================================================================

_DEFINITION_CONFIG = ConfigDict(
    frozen=True,
    extra="forbid",
    alias_generator=to_camel,
    populate_by_name=True,
)


class Expression(BaseModel):
    """
    Guard expression in the closed grammar

    The AST is parsed on first use and cached on the value; equality and
    hashing only look at the raw text.
    """
    model_config = ConfigDict(extra="forbid")

    raw: str = Field(..., description="Expression source text")

    _ast: Optional[Node] = PrivateAttr(default=None)

    @model_validator(mode="before")
    @classmethod
    def _coerce_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"raw": data}
        return data

    def compiled(self) -> Node:
        """Return the cached AST, parsing it on first call"""
        if self._ast is None:
            self._ast = parse_expression(self.raw)
        return self._ast

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Expression):
            return self.raw == other.raw
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.raw)

    def __str__(self) -> str:
        return self.raw


class OperationRef(BaseModel):
    """Reference to an external operation"""
    model_config = _DEFINITION_CONFIG

    operation_key: str = Field(..., min_length=1)
    operation_version: str = Field(..., min_length=1)

    @field_validator("operation_version", mode="before")
    @classmethod
    def _version_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def ref(self) -> str:
        return f"{self.operation_key}@{self.operation_version}"


class RetryPolicy(BaseModel):
    """Retry policy for transient operation failures"""
    model_config = _DEFINITION_CONFIG

    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=0.5, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    jitter: float = Field(default=0.2, ge=0, le=1, description="Fraction of the delay randomised")

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
        )


class Step(BaseModel):
    """Step definition in workflow"""
    model_config = _DEFINITION_CONFIG

    id: str = Field(..., min_length=1, description="Unique step ID")
    label: str = Field(default="", description="Display label")
    type: StepType = Field(..., description="automation or human")
    action: Optional[OperationRef] = Field(None, description="Operation for automation steps")
    guard: Optional[Expression] = Field(None, description="Must be true to enter the step")
    retry: Optional[RetryPolicy] = Field(None, description="Overrides the engine retry policy")
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Overrides the engine step timeout")


class Transition(BaseModel):
    """Transition definition in workflow"""
    model_config = _DEFINITION_CONFIG

    from_step_id: str = Field(..., alias="from", description="Source step ID")
    to_step_id: str = Field(..., alias="to", description="Target step ID")
    condition: Optional[Expression] = Field(None, description="Unconditional when absent")

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None


class WorkflowDefinition(BaseModel):
    """Immutable, versioned workflow definition"""
    model_config = _DEFINITION_CONFIG

    key: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    title: str = Field(default="")
    description: Optional[str] = None
    entry_step_id: str = Field(..., description="First step of every instance")
    steps: Tuple[Step, ...] = Field(default_factory=tuple)
    transitions: Tuple[Transition, ...] = Field(default_factory=tuple)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def ref(self) -> str:
        return f"{self.key}@{self.version}"

    def get_step(self, step_id: str) -> Optional[Step]:
        """Find step definition by ID"""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def outgoing(self, step_id: str) -> List[Transition]:
        """Transitions leaving a step, in declaration order"""
        return [t for t in self.transitions if t.from_step_id == step_id]


class ValidationIssue(BaseModel):
    """Single finding from definition validation"""
    level: IssueLevel
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Workflow Instance (engine state)
# ============================================================================

class HistoryEntry(BaseModel):
    """One visit to a step"""
    step_id: str
    entered_at: datetime
    exited_at: Optional[datetime] = None
    outcome: StepOutcome
    attempts: int = 0
    error: Optional[ErrorInfo] = None


class WorkflowInstance(BaseModel):
    """One execution of a workflow definition"""
    instance_id: str = Field(..., description="Unique instance ID")
    definition_key: str
    definition_version: str
    current_step_id: str
    status: InstanceStatus = InstanceStatus.RUNNING
    input: Dict[str, Any] = Field(default_factory=dict, description="Initial data supplied at create")
    step_outputs: Dict[str, Any] = Field(default_factory=dict)
    history: List[HistoryEntry] = Field(default_factory=list)
    error: Optional[ErrorInfo] = Field(None, description="Terminal failure reason")
    version: int = Field(default=0, description="Optimistic concurrency counter")
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def open_history_entry(self, step_id: str) -> Optional[HistoryEntry]:
        """Return the still-open history entry for a step, if any"""
        if self.history:
            last = self.history[-1]
            if last.step_id == step_id and last.exited_at is None:
                return last
        return None


# ============================================================================
# Execution
# ============================================================================

class InvocationContext(BaseModel):
    """Context passed to the OperationInvoker"""
    model_config = ConfigDict(frozen=True)

    instance_id: str
    definition_key: str
    definition_version: str
    step_id: str
    attempt: int


class StepResult(BaseModel):
    """Result of executing a single step"""
    step_id: str
    outcome: StepOutcome
    output: Any = None
    error: Optional[ErrorInfo] = None
    entered_at: datetime
    exited_at: Optional[datetime] = None
    attempts: int = 0
