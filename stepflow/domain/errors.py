"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, List, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a serialisable dict"""
        return {
            "code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"


class DefinitionError(ValidationError):
    """
    Workflow definition is malformed

    Raised only by WorkflowRegistry.register(); carries every
    validation issue found so authors can fix them in one pass.
    """
    error_code = "DEFINITION_ERROR"

    def __init__(
        self,
        message: str,
        issues: Optional[List[Any]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.issues = list(issues or [])
        details = dict(details or {})
        details.setdefault(
            "issues",
            [issue.model_dump() if hasattr(issue, "model_dump") else issue for issue in self.issues]
        )
        super().__init__(message, details=details)


class GuardEvaluationError(ValidationError):
    """Guard expression is syntactically malformed"""
    error_code = "GUARD_EVALUATION_ERROR"

    def __init__(self, message: str, raw: str, position: Optional[int] = None):
        super().__init__(message, details={"raw": raw, "position": position})
        self.raw = raw
        self.position = position


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"


class DefinitionNotFoundError(NotFoundError):
    """Workflow definition not registered"""
    error_code = "DEFINITION_NOT_FOUND"


class InstanceNotFoundError(NotFoundError):
    """Workflow instance not found in the state store"""
    error_code = "INSTANCE_NOT_FOUND"


class OperationNotFoundError(NotFoundError):
    """Operation not present in the catalogue"""
    error_code = "OPERATION_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict"""
    error_code = "CONFLICT"


class DefinitionConflictError(ConflictError):
    """(key, version) already registered"""
    error_code = "DEFINITION_CONFLICT"


class AlreadyExistsError(ConflictError):
    """Resource already exists"""
    error_code = "ALREADY_EXISTS"


class ConcurrencyConflictError(ConflictError):
    """Optimistic concurrency conflict - reload and retry"""
    error_code = "CONCURRENCY_CONFLICT"


class InvalidStateTransitionError(ConflictError):
    """Action not valid for the instance's current state"""
    error_code = "INVALID_STATE_TRANSITION"


# Engine Errors
class EngineError(DomainError):
    """Workflow engine error"""
    error_code = "ENGINE_ERROR"


class StepExecutionError(EngineError):
    """Operation invocation failed after the retry policy was exhausted"""
    error_code = "STEP_EXECUTION_ERROR"


class NoTransitionMatchedError(EngineError):
    """Step has outgoing transitions but none of their conditions matched"""
    error_code = "NO_TRANSITION_MATCHED"

    def __init__(self, step_id: str, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["step_id"] = step_id
        super().__init__(f"No transition matched from step {step_id}", details=details)
        self.step_id = step_id


class GuardRejectedError(EngineError):
    """
    Step guard evaluated to false

    The guard is evaluated once, when the step is entered. A rejection
    fails the instance terminally; it is not left running to be
    re-evaluated later.
    """
    error_code = "GUARD_REJECTED"


# External Service Errors
class ExternalServiceError(DomainError):
    """External service failure"""
    error_code = "EXTERNAL_SERVICE_ERROR"


class OperationError(ExternalServiceError):
    """
    Raised by an OperationInvoker

    retryable=True marks the failure as transient; the step executor
    retries it under the retry policy.
    """
    error_code = "OPERATION_ERROR"

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message, details=details, error_code=error_code)
        self.retryable = retryable
