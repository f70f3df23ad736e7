"""Workflow Registry - Validated, immutable workflow definitions"""
import threading
from typing import Dict, List, Optional, Tuple

from ..domain.enums import IssueLevel
from ..domain.errors import DefinitionConflictError, DefinitionError, DefinitionNotFoundError
from ..domain.models import WorkflowDefinition
from ..engine.definition_validator import DefinitionValidator
from ..engine.operation_catalog import OperationCatalog
from ..utils.logger import get_logger

logger = get_logger(__name__)


class WorkflowRegistry:
    """
    Registry of workflow definitions keyed by (key, version)

    Construct one at the composition root and inject it into the runner;
    there is no process-wide registry. Definitions are validated once at
    register() time and never change afterwards, so anything that gets
    past register() cannot produce a DefinitionError at runtime.
    """

    def __init__(self, operation_catalog: Optional[OperationCatalog] = None):
        self._definitions: Dict[Tuple[str, str], WorkflowDefinition] = {}
        self._lock = threading.Lock()
        self._validator = DefinitionValidator(operation_catalog=operation_catalog)

    def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Validate and store a definition

        Raises:
            DefinitionError: If any error-level validation issue is found
            DefinitionConflictError: If (key, version) is already registered
        """
        issues = self._validator.validate(definition)
        errors = [i for i in issues if i.level == IssueLevel.ERROR]

        for warning in (i for i in issues if i.level == IssueLevel.WARNING):
            logger.warning(
                f"Workflow {definition.ref}: {warning.message}",
                extra={"definition_key": definition.key, "definition_version": definition.version}
            )

        if errors:
            raise DefinitionError(f"Workflow {definition.ref} is invalid", issues=issues)

        with self._lock:
            key = (definition.key, definition.version)
            if key in self._definitions:
                raise DefinitionConflictError(
                    f"Workflow {definition.ref} is already registered",
                    details={"key": definition.key, "version": definition.version}
                )
            self._definitions[key] = definition

        logger.info(
            f"Registered workflow: {definition.ref}",
            extra={"definition_key": definition.key, "definition_version": definition.version}
        )
        return definition

    def get(self, key: str, version: str) -> WorkflowDefinition:
        """Get definition by (key, version) or raise DefinitionNotFoundError"""
        definition = self._definitions.get((key, str(version)))
        if definition is None:
            raise DefinitionNotFoundError(
                f"Workflow {key}@{version} not found",
                details={"key": key, "version": str(version)}
            )
        return definition

    def list(self) -> List[WorkflowDefinition]:
        """All registered definitions"""
        with self._lock:
            return list(self._definitions.values())

    def versions(self, key: str) -> List[str]:
        """Registered versions for a workflow key"""
        with self._lock:
            return [version for (k, version) in self._definitions if k == key]
