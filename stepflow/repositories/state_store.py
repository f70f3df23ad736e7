"""State Store - Workflow instance persistence with optimistic concurrency"""
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..domain.enums import InstanceStatus
from ..domain.errors import AlreadyExistsError, ConcurrencyConflictError, InstanceNotFoundError
from ..domain.models import WorkflowInstance
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class StateStore(ABC):
    """
    Contract for workflow instance persistence

    save() is a compare-and-swap on the integer `version`: it succeeds only
    when the stored version equals the version the caller last read, and
    the check and increment must happen atomically. Conflicts are surfaced
    as ConcurrencyConflictError and never retried silently by the store.
    """

    @abstractmethod
    def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Insert a new instance; raises AlreadyExistsError if the id is taken"""

    @abstractmethod
    def load(self, instance_id: str) -> WorkflowInstance:
        """Load an instance; raises InstanceNotFoundError"""

    @abstractmethod
    def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        """
        Persist an instance read at `instance.version`

        Returns:
            The stored copy, carrying version + 1

        Raises:
            ConcurrencyConflictError: If the stored version moved on
            InstanceNotFoundError: If the instance does not exist
        """

    @abstractmethod
    def list_instances(self, status: Optional[InstanceStatus] = None) -> List[WorkflowInstance]:
        """List instances, optionally filtered by status"""


class InMemoryStateStore(StateStore):
    """Thread-safe in-process store for single-process use and tests"""

    def __init__(self):
        self._instances: Dict[str, WorkflowInstance] = {}
        self._lock = threading.Lock()

    def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        with self._lock:
            if instance.instance_id in self._instances:
                raise AlreadyExistsError(
                    f"Instance {instance.instance_id} already exists",
                    details={"instance_id": instance.instance_id}
                )
            stored = instance.model_copy(deep=True)
            self._instances[instance.instance_id] = stored
        logger.info(f"Created instance: {instance.instance_id}", extra={"instance_id": instance.instance_id})
        return stored.model_copy(deep=True)

    def load(self, instance_id: str) -> WorkflowInstance:
        with self._lock:
            stored = self._instances.get(instance_id)
            if stored is None:
                raise InstanceNotFoundError(f"Instance {instance_id} not found", details={"instance_id": instance_id})
            return stored.model_copy(deep=True)

    def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        with self._lock:
            stored = self._instances.get(instance.instance_id)
            if stored is None:
                raise InstanceNotFoundError(
                    f"Instance {instance.instance_id} not found",
                    details={"instance_id": instance.instance_id}
                )
            if stored.version != instance.version:
                raise ConcurrencyConflictError(
                    f"Instance {instance.instance_id} was modified. Reload and try again.",
                    details={
                        "instance_id": instance.instance_id,
                        "expected_version": instance.version,
                        "actual_version": stored.version
                    }
                )
            updated = instance.model_copy(deep=True)
            updated.version = instance.version + 1
            updated.updated_at = utc_now()
            self._instances[instance.instance_id] = updated
            return updated.model_copy(deep=True)

    def list_instances(self, status: Optional[InstanceStatus] = None) -> List[WorkflowInstance]:
        with self._lock:
            return [
                i.model_copy(deep=True)
                for i in self._instances.values()
                if status is None or i.status == status
            ]
