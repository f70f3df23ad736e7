"""Mongo State Store - Durable instance persistence on MongoDB"""
from typing import Any, Dict, List, Optional
from pymongo import ASCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from ..config.settings import EngineSettings, get_settings
from ..domain.enums import InstanceStatus
from ..domain.errors import AlreadyExistsError, ConcurrencyConflictError, InstanceNotFoundError
from ..domain.models import WorkflowInstance
from ..utils.time import utc_now
from ..utils.logger import get_logger
from .mongo_client import get_collection
from .state_store import StateStore

logger = get_logger(__name__)


class MongoStateStore(StateStore):
    """
    StateStore backed by a MongoDB collection

    The version check-and-increment is a single find_one_and_update whose
    filter includes the expected version, so it is atomic on the server and
    safe across runner processes.
    """

    def __init__(self, collection: Optional[Collection] = None, settings: Optional[EngineSettings] = None):
        if collection is None:
            settings = settings or get_settings()
            collection = get_collection(settings.mongo_instances_collection, settings)
        self._instances: Collection = collection

    def ensure_indexes(self) -> None:
        """Create indexes used by the store"""
        self._instances.create_index([("instance_id", ASCENDING)], unique=True)
        self._instances.create_index([("status", ASCENDING), ("updated_at", ASCENDING)])

    def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        # Don't use mode="json" - datetimes stay native for MongoDB sorting
        doc = instance.model_dump()
        doc["_id"] = instance.instance_id

        try:
            self._instances.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(
                f"Instance {instance.instance_id} already exists",
                details={"instance_id": instance.instance_id}
            )
        logger.info(f"Created instance: {instance.instance_id}", extra={"instance_id": instance.instance_id})
        return instance.model_copy(deep=True)

    def load(self, instance_id: str) -> WorkflowInstance:
        doc = self._instances.find_one({"instance_id": instance_id})
        if not doc:
            raise InstanceNotFoundError(f"Instance {instance_id} not found", details={"instance_id": instance_id})
        return self._to_instance(doc)

    def save(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Update instance with optimistic concurrency"""
        expected_version = instance.version
        updates = instance.model_dump(exclude={"instance_id", "created_at"})
        updates["version"] = expected_version + 1
        updates["updated_at"] = utc_now()

        result = self._instances.find_one_and_update(
            {"instance_id": instance.instance_id, "version": expected_version},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            exists = self._instances.find_one({"instance_id": instance.instance_id}, {"version": 1})
            if exists:
                raise ConcurrencyConflictError(
                    f"Instance {instance.instance_id} was modified. Reload and try again.",
                    details={
                        "instance_id": instance.instance_id,
                        "expected_version": expected_version,
                        "actual_version": exists.get("version")
                    }
                )
            raise InstanceNotFoundError(
                f"Instance {instance.instance_id} not found",
                details={"instance_id": instance.instance_id}
            )

        logger.debug(
            f"Saved instance: {instance.instance_id} v{updates['version']}",
            extra={"instance_id": instance.instance_id, "status": instance.status.value}
        )
        return self._to_instance(result)

    def list_instances(self, status: Optional[InstanceStatus] = None) -> List[WorkflowInstance]:
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = status.value
        cursor = self._instances.find(query).sort("updated_at", ASCENDING)
        return [self._to_instance(doc) for doc in cursor]

    def _to_instance(self, doc: Dict[str, Any]) -> WorkflowInstance:
        doc = dict(doc)
        doc.pop("_id", None)
        return WorkflowInstance.model_validate(doc)
