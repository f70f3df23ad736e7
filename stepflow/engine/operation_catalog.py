"""Operation Catalog - (key, version) -> handler arena and the invoker contract"""
import threading
from typing import Any, Callable, Dict, List, Protocol, Tuple, runtime_checkable

from ..domain.errors import AlreadyExistsError, OperationError, OperationNotFoundError
from ..domain.models import InvocationContext, OperationRef
from ..utils.logger import get_logger

logger = get_logger(__name__)

OperationHandler = Callable[[Dict[str, Any], InvocationContext], Any]


@runtime_checkable
class OperationInvoker(Protocol):
    """
    Contract the engine requires from whatever executes operations

    Transport, authentication and operation resolution are the
    implementer's concern. Raise OperationError on failure; set
    retryable=False for failures that must not be retried.
    """

    def invoke(
        self,
        operation_key: str,
        operation_version: str,
        input: Dict[str, Any],
        context: InvocationContext
    ) -> Any:
        ...


class OperationCatalog:
    """
    In-process catalogue of operation handlers

    Serves both as the reference list the registry validates step actions
    against and as an OperationInvoker that dispatches to the handlers.
    """

    def __init__(self):
        self._handlers: Dict[Tuple[str, str], OperationHandler] = {}
        self._lock = threading.Lock()

    def register(self, operation_key: str, operation_version: str, handler: OperationHandler) -> None:
        """Register a handler for (key, version)"""
        key = (operation_key, str(operation_version))
        with self._lock:
            if key in self._handlers:
                raise AlreadyExistsError(
                    f"Operation {operation_key}@{operation_version} already registered",
                    details={"operation_key": operation_key, "operation_version": str(operation_version)}
                )
            self._handlers[key] = handler
        logger.debug(f"Registered operation {operation_key}@{operation_version}", extra={"operation_key": operation_key})

    def contains(self, ref: OperationRef) -> bool:
        return (ref.operation_key, ref.operation_version) in self._handlers

    def get(self, operation_key: str, operation_version: str) -> OperationHandler:
        """Get handler or raise OperationNotFoundError"""
        handler = self._handlers.get((operation_key, str(operation_version)))
        if handler is None:
            raise OperationNotFoundError(
                f"Operation {operation_key}@{operation_version} not found",
                details={"operation_key": operation_key, "operation_version": str(operation_version)}
            )
        return handler

    def list(self) -> List[Tuple[str, str]]:
        return list(self._handlers.keys())

    def invoke(
        self,
        operation_key: str,
        operation_version: str,
        input: Dict[str, Any],
        context: InvocationContext
    ) -> Any:
        try:
            handler = self.get(operation_key, operation_version)
        except OperationNotFoundError as e:
            raise OperationError(e.message, retryable=False, details=e.details) from e
        return handler(input, context)
