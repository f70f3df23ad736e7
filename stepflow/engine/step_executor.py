"""Step Executor - Run a single automation or human step"""
import copy
import random
import threading
import time
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from typing import Any, Callable, Dict, Optional, Set

from ..config.settings import EngineSettings, get_settings
from ..domain.enums import StepOutcome, StepType
from ..domain.errors import GuardRejectedError, OperationError, StepExecutionError
from ..domain.models import (
    ErrorInfo, InvocationContext, RetryPolicy, Step, StepResult, WorkflowDefinition, WorkflowInstance
)
from .condition_evaluator import ConditionEvaluator
from .operation_catalog import OperationInvoker
from .transition_resolver import build_guard_context
from ..utils.time import elapsed_ms, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


def build_operation_input(instance: WorkflowInstance) -> Dict[str, Any]:
    """Operation input: the instance input plus every recorded step output"""
    return {
        "input": copy.deepcopy(instance.input),
        "steps": copy.deepcopy(instance.step_outputs),
    }


class StepExecutor:
    """
    Execute the current step of an instance

    Each automation call runs on its own daemon worker thread, so the
    per-step timeout only measures the invocation itself and a hung call
    never delays other instances. A timed-out worker cannot be interrupted:
    it is abandoned and its late result discarded. Transient failures
    (retryable OperationError, timeouts) are retried with exponential
    backoff and jitter; anything else fails the step at once.

    Human steps never invoke anything: they report WAITING until a decision
    is recorded in step_outputs, then SUCCESS with the decision as output.
    """

    def __init__(
        self,
        invoker: OperationInvoker,
        settings: Optional[EngineSettings] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None
    ):
        self.invoker = invoker
        self.settings = settings or get_settings()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.default_retry_policy = RetryPolicy.from_settings(self.settings)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._workers: Set[threading.Thread] = set()
        self._workers_lock = threading.Lock()

    def execute(self, definition: WorkflowDefinition, instance: WorkflowInstance, step: Step) -> StepResult:
        open_entry = instance.open_history_entry(step.id)
        entered_at = open_entry.entered_at if open_entry else utc_now()

        # Guard only applies when the step is first entered
        if open_entry is None and step.guard is not None:
            if not self.condition_evaluator.evaluate(step.guard, build_guard_context(instance)):
                error = GuardRejectedError(
                    f"Guard rejected entry into step {step.id}",
                    details={"step_id": step.id, "guard": step.guard.raw}
                )
                logger.warning(error.message, extra={"instance_id": instance.instance_id, "step_id": step.id})
                return StepResult(
                    step_id=step.id,
                    outcome=StepOutcome.FAILED,
                    error=ErrorInfo.from_exception(error),
                    entered_at=entered_at,
                    exited_at=utc_now()
                )

        if step.type == StepType.HUMAN:
            return self._execute_human(instance, step, entered_at)
        return self._execute_automation(definition, instance, step, entered_at)

    # =========================================================================
    # Human steps
    # =========================================================================

    def _execute_human(self, instance: WorkflowInstance, step: Step, entered_at) -> StepResult:
        if step.id in instance.step_outputs:
            return StepResult(
                step_id=step.id,
                outcome=StepOutcome.SUCCESS,
                output=instance.step_outputs[step.id],
                entered_at=entered_at,
                exited_at=utc_now()
            )

        logger.info(
            f"Step {step.id} waiting for human decision",
            extra={"instance_id": instance.instance_id, "step_id": step.id}
        )
        return StepResult(step_id=step.id, outcome=StepOutcome.WAITING, entered_at=entered_at)

    # =========================================================================
    # Automation steps
    # =========================================================================

    def _execute_automation(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        step: Step,
        entered_at
    ) -> StepResult:
        policy = step.retry or self.default_retry_policy
        timeout = step.timeout_seconds or self.settings.step_timeout_seconds
        action = step.action
        operation_input = build_operation_input(instance)
        log_extra = {"instance_id": instance.instance_id, "step_id": step.id, "operation_key": action.operation_key}

        last_error: Optional[BaseException] = None
        attempt = 0

        while attempt < policy.max_attempts:
            attempt += 1
            context = InvocationContext(
                instance_id=instance.instance_id,
                definition_key=definition.key,
                definition_version=definition.version,
                step_id=step.id,
                attempt=attempt
            )
            try:
                output = self._invoke_with_timeout(action.operation_key, action.operation_version,
                                                   operation_input, context, timeout)
                exited_at = utc_now()
                logger.info(
                    f"Step {step.id} succeeded in {elapsed_ms(entered_at, exited_at)}ms",
                    extra={**log_extra, "attempt": attempt}
                )
                return StepResult(
                    step_id=step.id,
                    outcome=StepOutcome.SUCCESS,
                    output=output,
                    entered_at=entered_at,
                    exited_at=exited_at,
                    attempts=attempt
                )
            except OperationError as e:
                last_error = e
                if not e.retryable:
                    break
            except TimeoutError as e:
                # Raised by the invoker itself, e.g. a socket timeout
                last_error = OperationError(
                    f"Operation {action.ref} timed out: {e}",
                    retryable=True,
                    error_code="OPERATION_TIMEOUT"
                )
            except Exception as e:
                logger.error(f"Operation {action.ref} raised unexpectedly: {e}", exc_info=True, extra=log_extra)
                last_error = e
                break

            if attempt < policy.max_attempts:
                delay = self.backoff_delay(policy, attempt)
                logger.info(
                    f"Step {step.id} retry {attempt}/{policy.max_attempts - 1} in {delay:.2f}s: {last_error}",
                    extra={**log_extra, "attempt": attempt}
                )
                self._sleep(delay)

        error = StepExecutionError(
            f"Step {step.id} failed after {attempt} attempt(s): {last_error}",
            details={
                "step_id": step.id,
                "operation": action.ref,
                "attempts": attempt,
                "cause": ErrorInfo.from_exception(last_error).model_dump(),
            }
        )
        logger.warning(error.message, extra={**log_extra, "attempt": attempt})
        return StepResult(
            step_id=step.id,
            outcome=StepOutcome.FAILED,
            error=ErrorInfo.from_exception(error),
            entered_at=entered_at,
            exited_at=utc_now(),
            attempts=attempt
        )

    def _invoke_with_timeout(
        self,
        operation_key: str,
        operation_version: str,
        operation_input: Dict[str, Any],
        context: InvocationContext,
        timeout: float
    ) -> Any:
        """
        Run one invocation on a dedicated worker thread

        The clock starts when the worker starts, so no attempt is charged for
        time it did not get to run.

        Raises:
            OperationError: OPERATION_TIMEOUT if the call outlives the timeout;
                otherwise whatever the invoker raised
        """
        future: Future = Future()
        started = threading.Event()

        def _run() -> None:
            started.set()
            result: Any = None
            error: Optional[BaseException] = None
            try:
                result = self.invoker.invoke(operation_key, operation_version, operation_input, context)
            except BaseException as e:
                error = e
            # Leave the in-flight set before the caller can observe completion
            with self._workers_lock:
                self._workers.discard(threading.current_thread())
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        worker = threading.Thread(
            target=_run,
            name=f"stepflow-invoke-{context.instance_id}-{context.step_id}-{context.attempt}",
            daemon=True
        )
        with self._workers_lock:
            self._workers.add(worker)
        worker.start()
        started.wait()

        done, _ = wait_futures([future], timeout=timeout)
        if not done:
            logger.warning(
                f"Operation {operation_key}@{operation_version} still running after {timeout}s; abandoning worker",
                extra={"instance_id": context.instance_id, "step_id": context.step_id,
                       "attempt": context.attempt, "operation_key": operation_key}
            )
            raise OperationError(
                f"Operation {operation_key}@{operation_version} timed out after {timeout}s",
                retryable=True,
                error_code="OPERATION_TIMEOUT",
                details={"timeout_seconds": timeout}
            )
        return future.result()

    def backoff_delay(self, policy: RetryPolicy, attempt: int) -> float:
        """Exponential backoff capped at max_delay, randomised by +/- jitter"""
        delay = min(policy.max_delay_seconds, policy.base_delay_seconds * (2 ** (attempt - 1)))
        spread = delay * policy.jitter
        return max(0.0, delay + self._rng.uniform(-spread, spread))

    def in_flight(self) -> int:
        """Number of invocation workers still running, abandoned ones included"""
        with self._workers_lock:
            return len(self._workers)

    def close(self, timeout: float = 0.0) -> int:
        """
        Wait up to `timeout` seconds for in-flight invocation workers

        Workers are daemon threads, so any still running do not block
        interpreter exit.

        Returns:
            Number of workers still running afterwards
        """
        with self._workers_lock:
            workers = list(self._workers)
        deadline = time.monotonic() + timeout
        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        still_running = self.in_flight()
        if still_running:
            logger.warning(f"{still_running} operation invocation(s) still running at close")
        return still_running
