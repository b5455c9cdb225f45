"""
Sequential saga with compensating actions.

    saga = Saga('sale')
    saga.step('create_order', create_order, compensate=delete_order)
    saga.step('track_combo_items', track, compensate=untrack, soft=True,
              on_soft_failure=enqueue_retry)
    result = saga.run(context)

Every action receives the shared context dict and its return value is stored
under the step name. When a hard step raises, the compensators recorded so far
run in reverse order with the value their step produced, and SagaError is
raised. A soft step that raises is reported to on_soft_failure, recorded as a
warning and the saga goes on.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SagaStep:
    __slots__ = ('name', 'action', 'compensate', 'soft', 'on_soft_failure')

    def __init__(self, name: str, action: Callable[[Dict[str, Any]], Any],
                 compensate: Optional[Callable[[Any, Dict[str, Any]], None]] = None,
                 soft: bool = False,
                 on_soft_failure: Optional[Callable[[Dict[str, Any], Exception], None]] = None):
        self.name = name
        self.action = action
        self.compensate = compensate
        self.soft = soft
        self.on_soft_failure = on_soft_failure

    def __repr__(self):
        return f"<SagaStep(name='{self.name}', soft={self.soft})>"


class SagaResult:
    """Outcome of a saga that reached its last step."""

    def __init__(self, context: Dict[str, Any], steps_executed: int, warnings: List[Dict[str, Any]]):
        self.context = context
        self.steps_executed = steps_executed
        self.warnings = warnings

    def __getitem__(self, name):
        return self.context.get(name)


class SagaError(Exception):
    """A hard step failed; compensations already ran."""

    def __init__(self, step: str, error: Exception, compensators_run: int = 0,
                 compensators_failed: int = 0, failed_compensations: Optional[List[str]] = None):
        self.step = step
        self.error = error
        self.compensators_run = compensators_run
        self.compensators_failed = compensators_failed
        self.failed_compensations = failed_compensations or []
        super().__init__(f"Saga step '{step}' failed: {error}")

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0


class Saga:

    def __init__(self, name: str, on_compensation: Optional[Callable[[str, bool], None]] = None):
        """
        Args:
            name: used in log lines
            on_compensation: called with (step name, succeeded) after each
                compensator, e.g. to count them
        """
        self.name = name
        self.steps: List[SagaStep] = []
        self.on_compensation = on_compensation

    def step(self, name: str, action, compensate=None, soft: bool = False, on_soft_failure=None) -> 'Saga':
        self.steps.append(SagaStep(name, action, compensate, soft, on_soft_failure))
        return self

    def _compensate(self, recorded, context) -> tuple:
        """Run compensators in reverse. Returns (run, failed, failed step names)."""
        comp_run = 0
        failed = []
        for step, value in reversed(recorded):
            try:
                step.compensate(value, context)
                comp_run += 1
                succeeded = True
                logger.info(f"[SAGA] {self.name}: compensated '{step.name}'")
            except Exception as e:
                failed.append(step.name)
                succeeded = False
                logger.exception(f"[SAGA] {self.name}: compensation of '{step.name}' failed: {e}")
            if self.on_compensation:
                self.on_compensation(step.name, succeeded)
        return comp_run, len(failed), failed

    def run(self, context: Optional[Dict[str, Any]] = None) -> SagaResult:
        context = context if context is not None else {}
        recorded = []
        warnings = []
        executed = 0

        for step in self.steps:
            try:
                value = step.action(context)
            except Exception as e:
                if step.soft:
                    logger.warning(f"[SAGA] {self.name}: soft step '{step.name}' failed: {e}")
                    context[step.name] = None
                    warnings.append({'step': step.name, 'message': str(e)})
                    if step.on_soft_failure:
                        step.on_soft_failure(context, e)
                    continue

                logger.error(f"[SAGA] {self.name}: step '{step.name}' failed: {e}")
                comp_run, comp_failed, failed_names = self._compensate(recorded, context)
                raise SagaError(step.name, e, comp_run, comp_failed, failed_names) from e

            executed += 1
            context[step.name] = value
            if step.compensate is not None:
                recorded.append((step, value))

        return SagaResult(context, executed, warnings)
