import logging
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class SagaError(Exception):
    """A saga step failed; compensations for earlier steps have already run."""

    def __init__(self, saga: str, step: str, cause: Exception):
        self.saga = saga
        self.step = step
        self.cause = cause
        super().__init__(str(cause))


class Saga:
    """
    Explicit record of a multi-step workflow that spans systems with no shared
    transaction (object storage, database, AI gateway).

    Each ``step`` may register a compensation. When a later step fails, the
    registered compensations run newest first and the failure is re-raised as
    ``SagaError``. A failing compensation is logged and the saga ends in
    ``compensation_failed``. ``best_effort`` steps never fail the saga; their
    errors are kept in ``skipped``.
    """

    def __init__(self, name: str):
        self.name = name
        self.state = "running"
        self.steps: List[str] = []
        self.skipped: List[dict] = []
        self.failed_step: Optional[str] = None
        self._compensations: List[Tuple[str, Callable[[], Any]]] = []

    def step(self, name: str, action: Callable[[], Any], compensate: Optional[Callable[[], Any]] = None):
        try:
            result = action()
        except Exception as e:
            logger.error("Saga %s failed at step %s: %s", self.name, name, e)
            self.failed_step = name
            self._rollback()
            raise SagaError(self.name, name, e) from e

        self.steps.append(name)
        if compensate is not None:
            self._compensations.append((name, compensate))
        return result

    def best_effort(self, name: str, action: Callable[[], Any]):
        try:
            result = action()
        except Exception as e:
            logger.warning("Saga %s skipped step %s: %s", self.name, name, e)
            self.skipped.append({"step": name, "error": str(e)})
            return None
        self.steps.append(name)
        return result

    def complete(self):
        self.state = "completed"
        self._compensations.clear()

    def _rollback(self):
        self.state = "compensated"
        while self._compensations:
            name, compensate = self._compensations.pop()
            try:
                compensate()
            except Exception as e:
                logger.error("Saga %s could not compensate step %s: %s", self.name, name, e)
                self.state = "compensation_failed"

    def summary(self) -> dict:
        return {
            "name": self.name,
            "state": self.state,
            "steps": list(self.steps),
            "failed_step": self.failed_step,
            "skipped": list(self.skipped),
        }
