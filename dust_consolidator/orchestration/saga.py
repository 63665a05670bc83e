"""Compensating saga for multi-step custody operations.

Implements the Saga Compensation Pattern for swap execution:
- Steps run sequentially against a shared state dict
- Completed steps are tracked for rollback
- On failure, completed steps are compensated in reverse order and the
  original error is re-raised

Unlike a pipeline that can return a partial result, a custody operation is
all-or-nothing: a half-executed swap is never a usable outcome.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from dust_consolidator.core.logging import get_logger


logger = get_logger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class CompensationFailedError(Exception):
    """Raised when a compensation step itself fails.

    Attributes:
        step_name: Step whose compensation failed.
        original: The error that triggered compensation.
    """

    def __init__(self, step_name: str, original: BaseException, cause: BaseException) -> None:
        super().__init__(
            f"Compensation of step '{step_name}' failed ({cause}) "
            f"while handling: {original}"
        )
        self.step_name = step_name
        self.original = original


# =============================================================================
# Data Structures
# =============================================================================

StepFn = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class SagaStep:
    """A step in the saga.

    Attributes:
        name: Human-readable step name (e.g., "snapshot", "dispatch").
        invoke: Async function executing the step; its result is stored in
            state under ``name``.
        compensate: Optional async function undoing the step.
    """

    name: str
    invoke: StepFn
    compensate: StepFn | None = None


@dataclass
class CompletedStep:
    """Record of a completed step and its result."""

    step: SagaStep
    result: Any


# =============================================================================
# Saga Implementation
# =============================================================================


class Saga:
    """All-or-nothing step sequence with reverse-order compensation.

    Example:
        saga = Saga("swap")
        saga.add_step(SagaStep("snapshot", take_snapshot, compensate=revert))
        saga.add_step(SagaStep("dispatch", dispatch))
        saga.add_step(SagaStep("verify", check_floor))
        state = await saga.execute({"job_id": job_id})
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.steps: list[SagaStep] = []
        self.completed_steps: list[CompletedStep] = []

    def add_step(self, step: SagaStep) -> Saga:
        """Append a step; returns self for chaining."""
        self.steps.append(step)
        return self

    async def execute(self, state: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run every step, compensating on the first failure.

        Args:
            state: Initial shared state.

        Returns:
            Final state with each step's result stored under its name.

        Raises:
            Exception: The error raised by the failing step, after
                compensation has run.
            CompensationFailedError: If undoing a completed step fails.
        """
        state = dict(state or {})
        self.completed_steps = []

        for step in self.steps:
            try:
                result = await step.invoke(state)
            except Exception as e:
                logger.warning(
                    "Saga step failed, compensating",
                    saga=self.name,
                    step=step.name,
                    completed=[c.step.name for c in self.completed_steps],
                    error=str(e),
                )
                await self._compensate(state, e)
                raise
            state[step.name] = result
            self.completed_steps.append(CompletedStep(step=step, result=result))

        return state

    async def _compensate(self, state: dict[str, Any], error: Exception) -> None:
        for completed in reversed(self.completed_steps):
            if completed.step.compensate is None:
                continue
            try:
                await completed.step.compensate(state)
            except Exception as e:
                logger.error(
                    "Saga compensation failed",
                    saga=self.name,
                    step=completed.step.name,
                    error=str(e),
                )
                raise CompensationFailedError(completed.step.name, error, e) from e
