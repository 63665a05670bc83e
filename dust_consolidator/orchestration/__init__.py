"""Job orchestration: the per-job state machine and its compensating saga."""

from dust_consolidator.orchestration.orchestrator import JobOrchestrator
from dust_consolidator.orchestration.saga import CompensationFailedError, Saga, SagaStep

__all__ = ["CompensationFailedError", "JobOrchestrator", "Saga", "SagaStep"]
