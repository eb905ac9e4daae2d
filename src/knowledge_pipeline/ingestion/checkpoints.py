"""Request-local checkpoint log with reverse-order compensation.

Each completed stage of an ingestion request records a checkpoint together
with the action that undoes it. If a later stage fails, :meth:`rollback`
runs the compensations last-first, keeps going past individual failures and
reports whatever could not be undone.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from prometheus_client import Counter

from knowledge_pipeline.core.logging import get_logger
from knowledge_pipeline.utils.retry import RetryConfig, RetryState, call_with_retry

from .errors import CompensationFailure

COMPENSATION_FAILURES = Counter(
    "knowledge_compensation_failures_total",
    "Compensating actions that failed during rollback.",
    ["stage"],
)

Compensation = Callable[[], Awaitable[object]]


class CheckpointStage(str, Enum):
    OBJECT = "object"
    DATABASE = "database"
    VECTOR = "vector"


@dataclass(slots=True, frozen=True)
class OperationCheckpoint:
    stage: CheckpointStage
    data: Mapping[str, str]

    @property
    def target(self) -> str:
        return ",".join(f"{key}={value}" for key, value in self.data.items())


@dataclass(slots=True)
class RollbackReport:
    reason: str
    compensated: list[OperationCheckpoint] = field(default_factory=list)
    failures: list[CompensationFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class CheckpointLog:
    """Ordered checkpoints for a single operation. Never shared across requests."""

    def __init__(self, operation_id: str, *, retry: RetryConfig | None = None) -> None:
        self.operation_id = operation_id
        self._entries: list[tuple[OperationCheckpoint, Compensation | None]] = []
        self._retry = retry or RetryConfig(attempts=3)
        self._log = get_logger(__name__, operation_id=operation_id)

    @property
    def checkpoints(self) -> list[OperationCheckpoint]:
        return [checkpoint for checkpoint, _ in self._entries]

    def record(
        self,
        stage: CheckpointStage,
        data: Mapping[str, str],
        *,
        compensate: Compensation | None = None,
    ) -> OperationCheckpoint:
        """Append a completed stage and the action that reverses it."""

        checkpoint = OperationCheckpoint(stage=stage, data=dict(data))
        self._entries.append((checkpoint, compensate))
        self._log.info("checkpoint.recorded", stage=stage.value, target=checkpoint.target)
        return checkpoint

    def clear(self) -> None:
        """Discard checkpoints after the operation completed."""

        if self._entries:
            self._log.info("checkpoints.cleared", count=len(self._entries))
        self._entries.clear()

    async def rollback(self, reason: str) -> RollbackReport:
        """Undo recorded stages in reverse completion order."""

        report = RollbackReport(reason=reason)
        self._log.warning("rollback.started", reason=reason, stages=len(self._entries))

        while self._entries:
            checkpoint, compensate = self._entries.pop()
            if compensate is None:
                report.compensated.append(checkpoint)
                continue
            try:
                await call_with_retry(
                    compensate,
                    config=self._retry,
                    before_sleep=lambda state, cp=checkpoint: self._before_retry(cp, state),
                )
            except Exception as exc:
                COMPENSATION_FAILURES.labels(checkpoint.stage.value).inc()
                failure = CompensationFailure(
                    stage=checkpoint.stage.value,
                    target=checkpoint.target,
                    error=str(exc) or exc.__class__.__name__,
                )
                report.failures.append(failure)
                self._log.error(
                    "rollback.stage_failed",
                    stage=failure.stage,
                    target=failure.target,
                    error=failure.error,
                )
                continue
            report.compensated.append(checkpoint)
            self._log.info(
                "rollback.stage_compensated",
                stage=checkpoint.stage.value,
                target=checkpoint.target,
            )

        if report.failures:
            self._log.warning(
                "rollback.incomplete; manual reconciliation required",
                reason=reason,
                failures=[f"{item.stage}:{item.target}" for item in report.failures],
            )
        else:
            self._log.info("rollback.completed", reason=reason)
        return report

    def _before_retry(self, checkpoint: OperationCheckpoint, state: RetryState) -> None:
        self._log.warning(
            "rollback.stage_retrying",
            stage=checkpoint.stage.value,
            attempt=state.attempt,
            error=str(state.last_exception),
        )
