"""Sequential step runner.

Runs each step in order and is the one place that tells a skipped step
(missing configuration entry) apart from a failed one. The first failure
stops the run: later steps may depend on earlier ones having succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .loader import StepSkipped
from .reconcilers import SyncSummary
from .steps import Step, StepContext

logger = logging.getLogger(__name__)


class StepOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepResult:
    """Result of a single step."""

    name: str
    outcome: StepOutcome
    reason: str | None = None
    error: Exception | None = None
    summary: SyncSummary | None = None


@dataclass
class PipelineResult:
    """Result of a full run."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    steps: list[StepResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(s.outcome != StepOutcome.FAILED for s in self.steps)

    @property
    def failed_step(self) -> StepResult | None:
        for step in self.steps:
            if step.outcome == StepOutcome.FAILED:
                return step
        return None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def count(self, outcome: StepOutcome) -> int:
        return sum(1 for s in self.steps if s.outcome == outcome)


async def run_step(step: Step, ctx: StepContext) -> StepResult:
    """Run one step and classify its outcome. Never raises for step errors."""
    logger.info("Running step", extra={"step": step.name})

    try:
        summary = await step.fn(ctx)
    except StepSkipped as e:
        logger.info("Step skipped", extra={"step": step.name, "reason": str(e)})
        return StepResult(name=step.name, outcome=StepOutcome.SKIPPED, reason=str(e))
    except Exception as e:
        logger.error(
            "Error syncing cluster state",
            extra={"step": step.name, "error": str(e), "error_type": type(e).__name__},
        )
        return StepResult(name=step.name, outcome=StepOutcome.FAILED, error=e)

    extra: dict[str, object] = {"step": step.name}
    if summary is not None:
        extra.update(summary.as_log_fields())
    logger.info("Step completed", extra=extra)
    return StepResult(name=step.name, outcome=StepOutcome.SUCCEEDED, summary=summary)


async def run_pipeline(steps: Sequence[Step], ctx: StepContext) -> PipelineResult:
    """Run steps in order, stopping at the first failure."""
    result = PipelineResult()

    for step in steps:
        step_result = await run_step(step, ctx)
        result.steps.append(step_result)
        if step_result.outcome == StepOutcome.FAILED:
            break

    result.end_time = datetime.now(UTC)

    logger.info(
        "Configuration run finished",
        extra={
            "success": result.success,
            "succeeded": result.count(StepOutcome.SUCCEEDED),
            "skipped": result.count(StepOutcome.SKIPPED),
            "failed": result.count(StepOutcome.FAILED),
            "duration_seconds": result.duration_seconds,
        },
    )
    return result
