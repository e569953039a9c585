"""
Run result for orchestrator entry points.

Every call to Interpreter.execute_run() / resume_run() produces exactly one RunResult,
whatever happened inside the run:
- context is ALWAYS present (the final, or partial, run context)
- status determines interpretation (completed / failed / awaiting_action / cancelled)
- factory methods ensure valid state combinations
- to_response() is the single source of truth for serialisation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .block import REMOVED
from .block_status import RunStatus
from .bookkeeping import Step
from .checkpoint import PausedRun
from .context import RunContext
from .redaction import SecretRedactor

logger = logging.getLogger(__name__)


def jsonable(value: Any) -> Any:  # noqa: ANN401
    """Convert engine values into JSON-compatible data.

    REMOVED markers in deltas become null; unknown objects fall back to str().
    """
    if value is REMOVED:
        return None
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return jsonable(value.model_dump())
    if isinstance(value, dict):
        return {str(key): jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [jsonable(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


@dataclass
class RunResult:
    """
    Terminal output of one orchestrator call.

    Example Usage:
        result = await interpreter.execute_run(config)
        if result.status.is_awaiting_action():
            checkpoint = result.to_checkpoint()
            ...
            resumed = await interpreter.resume_run(
                config, checkpoint.resume_index, checkpoint.restore_context()
            )
    """

    status: RunStatus
    steps: list[Step]
    context: RunContext
    duration_ms: int
    error_message: str | None = None
    resume_index: int | None = None
    paused_block_id: str | None = None
    paused_block_name: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    # Factory Methods

    @staticmethod
    def completed(steps: list[Step], context: RunContext, duration_ms: int) -> RunResult:
        """Create a completed result."""
        return RunResult(RunStatus.COMPLETED, steps, context, duration_ms)

    @staticmethod
    def failed(
        error_message: str, steps: list[Step], context: RunContext, duration_ms: int
    ) -> RunResult:
        """Create a failed result; the partial context and steps are preserved."""
        return RunResult(RunStatus.FAILED, steps, context, duration_ms, error_message)

    @staticmethod
    def cancelled(
        steps: list[Step], context: RunContext, duration_ms: int, reason: str | None = None
    ) -> RunResult:
        """Create a cancelled result; already-completed steps stay intact."""
        message = f"Run cancelled: {reason}" if reason else "Run cancelled"
        return RunResult(RunStatus.CANCELLED, steps, context, duration_ms, message)

    @staticmethod
    def awaiting_action(
        steps: list[Step],
        context: RunContext,
        duration_ms: int,
        resume_index: int,
        paused_block_id: str,
        paused_block_name: str,
    ) -> RunResult:
        """Create a result for a run halted at an interactive block."""
        return RunResult(
            RunStatus.AWAITING_ACTION,
            steps,
            context,
            duration_ms,
            resume_index=resume_index,
            paused_block_id=paused_block_id,
            paused_block_name=paused_block_name,
        )

    # Conversion Methods

    def to_checkpoint(self) -> PausedRun:
        """Serialisable pause state.

        Raises:
            ValueError: If the run is not awaiting action
        """
        if self.status != RunStatus.AWAITING_ACTION or self.resume_index is None:
            raise ValueError(
                f"Only awaiting_action runs can be checkpointed (status: {self.status.value})"
            )
        return PausedRun(
            run_id=self.context.run.id,
            workflow_id=self.context.run.workflow_id,
            resume_index=self.resume_index,
            paused_block_id=self.paused_block_id,
            paused_block_name=self.paused_block_name,
            context=jsonable(self.context.model_dump()),
            steps=[jsonable(step.model_dump()) for step in self.steps],
        )

    def to_response(
        self, redactor: SecretRedactor | None = None, include_context: bool = True
    ) -> dict[str, Any]:
        """
        Format the result as a JSON-ready dict.

        Secret values from the run's own context are always redacted; pass a redactor
        to mask additional values.

        Examples:
            {"status": "completed", "duration_ms": 12, "steps": [...], "state": {...}}
            {"status": "failed", "error": "Block \"fetch\" failed: ...", ...}
            {"status": "awaiting_action", "resume_index": 1, "paused_block": "approve", ...}
        """
        response: dict[str, Any] = {
            "status": self.status.value,
            "run_id": self.context.run.id,
            "duration_ms": self.duration_ms,
            "steps": [step.model_dump() for step in self.steps],
        }

        if self.error_message:
            response["error"] = self.error_message

        if self.status == RunStatus.AWAITING_ACTION:
            response["resume_index"] = self.resume_index
            response["paused_block"] = self.paused_block_name

        if include_context:
            response["state"] = self.context.state
            response["cache"] = self.context.cache
            response["event"] = self.context.event

        response = jsonable(response)
        response = SecretRedactor(self.context.secrets).redact(response)
        if redactor is not None:
            response = redactor.redact(response)
        return response
