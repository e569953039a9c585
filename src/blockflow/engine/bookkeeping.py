"""Run bookkeeping: step records, context deltas and their application.

Steps are append-only audit records owned by the RunBookkeeper; the orchestrator
reads them (as copies) to build the final RunResult.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .block import REMOVED, Block, BlockResult
from .block_status import StepStatus
from .context import RunContext, utc_now_iso


class StepError(BaseModel):
    """Failure captured on a step; also backs the `$error` reference."""

    message: str
    block_id: str
    block_name: str
    details: dict[str, Any] | None = None


class Step(BaseModel):
    """Audit record of one block's execution attempt."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    step_id: str = Field(default_factory=lambda: f"step_{uuid.uuid4().hex[:12]}")
    block_id: str
    block_name: str
    block_type: str
    block_order: int
    execution_order: int
    status: StepStatus = StepStatus.RUNNING
    logic: dict[str, Any] = Field(default_factory=dict)
    started_at: str = Field(default_factory=utc_now_iso)
    ended_at: str | None = None
    state_delta: dict[str, Any] | None = None
    cache_delta: dict[str, Any] | None = None
    event_delta: dict[str, Any] | None = None
    is_deferred: bool = False
    iteration_id: str | None = None
    error: StepError | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


def _differs(before: Any, after: Any) -> bool:
    if type(before) is not type(after):
        return True
    return bool(before != after)


def calculate_delta(before: Mapping[str, Any], after: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow key-wise difference from `before` to `after`.

    New or changed keys map to their `after` value; keys missing from `after` map to
    REMOVED. Not symmetric: calculate_delta(a, b) describes how to turn a into b.
    """
    delta: dict[str, Any] = {}
    for key, value in after.items():
        if key not in before or _differs(before[key], value):
            delta[key] = value
    for key in before:
        if key not in after:
            delta[key] = REMOVED
    return delta


def merge_delta(target: dict[str, Any], delta: Mapping[str, Any] | None) -> None:
    """Merge a delta into `target` in place; REMOVED deletes the key."""
    if not delta:
        return
    for key, value in delta.items():
        if value is REMOVED:
            target.pop(key, None)
        else:
            target[key] = value


class RunBookkeeper:
    """Creates and finalises steps for one run.

    The execution-order counter is monotonic across normal and deferred steps and
    doubles as the run's executed-step count for the step budget.
    """

    def __init__(self) -> None:
        self._steps: list[Step] = []
        self._execution_counter = 0

    def create_step(self, block: Block) -> Step:
        """Append a running step for `block`."""
        step = Step(
            block_id=block.id,
            block_name=block.name,
            block_type=block.type,
            block_order=block.order,
            execution_order=self._execution_counter,
            logic=copy.deepcopy(block.logic),
        )
        self._execution_counter += 1
        self._steps.append(step)
        return step

    def create_deferred_step(self, block: Block, iteration_id: str) -> Step:
        """Append a running step flagged as produced by a deferred jump."""
        step = self.create_step(block)
        step.is_deferred = True
        step.iteration_id = iteration_id
        return step

    def complete_step(
        self,
        step: Step,
        result: BlockResult | None = None,
        state_delta: dict[str, Any] | None = None,
    ) -> None:
        """Mark `step` completed and record its deltas.

        `state_delta`, when given, overrides the declared one (the orchestrator passes
        the state change it actually observed).
        """
        result = result or BlockResult()
        step.status = StepStatus.COMPLETED
        step.ended_at = utc_now_iso()
        step.state_delta = state_delta if state_delta is not None else result.state_delta
        step.cache_delta = result.cache_delta
        step.event_delta = result.event_delta
        if result.meta:
            step.meta.update(result.meta)

    def fail_step(self, step: Step, error: StepError) -> None:
        """Mark `step` failed with `error`."""
        step.status = StepStatus.FAILED
        step.ended_at = utc_now_iso()
        step.error = error

    def skip_step(self, step: Step) -> None:
        """Mark `step` skipped (guard evaluated false)."""
        step.status = StepStatus.SKIPPED
        step.ended_at = utc_now_iso()

    calculate_delta = staticmethod(calculate_delta)

    @staticmethod
    def apply_deltas(context: RunContext, result: BlockResult) -> None:
        """Merge the result's deltas into the context's state, cache and event."""
        merge_delta(context.state, result.state_delta)
        merge_delta(context.cache, result.cache_delta)
        merge_delta(context.event, result.event_delta)

    def get_steps(self) -> list[Step]:
        """Copies of all steps, in creation order."""
        return [step.model_copy(deep=True) for step in self._steps]

    def get_execution_count(self) -> int:
        """Number of steps created so far."""
        return self._execution_counter
