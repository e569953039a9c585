"""Pause/resume state for runs halted at an interactive block.

A PausedRun is the serialisable form of an awaiting_action RunResult: the run context
(minus the key-resolver capability, which the caller re-supplies), the recorded steps
and the index to resume from. Only this single resume point is supported.
"""

from typing import Any

from pydantic import BaseModel, Field

from .context import RunContext, utc_now_iso


class PausedRun(BaseModel):
    """JSON-serialisable snapshot of a paused run.

    Attributes:
        run_id: Identifier of the paused run
        workflow_id: Workflow the run belongs to
        resume_index: Block index the orchestrator resumes from
        paused_block_id: Id of the interactive block that paused the run
        paused_block_name: Name of that block
        paused_at: ISO timestamp of the pause
        context: RunContext dump (JSON mode)
        steps: Step dumps recorded before the pause
    """

    run_id: str
    workflow_id: str
    resume_index: int
    paused_block_id: str | None = None
    paused_block_name: str | None = None
    paused_at: str = Field(default_factory=utc_now_iso)
    context: dict[str, Any]
    steps: list[dict[str, Any]] = Field(default_factory=list)

    def restore_context(self, key_resolver: Any = None) -> RunContext:
        """Rebuild the RunContext to hand to Interpreter.resume_run()."""
        context = RunContext.model_validate(self.context)
        context.key_resolver = key_resolver
        return context
