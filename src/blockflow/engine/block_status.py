"""Run and step lifecycle enums."""

from enum import Enum


class RunStatus(str, Enum):
    """
    Lifecycle states of a run.

    A run starts RUNNING and ends in exactly one terminal state.
    AWAITING_ACTION is terminal for the current call only: the caller resumes it.
    """

    PENDING = "pending"
    """Created but not started."""

    RUNNING = "running"
    """Orchestrator loop is active."""

    COMPLETED = "completed"
    """Every block was executed, skipped or jumped over."""

    FAILED = "failed"
    """Aborted by a block failure, misconfiguration or a resource limit."""

    AWAITING_ACTION = "awaiting_action"
    """Halted at an interactive block; resume from the recorded index."""

    CANCELLED = "cancelled"
    """Stopped between blocks by an external cancellation signal."""

    def is_terminal(self) -> bool:
        """Check if the run will not make further progress in this call."""
        return self not in (RunStatus.PENDING, RunStatus.RUNNING)

    def is_completed(self) -> bool:
        """Check if the run completed."""
        return self == RunStatus.COMPLETED

    def is_failed(self) -> bool:
        """Check if the run failed."""
        return self == RunStatus.FAILED

    def is_awaiting_action(self) -> bool:
        """Check if the run is paused at an interactive block."""
        return self == RunStatus.AWAITING_ACTION

    def is_cancelled(self) -> bool:
        """Check if the run was cancelled."""
        return self == RunStatus.CANCELLED


class StepStatus(str, Enum):
    """
    Per-block execution record states.

    Steps move RUNNING -> COMPLETED | FAILED | SKIPPED. Deferred execution is a flag
    on the step (see Step.is_deferred), not a separate status.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    def is_completed(self) -> bool:
        """Check if step completed."""
        return self == StepStatus.COMPLETED

    def is_failed(self) -> bool:
        """Check if step failed."""
        return self == StepStatus.FAILED

    def is_skipped(self) -> bool:
        """Check if step was skipped."""
        return self == StepStatus.SKIPPED


class ErrorStrategy(str, Enum):
    """What the orchestrator does after a block's handler fails."""

    ABORT = "abort"
    """Fail the whole run (default)."""

    CONTINUE = "continue"
    """Record the failed step and advance as if it had completed."""
