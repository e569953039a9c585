"""Run execution exceptions.

Configuration errors (unknown block type, broken goto) and resource-limit errors are
always fatal to a run. The orchestrator is the only place that converts them into a
failed RunResult.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .block import Block


class UnknownBlockTypeError(Exception):
    """
    No handler is registered for a block's type.

    Attributes:
        block_type: The unregistered type identifier
        available: Types that do have handlers
    """

    def __init__(self, block_type: str, available: list[str] | None = None):
        self.block_type = block_type
        self.available = available or []

        message = (
            f'No handler registered for block type "{block_type}". '
            f'Register one via dispatcher.register_handler("{block_type}", handler).'
        )
        if self.available:
            message += f" Available: {sorted(self.available)}"
        super().__init__(message)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"UnknownBlockTypeError(block_type={self.block_type!r})"


class BlockConfigurationError(Exception):
    """A block's logic failed validation against its handler's configuration model."""

    def __init__(self, block_type: str, block_name: str, detail: str):
        self.block_type = block_type
        self.block_name = block_name
        self.detail = detail
        super().__init__(f'Invalid configuration for {block_type} block "{block_name}": {detail}')

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"BlockConfigurationError(type={self.block_type!r}, block={self.block_name!r})"


class GotoError(Exception):
    """Base class for misconfigured jump blocks."""

    def __init__(self, block_name: str, message: str):
        self.block_name = block_name
        super().__init__(message)


class MissingGotoTargetError(GotoError):
    """Jump block declares no goto_target."""

    def __init__(self, block_name: str):
        super().__init__(block_name, f'Goto block "{block_name}" is missing goto_target in logic.')

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"MissingGotoTargetError(block={self.block_name!r})"


class UnknownGotoTargetError(GotoError):
    """Jump block names a target that is not among the declared blocks."""

    def __init__(self, block_name: str, target: str):
        self.target = target
        super().__init__(
            block_name, f'Goto block "{block_name}" references unknown target "{target}".'
        )

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"UnknownGotoTargetError(block={self.block_name!r}, target={self.target!r})"


class StepLimitExceededError(Exception):
    """
    Run executed more steps than the configured budget.

    The budget is controlled by InterpreterConfig.max_steps (BLOCKFLOW_MAX_STEPS).
    """

    def __init__(self, max_steps: int, deferred: bool = False):
        self.max_steps = max_steps
        self.deferred = deferred
        where = " during deferred execution" if deferred else ""
        super().__init__(f"Step limit reached{where} ({max_steps}). Possible infinite loop.")

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"StepLimitExceededError(max_steps={self.max_steps})"


class TimeLimitExceededError(Exception):
    """Run exceeded its wall-clock budget (checked between blocks)."""

    def __init__(self, max_duration_ms: int, deferred: bool = False):
        self.max_duration_ms = max_duration_ms
        self.deferred = deferred
        where = " during deferred execution" if deferred else ""
        super().__init__(f"Time limit reached{where} ({max_duration_ms}ms). Run took too long.")

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"TimeLimitExceededError(max_duration_ms={self.max_duration_ms})"


class BlockFailedError(Exception):
    """A block failed under the abort strategy; ends the run."""

    def __init__(self, block_name: str, message: str, deferred: bool = False):
        self.block_name = block_name
        self.original_message = message
        prefix = "Deferred block" if deferred else "Block"
        super().__init__(f'{prefix} "{block_name}" failed: {message}')

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"BlockFailedError(block={self.block_name!r})"


class RunCancelledError(Exception):
    """Cancellation was observed at an iteration boundary."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(f"Run cancelled: {reason}" if reason else "Run cancelled")


class RunPaused(Exception):  # noqa: N818
    # Not an error - control flow mechanism (like StopIteration)
    """
    Run halted at an interactive block.

    Raised by the orchestrator loop after the interactive block's step has been recorded
    and caught by the same loop, which then returns an awaiting_action result.

    Attributes:
        block: The interactive block that paused the run
        resume_index: Index the caller should resume from
    """

    def __init__(self, block: Block, resume_index: int):
        self.block = block
        self.resume_index = resume_index
        super().__init__(f'Run paused at interactive block "{block.name}"')

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"RunPaused(block={self.block.name!r}, resume_index={self.resume_index})"
