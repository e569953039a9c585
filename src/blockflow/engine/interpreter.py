"""
Orchestrator: the control-flow engine of a run.

Walks the declared block list index by index. For each block it evaluates the guard,
dispatches to the registered handler, applies the handler's deltas and records a step.
Jumps, interactive pauses, step/time budgets and cancellation are handled here, and
this is the only place that converts exceptions into a terminal RunResult: nothing
raised while running a block crosses execute_run() / resume_run().

Execution model:
    running -> completed | failed | awaiting_action | cancelled

    - guard false            -> skipped step, next index
    - type "ui_*"            -> completed step, run halts (awaiting_action)
    - type "goto"            -> next index = target (or deferred continuation)
    - handler failure        -> failed step; abort ends the run, continue advances
"""

import asyncio
import copy
import logging
import time
import uuid

from .block import Block, BlockResult
from .block_status import ErrorStrategy, RunStatus
from .bookkeeping import RunBookkeeper, Step, StepError, calculate_delta, merge_delta
from .conditions import ConditionEvaluator
from .config import InterpreterConfig
from .context import RunContext
from .exceptions import (
    BlockConfigurationError,
    BlockFailedError,
    GotoError,
    MissingGotoTargetError,
    RunCancelledError,
    RunPaused,
    StepLimitExceededError,
    TimeLimitExceededError,
    UnknownBlockTypeError,
    UnknownGotoTargetError,
)
from .executor_base import BlockDispatcher, create_default_dispatcher
from .resolver import ContextResolver
from .run_result import RunResult
from .schema import RunConfig

logger = logging.getLogger(__name__)

# Errors that end a run with a descriptive message and need no traceback
RUN_ABORTING_ERRORS = (
    BlockFailedError,
    GotoError,
    StepLimitExceededError,
    TimeLimitExceededError,
)

# Misconfiguration is fatal whatever the block's error strategy says
CONFIGURATION_ERRORS = (UnknownBlockTypeError, BlockConfigurationError)


class CancellationToken:
    """External cancellation signal, honoured between blocks only.

    Example:
        token = CancellationToken()
        task = asyncio.create_task(interpreter.execute_run(config, cancellation=token))
        token.cancel("user pressed stop")
        result = await task    # status: cancelled
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation at the next iteration boundary."""
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        await self._event.wait()


class _RunState:
    """Per-call bookkeeping shared by the main loop and deferred iterations."""

    def __init__(self, blocks: list[Block], cancellation: CancellationToken | None) -> None:
        self.blocks = blocks
        self.cancellation = cancellation
        self.bookkeeper = RunBookkeeper()
        self.started = time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class Interpreter:
    """
    Stateless orchestrator; one instance may drive any number of concurrent runs.

    Usage:
        interpreter = Interpreter()
        result = await interpreter.execute_run(RunConfig(blocks=blocks))
        response = result.to_response()
    """

    def __init__(
        self,
        dispatcher: BlockDispatcher | None = None,
        config: InterpreterConfig | None = None,
        resolver: ContextResolver | None = None,
    ) -> None:
        self.dispatcher = dispatcher or create_default_dispatcher()
        self.config = config or InterpreterConfig()
        self.resolver = resolver or ContextResolver()
        self.evaluator = ConditionEvaluator(self.resolver)

    # Entry points

    async def execute_run(
        self, config: RunConfig, cancellation: CancellationToken | None = None
    ) -> RunResult:
        """Execute a run from the first block with a fresh context."""
        context = config.build_context()
        return await self._run(config.sorted_blocks(), context, 0, cancellation)

    async def resume_run(
        self,
        config: RunConfig,
        from_index: int,
        paused_context: RunContext,
        cancellation: CancellationToken | None = None,
    ) -> RunResult:
        """Continue a paused run from `from_index` using the paused context.

        The returned RunResult holds only the steps produced by this call; the caller
        merges them with the steps of the paused result.
        """
        if paused_context.key_resolver is None:
            paused_context.key_resolver = config.key_resolver
        return await self._run(config.sorted_blocks(), paused_context, from_index, cancellation)

    # Main loop

    async def _run(
        self,
        blocks: list[Block],
        context: RunContext,
        start_index: int,
        cancellation: CancellationToken | None,
    ) -> RunResult:
        run = _RunState(blocks, cancellation)
        context.run.status = RunStatus.RUNNING
        logger.info(
            f"Run {context.run.id} started: {len(blocks)} blocks, from index {start_index}"
        )

        try:
            await self._execute_from(run, context, start_index)

        except RunPaused as pause:
            context.run.status = RunStatus.AWAITING_ACTION
            logger.info(f"Run {context.run.id} awaiting action at block '{pause.block.name}'")
            return RunResult.awaiting_action(
                steps=run.bookkeeper.get_steps(),
                context=context,
                duration_ms=run.elapsed_ms(),
                resume_index=pause.resume_index,
                paused_block_id=pause.block.id,
                paused_block_name=pause.block.name,
            )

        except RunCancelledError as e:
            context.run.status = RunStatus.CANCELLED
            logger.info(f"Run {context.run.id} cancelled")
            return RunResult.cancelled(
                run.bookkeeper.get_steps(), context, run.elapsed_ms(), e.reason
            )

        except RUN_ABORTING_ERRORS as e:
            context.run.status = RunStatus.FAILED
            logger.warning(f"Run {context.run.id} failed: {e}")
            return RunResult.failed(str(e), run.bookkeeper.get_steps(), context, run.elapsed_ms())

        except Exception as e:
            context.run.status = RunStatus.FAILED
            logger.exception(f"Run {context.run.id} failed unexpectedly: {e}")
            return RunResult.failed(str(e), run.bookkeeper.get_steps(), context, run.elapsed_ms())

        context.run.status = RunStatus.COMPLETED
        steps = run.bookkeeper.get_steps()
        logger.info(f"Run {context.run.id} completed: {len(steps)} steps in {run.elapsed_ms()}ms")
        return RunResult.completed(steps, context, run.elapsed_ms())

    async def _execute_from(self, run: _RunState, context: RunContext, start_index: int) -> None:
        index = start_index
        while index < len(run.blocks):
            self._check_limits(run)

            block = run.blocks[index]
            self._mark_position(context, index, block)

            if not self.evaluator.evaluate_all(block.conditions, context):
                logger.debug(f"Skipping block '{block.name}': guard is false")
                run.bookkeeper.skip_step(run.bookkeeper.create_step(block))
                index += 1
                continue

            if self._is_interactive(block):
                run.bookkeeper.complete_step(run.bookkeeper.create_step(block))
                raise RunPaused(block, index + 1)

            if block.type == self.config.goto_type:
                index = await self._jump(run, context, index, block)
                continue

            await self._execute_block(run, context, block)
            index += 1

    # Block execution

    async def _execute_block(
        self,
        run: _RunState,
        context: RunContext,
        block: Block,
        iteration_id: str | None = None,
    ) -> None:
        """Dispatch one block and record its step.

        Raises:
            BlockFailedError: On misconfiguration, or on failure under the abort strategy
        """
        bookkeeper = run.bookkeeper
        if iteration_id:
            step = bookkeeper.create_deferred_step(block, iteration_id)
        else:
            step = bookkeeper.create_step(block)
        state_before = copy.deepcopy(context.state)
        deferred = iteration_id is not None

        logger.debug(f"Executing block '{block.name}' (type: {block.type})")
        try:
            result = await self.dispatcher.execute(block, context)
            bookkeeper.apply_deltas(context, result)

        except CONFIGURATION_ERRORS as e:
            self._record_failure(bookkeeper, step, block, context, e)
            raise BlockFailedError(block.name, str(e), deferred=deferred) from e

        except Exception as e:
            self._record_failure(bookkeeper, step, block, context, e)
            if self.dispatcher.get_error_strategy(block) == ErrorStrategy.ABORT:
                raise BlockFailedError(block.name, str(e), deferred=deferred) from e
            logger.warning(f"Block '{block.name}' failed, continuing: {e}")
            return

        actual_delta = calculate_delta(state_before, context.state)
        bookkeeper.complete_step(step, result, state_delta=actual_delta or result.state_delta)
        context.last_error = None

    def _record_failure(
        self,
        bookkeeper: RunBookkeeper,
        step: Step,
        block: Block,
        context: RunContext,
        error: Exception,
    ) -> None:
        step_error = StepError(
            message=str(error),
            block_id=block.id,
            block_name=block.name,
            details=getattr(error, "details", None),
        )
        bookkeeper.fail_step(step, step_error)
        context.last_error = step_error.model_dump(exclude_none=True)

    # Jumps

    async def _jump(self, run: _RunState, context: RunContext, index: int, block: Block) -> int:
        """Handle a goto block; returns the next index to execute.

        Raises:
            MissingGotoTargetError: If the block has no goto_target
            UnknownGotoTargetError: If no declared block carries the target name
        """
        target = self.resolver.resolve_value(block.logic.get("goto_target"), context)
        defer = bool(block.logic.get("goto_defer", False))

        target_index = None
        if target:
            target_index = next(
                (i for i, candidate in enumerate(run.blocks) if candidate.name == target), None
            )

        iteration_id = f"iter_{uuid.uuid4().hex[:8]}" if defer else None
        if iteration_id:
            step = run.bookkeeper.create_deferred_step(block, iteration_id)
        else:
            step = run.bookkeeper.create_step(block)

        if target_index is None:
            error: GotoError = (
                UnknownGotoTargetError(block.name, str(target))
                if target
                else MissingGotoTargetError(block.name)
            )
            self._record_failure(run.bookkeeper, step, block, context, error)
            raise error

        run.bookkeeper.complete_step(
            step, BlockResult(meta={"goto_target": target, "goto_defer": defer})
        )

        if iteration_id:
            logger.debug(f"Deferred jump '{block.name}' -> '{target}' ({iteration_id})")
            await self._run_deferred_iteration(run, context, target_index, iteration_id)
            return index + 1

        logger.debug(f"Jump '{block.name}' -> '{target}' (index {target_index})")
        return target_index

    async def _run_deferred_iteration(
        self, run: _RunState, context: RunContext, target_index: int, iteration_id: str
    ) -> None:
        """Run blocks from the target to the end on a forked context, then merge back.

        Interactive blocks cannot pause inside the iteration and are skipped without a
        step; jump blocks are recorded but not followed.
        """
        iteration_context = context.fork()

        for index in range(target_index, len(run.blocks)):
            self._check_limits(run, deferred=True)
            block = run.blocks[index]

            if self._is_interactive(block):
                continue

            if not self.evaluator.evaluate_all(block.conditions, iteration_context):
                step = run.bookkeeper.create_deferred_step(block, iteration_id)
                run.bookkeeper.skip_step(step)
                continue

            if block.type == self.config.goto_type:
                step = run.bookkeeper.create_deferred_step(block, iteration_id)
                run.bookkeeper.complete_step(
                    step,
                    BlockResult(
                        meta={
                            "goto_target": block.logic.get("goto_target"),
                            "goto_defer": bool(block.logic.get("goto_defer", False)),
                            "followed": False,
                        }
                    ),
                )
                continue

            await self._execute_block(run, iteration_context, block, iteration_id)

        merge_delta(context.state, calculate_delta(context.state, iteration_context.state))
        merge_delta(context.cache, calculate_delta(context.cache, iteration_context.cache))
        context.last_error = iteration_context.last_error

    # Helpers

    def _check_limits(self, run: _RunState, deferred: bool = False) -> None:
        if run.cancellation is not None and run.cancellation.cancelled:
            raise RunCancelledError(run.cancellation.reason)
        if run.bookkeeper.get_execution_count() >= self.config.max_steps:
            raise StepLimitExceededError(self.config.max_steps, deferred=deferred)
        if run.elapsed_ms() > self.config.max_duration_ms:
            raise TimeLimitExceededError(self.config.max_duration_ms, deferred=deferred)

    def _is_interactive(self, block: Block) -> bool:
        return block.type.startswith(self.config.ui_type_prefix)

    @staticmethod
    def _mark_position(context: RunContext, index: int, block: Block) -> None:
        context.run.step_index = index
        context.run.block_id = block.id
        context.run.block_name = block.name
        context.run.block_type = block.type
