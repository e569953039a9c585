"""Script block handler.

Runs `code_source` in the script sandbox and folds the outcome into a BlockResult:
state and cache changes become deltas (deleted keys become REMOVED), the final
expression value can be bound to a state key, and console output is reported in the
event delta and in the step metadata.
"""

import logging
from typing import Any, ClassVar, Literal

from pydantic import Field, field_validator

from .block import REMOVED, Block, BlockResult
from .context import RunContext
from .executor_base import (
    BlockHandler,
    HandlerCapabilities,
    HandlerConfig,
    HandlerSecurityLevel,
)
from .sandbox import SandboxPolicy, run_script

logger = logging.getLogger(__name__)

CONSOLE_EVENT_KEY = "__console_output"


class CodeConfig(HandlerConfig):
    """Logic bag of a `code` block."""

    code_source: str = Field(default="", description="Script text")
    code_language: Literal["python", "typed"] = Field(
        default="python",
        description="'typed' marks scripts carrying annotations; they are erased before running",
    )
    code_timeout_ms: int | None = Field(
        default=None, description="Wall-clock deadline, clamped by the sandbox policy"
    )
    code_bind_value: str | None = Field(
        default=None, description="State key receiving the script's final value"
    )

    @field_validator("code_bind_value")
    @classmethod
    def strip_state_prefix(cls, v: str | None) -> str | None:
        """Accept `$state.total` and `state.total` as well as `total`."""
        if v is None:
            return None
        for prefix in ("$state.", "state."):
            if v.startswith(prefix):
                v = v[len(prefix) :]
                break
        return v.strip() or None


class CodeHandler(BlockHandler):
    """
    Script execution handler.

    Features:
    - Child-process isolation with a hard wall-clock timeout
    - Static rejection of imports, dynamic evaluation and interpreter internals
    - State mutation diffing (nested changes included)
    - Cache get/set/has/delete, read-only artifacts and secrets
    - SSRF-filtered fetch, captured console output

    Example block:
        type: code
        logic:
          code_source: |
            state.count = (state.count or 0) + 1
            state.count * 2
          code_bind_value: $state.doubled
    """

    type_name: ClassVar[str] = "code"
    config_type: ClassVar[type[HandlerConfig]] = CodeConfig

    security_level: ClassVar[HandlerSecurityLevel] = HandlerSecurityLevel.PRIVILEGED
    capabilities: ClassVar[HandlerCapabilities] = HandlerCapabilities(
        runs_untrusted_code=True, can_network=True, can_modify_state=True
    )

    def __init__(self, policy: SandboxPolicy | None = None) -> None:
        self.policy = policy or SandboxPolicy.from_env()

    async def execute(  # type: ignore[override]
        self, config: CodeConfig, block: Block, context: RunContext
    ) -> BlockResult:
        """Run the block's script.

        Raises:
            ScriptError: Syntax, security, runtime or timeout failure of the script
        """
        if not config.code_source.strip():
            return BlockResult()

        outcome = await run_script(
            config.code_source,
            state=context.state,
            cache=context.cache,
            artifacts=context.artifacts,
            secrets=context.secrets,
            timeout_ms=config.code_timeout_ms,
            policy=self.policy,
        )

        state_delta: dict[str, Any] = dict(outcome.state_delta)
        state_delta.update({key: REMOVED for key in outcome.removed_state_keys})
        if config.code_bind_value:
            state_delta[config.code_bind_value] = outcome.result

        cache_delta: dict[str, Any] = dict(outcome.cache_delta)
        cache_delta.update({key: REMOVED for key in outcome.removed_cache_keys})

        logger.debug(
            f"Script block '{block.name}' changed {len(state_delta)} state keys, "
            f"{len(cache_delta)} cache keys, {len(outcome.console)} console entries"
        )

        return BlockResult(
            state_delta=state_delta or None,
            cache_delta=cache_delta or None,
            event_delta={CONSOLE_EVENT_KEY: outcome.console} if outcome.console else None,
            meta={"result": outcome.result, "console_output": outcome.console},
        )
