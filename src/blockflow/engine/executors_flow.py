"""Built-in flow handlers that need no platform adapter."""

import asyncio
from typing import ClassVar

from pydantic import Field, field_validator

from .block import Block, BlockResult
from .context import RunContext
from .executor_base import BlockHandler, HandlerConfig, HandlerSecurityLevel

MAX_SLEEP_MS = 300_000


class SleepConfig(HandlerConfig):
    """Logic bag of a `sleep` block."""

    sleep_duration_ms: int = Field(default=0, description="Delay in milliseconds (0-300000)")

    @field_validator("sleep_duration_ms", mode="before")
    @classmethod
    def clamp_duration(cls, v: object) -> int:
        """Clamp into [0, MAX_SLEEP_MS]; missing or non-numeric values mean no delay."""
        try:
            duration = int(float(v))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0
        return max(0, min(MAX_SLEEP_MS, duration))


class SleepHandler(BlockHandler):
    """Suspends the run for `sleep_duration_ms` without blocking other runs."""

    type_name: ClassVar[str] = "sleep"
    config_type: ClassVar[type[HandlerConfig]] = SleepConfig
    security_level: ClassVar[HandlerSecurityLevel] = HandlerSecurityLevel.TRUSTED

    async def execute(  # type: ignore[override]
        self, config: SleepConfig, block: Block, context: RunContext
    ) -> BlockResult:
        """Wait, then report the slept duration in the step metadata."""
        await asyncio.sleep(config.sleep_duration_ms / 1000)
        return BlockResult(meta={"slept_ms": config.sleep_duration_ms})
