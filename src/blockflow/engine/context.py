"""
Run Context: the single mutable object threaded through a run.

Exactly one RunContext exists per run. The orchestrator owns it; handlers receive it by
reference for the duration of one call and report changes through BlockResult deltas.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .block_status import RunStatus


def utc_now_iso() -> str:
    """Current instant as an ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LoopCursor(BaseModel):
    """Position of a named loop; exposes at least `index`."""

    model_config = ConfigDict(extra="allow")

    index: int = 0
    item: Any = None
    artifact: Any = None


class RunMetadata(BaseModel):
    """Identity and progress of a run, addressable as `$run.<field>`."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    workflow_id: str = ""
    version_id: str = ""
    status: RunStatus = RunStatus.RUNNING
    trigger_type: str = "manual"
    started_at: str = Field(default_factory=utc_now_iso)
    platform: str | None = None
    device_id: str | None = None

    # Updated by the orchestrator before each block
    step_index: int | None = None
    block_id: str | None = None
    block_name: str | None = None
    block_type: str | None = None


class RunContext(BaseModel):
    """Working memory of one run.

    `state`, `cache` and `event` change only through applied deltas. `artifacts`,
    `secrets` and `paths` are read-only for handlers. `last_error` backs the `$error`
    reference and is cleared after every successful block.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: dict[str, Any] = Field(default_factory=dict)
    cache: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[Any] = Field(default_factory=list)
    secrets: dict[str, Any] = Field(default_factory=dict)
    run: RunMetadata = Field(default_factory=RunMetadata)
    event: dict[str, Any] = Field(default_factory=dict)
    loops: dict[str, LoopCursor] = Field(default_factory=dict)
    paths: dict[str, str] = Field(default_factory=dict)
    key_resolver: Callable[[str], Any] | None = Field(default=None, exclude=True)
    last_error: dict[str, Any] | None = None

    def fork(self) -> RunContext:
        """Copy for a deferred iteration.

        State, cache and artifacts are copied one level deep so the iteration can be
        merged back explicitly; everything else is shared with the parent.
        """
        return self.model_copy(
            update={
                "state": dict(self.state),
                "cache": dict(self.cache),
                "artifacts": list(self.artifacts),
            }
        )

    def active_loop(self) -> LoopCursor | None:
        """Most recently inserted loop cursor, or None outside any loop."""
        if not self.loops:
            return None
        return next(reversed(self.loops.values()))
