"""
Workflow definition and run configuration models.

The schema validates structure only:
- Required fields and types
- Unique block ids and names (names are goto targets)
- Block order defaults to the position in the declared list

Block types are checked against a dispatcher at run time, so the same definition
can be loaded before platform handlers are registered.
"""

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .block import Block
from .context import LoopCursor, RunContext, RunMetadata


def _duplicates(values: list[str]) -> list[str]:
    return sorted({value for value in values if values.count(value) > 1})


class WorkflowDefinition(BaseModel):
    """
    A versioned, ordered list of blocks.

    Example YAML:
        id: order-intake
        name: Order intake
        version: 3
        blocks:
          - id: b1
            name: normalise
            type: code
            logic:
              code_source: |
                state.total = sum(item["price"] for item in state.items)
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(description="Workflow identifier")
    name: str = ""
    version: int = Field(default=1, ge=1)
    description: str | None = None
    blocks: list[Block] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def default_block_order(cls, data: Any) -> Any:
        """Give blocks without an explicit `order` their list position."""
        if isinstance(data, dict) and isinstance(data.get("blocks"), list):
            blocks = []
            for position, block in enumerate(data["blocks"]):
                if isinstance(block, dict) and "order" not in block:
                    block = {**block, "order": position}
                blocks.append(block)
            data = {**data, "blocks": blocks}
        return data

    @field_validator("blocks")
    @classmethod
    def validate_unique_blocks(cls, v: list[Block]) -> list[Block]:
        """Ensure block ids and names are unique."""
        duplicate_ids = _duplicates([block.id for block in v])
        if duplicate_ids:
            raise ValueError(f"Duplicate block IDs found: {duplicate_ids}")
        duplicate_names = _duplicates([block.name for block in v])
        if duplicate_names:
            raise ValueError(f"Duplicate block names found: {duplicate_names}")
        return v


class RunConfig(BaseModel):
    """Everything the orchestrator needs to start (or resume) a run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str | None = None
    workflow_id: str = ""
    version: int = 1
    blocks: list[Block] = Field(default_factory=list)

    initial_state: dict[str, Any] = Field(default_factory=dict)
    secrets: dict[str, Any] = Field(default_factory=dict)
    paths: dict[str, str] = Field(default_factory=dict)
    event: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[Any] = Field(default_factory=list)
    loops: dict[str, LoopCursor] = Field(default_factory=dict)

    trigger_type: str = "manual"
    platform: str | None = None
    device_id: str | None = None
    key_resolver: Callable[[str], Any] | None = Field(default=None, exclude=True)

    @classmethod
    def for_workflow(cls, workflow: WorkflowDefinition, **kwargs: Any) -> "RunConfig":
        """RunConfig for a loaded workflow definition."""
        return cls(
            workflow_id=workflow.id,
            version=workflow.version,
            blocks=list(workflow.blocks),
            **kwargs,
        )

    def sorted_blocks(self) -> list[Block]:
        """Blocks in declared execution order (stable for equal `order`)."""
        return sorted(self.blocks, key=lambda block: block.order)

    def build_context(self) -> RunContext:
        """Fresh RunContext seeded from this configuration."""
        metadata = RunMetadata(
            workflow_id=self.workflow_id,
            version_id=f"{self.workflow_id}:v{self.version}",
            trigger_type=self.trigger_type,
            platform=self.platform or self.device_id,
            device_id=self.device_id,
        )
        if self.run_id:
            metadata.id = self.run_id

        return RunContext(
            state=dict(self.initial_state),
            secrets=dict(self.secrets),
            paths=dict(self.paths),
            event=dict(self.event),
            artifacts=list(self.artifacts),
            loops=dict(self.loops),
            run=metadata,
            key_resolver=self.key_resolver,
        )
