"""Shared test utilities for the blockflow test suite.

Provides:
- Block and condition builders with sensible defaults
- A recording handler whose behaviour is driven by the block's logic
- A dispatcher pre-loaded with the recording and failing handlers
"""

from typing import Any

from blockflow.engine import (
    REMOVED,
    Block,
    BlockDispatcher,
    BlockResult,
    Condition,
    ConditionOperator,
    RunContext,
)


def make_block(
    name: str,
    type: str = "record",
    logic: dict[str, Any] | None = None,
    conditions: list[Condition] | None = None,
    block_id: str | None = None,
) -> Block:
    """Block with id derived from its name."""
    return Block(
        id=block_id or f"id_{name}",
        name=name,
        type=type,
        logic=logic or {},
        conditions=conditions,
    )


def cond(left: Any, operator: str, right: Any = None) -> Condition:
    """Condition from a raw operator string."""
    return Condition(left=left, operator=ConditionOperator(operator), right=right)


class Recorder:
    """Handler recording block names; logic drives the returned deltas.

    Logic keys:
        set:       state keys to set
        remove:    state keys to delete
        increment: state key to increment (missing counts as 0)
        cache:     cache keys to set
        event:     event keys to set
    """

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def __call__(self, block: Block, context: RunContext) -> BlockResult:
        self.calls.append(block.name)
        logic = block.logic

        state_delta: dict[str, Any] = dict(logic.get("set", {}))
        for key in logic.get("remove", []):
            state_delta[key] = REMOVED
        if "increment" in logic:
            key = logic["increment"]
            state_delta[key] = (context.state.get(key) or 0) + 1

        return BlockResult(
            state_delta=state_delta or None,
            cache_delta=dict(logic["cache"]) if "cache" in logic else None,
            event_delta=dict(logic["event"]) if "event" in logic else None,
        )


async def fail_handler(block: Block, context: RunContext) -> BlockResult:
    """Handler that always raises with `logic.message`."""
    raise RuntimeError(block.logic.get("message", "boom"))


def make_dispatcher(recorder: Recorder) -> BlockDispatcher:
    """Dispatcher with `record` and `fail` block types."""
    dispatcher = BlockDispatcher()
    dispatcher.register_handler("record", recorder)
    dispatcher.register_handler("fail", fail_handler)
    return dispatcher
