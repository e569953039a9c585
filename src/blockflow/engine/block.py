"""
Pydantic models for the workflow data model.

Blocks and conditions are declared before a run begins and never mutated during it.
BlockResult is the only channel through which a handler changes the run context:
deltas are merged into the matching context section, and a key mapped to REMOVED
is deleted.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Removed:
    """Delta marker meaning "delete this key"."""

    _instance: "_Removed | None" = None

    def __new__(cls) -> "_Removed":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "REMOVED"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Removed":
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> "_Removed":
        return self

    def __reduce__(self) -> str:
        return "REMOVED"


REMOVED = _Removed()


class ConditionOperator(str, Enum):
    """Guard operators."""

    EQUALS = "=="
    NOT_EQUALS = "!="
    LESS_THAN = "<"
    GREATER_THAN = ">"
    LESS_OR_EQUAL = "<="
    GREATER_OR_EQUAL = ">="
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IN = "in"
    IS_EMPTY = "isEmpty"
    IS_FALSY = "isFalsy"
    IS_NULL = "isNull"
    REGEX = "regex"

    def is_unary(self) -> bool:
        """Check if the operator ignores its right operand."""
        return self in (
            ConditionOperator.IS_EMPTY,
            ConditionOperator.IS_FALSY,
            ConditionOperator.IS_NULL,
        )


class Condition(BaseModel):
    """
    Guard predicate: (left expression, operator, right expression).

    Either side may be a `$` reference, a `{{template}}` or a literal. Unary operators
    (isEmpty, isFalsy, isNull) ignore `right`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    left: Any = None
    operator: ConditionOperator
    right: Any = None


class Block(BaseModel):
    """A single declared unit of work.

    `logic` is an opaque configuration bag whose shape depends on `type`; each handler
    validates it against its own model before running.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(description="Stable block identifier")
    name: str = Field(description="Human-readable name, also the target of goto blocks")
    type: str = Field(description="Handler discriminant (e.g. 'code', 'sleep', 'goto', 'ui_form')")
    logic: dict[str, Any] = Field(default_factory=dict)
    conditions: list[Condition] | None = None
    order: int = 0
    notes: str | None = None


class BlockResult(BaseModel):
    """A handler's declared effect on the run context.

    Handlers may also attach metadata (console output, timings) in `meta`; it is
    recorded on the step but never merged into the context.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state_delta: dict[str, Any] | None = None
    cache_delta: dict[str, Any] | None = None
    event_delta: dict[str, Any] | None = None
    meta: dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        """Check if the result declares no change at all."""
        return not (self.state_delta or self.cache_delta or self.event_delta)
