"""Outcome of reading workflow definitions from YAML.

Loading never raises for bad input: a missing file, broken YAML or a schema violation
comes back as a failed LoadResult naming its source. Runs do not use this type; they
always produce a RunResult.
"""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class LoadResult(Generic[T]):  # noqa: UP046
    """
    A loaded value or the reason it could not be loaded.

    Attributes:
        value: The loaded object (None on failure)
        error: Human-readable failure, prefixed with the source (None on success)
        source: File path or label the input came from
        skipped: Per-file problems that did not fail the whole load (directory scans)

    Usage:
        loaded = load_workflow_from_file("flows/intake.yaml")
        if not loaded:
            raise SystemExit(loaded.error)
        config = RunConfig.for_workflow(loaded.value)
    """

    value: T | None = None
    error: str | None = None
    source: str | None = None
    skipped: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if (self.value is None) == (self.error is None):
            raise ValueError("LoadResult needs exactly one of value or error")

    @classmethod
    def success(
        cls, value: T, source: str | None = None, skipped: list[str] | None = None
    ) -> "LoadResult[T]":
        return cls(value=value, source=source, skipped=list(skipped or []))

    @classmethod
    def failure(cls, error: str, source: str | None = None) -> "LoadResult[T]":
        return cls(error=error, source=source)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    def __bool__(self) -> bool:
        return self.is_success

    def unwrap(self) -> T:
        """The loaded value.

        Raises:
            ValueError: If loading failed
        """
        if self.value is None:
            raise ValueError(f"Workflow could not be loaded: {self.error}")
        return self.value
