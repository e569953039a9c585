"""Script sandbox failures.

Every failure of a script falls in one category, exposed as `kind`:

    ScriptError (base)
    ├── ScriptSyntaxError    (script could not be parsed)      kind="syntax"
    ├── ScriptRuntimeError   (script raised while running)     kind="runtime"
    ├── ScriptSecurityError  (blocked construct detected)      kind="security"
    ├── ScriptTimeoutError   (deadline exceeded, worker killed) kind="timeout"
    └── SandboxError         (worker crashed or misbehaved)    kind="sandbox"

Positions are 1-based lines and columns of the submitted source, when known.
"""

from __future__ import annotations

from typing import Any, ClassVar


class ScriptError(Exception):
    """Base exception for script failures.

    Attributes:
        message: Bare message without the category prefix
        line: 1-based line in the script, if known
        column: 1-based column in the script, if known
        console: Console entries captured before the failure
    """

    kind: ClassVar[str] = "runtime"
    label: ClassVar[str] = "Script error"

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        console: list[dict[str, Any]] | None = None,
    ) -> None:
        self.message = message
        self.line = line
        self.column = column
        self.console = console or []
        super().__init__(self._format())

    def _format(self) -> str:
        if self.line is not None:
            return f"{self.label} at line {self.line}: {self.message}"
        return f"{self.label}: {self.message}"

    @property
    def details(self) -> dict[str, Any]:
        """Structured failure data recorded on the failed step."""
        details: dict[str, Any] = {"kind": self.kind, "line": self.line, "column": self.column}
        if self.console:
            details["console_output"] = self.console
        return details

    def to_payload(self) -> dict[str, Any]:
        """Wire form used by the worker process."""
        return {
            "kind": self.kind,
            "message": self.message,
            "line": self.line,
            "column": self.column,
        }

    @staticmethod
    def from_payload(
        payload: dict[str, Any], console: list[dict[str, Any]] | None = None
    ) -> ScriptError:
        """Rebuild the matching exception from its wire form."""
        kind = payload.get("kind", "runtime")
        error_type = _ERROR_TYPES.get(kind, ScriptRuntimeError)
        return error_type(
            str(payload.get("message", "")),
            line=payload.get("line"),
            column=payload.get("column"),
            console=console,
        )

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"{type(self).__name__}(message={self.message!r}, line={self.line})"


class ScriptSyntaxError(ScriptError):
    """The script could not be parsed or compiled."""

    kind = "syntax"
    label = "Syntax error"


class ScriptRuntimeError(ScriptError):
    """The script raised an exception while running."""

    kind = "runtime"
    label = "Runtime error"


class ScriptSecurityError(ScriptError):
    """The script uses a construct outside the sandbox policy.

    `message` names the blocked construct, e.g. "dynamic code evaluation (eval)".
    """

    kind = "security"
    label = "Security violation"

    def _format(self) -> str:
        where = f" at line {self.line}" if self.line is not None else ""
        return f"{self.label}{where}: {self.message} is not allowed"


class ScriptTimeoutError(ScriptError):
    """The script exceeded its wall-clock deadline and was terminated."""

    kind = "timeout"
    label = "Timeout"

    def __init__(self, timeout_ms: int, console: list[dict[str, Any]] | None = None) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"timed out after {timeout_ms}ms", console=console)

    def _format(self) -> str:
        return f"Script execution timed out after {self.timeout_ms}ms"


class SandboxError(ScriptError):
    """The worker process failed outside the script's control."""

    kind = "sandbox"
    label = "Sandbox failure"


_ERROR_TYPES: dict[str, type[ScriptError]] = {
    "syntax": ScriptSyntaxError,
    "runtime": ScriptRuntimeError,
    "security": ScriptSecurityError,
    "sandbox": SandboxError,
}
