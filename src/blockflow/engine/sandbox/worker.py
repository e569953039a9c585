"""Script worker process.

Started by the runner as `python -m blockflow.engine.sandbox.worker`. Protocol:

    stdin   one JSON payload: {source, state, cache, artifacts, secrets, policy}
    stdout  JSON lines: {"type": "started"} once the script compiled and is about to
            run, then {"type": "result", ...}; a script rejected before running
            produces the result line only

Nothing else is ever written to the real stdout: the script's own output streams are
redirected while it runs.
"""

import ast
import asyncio
import io
import json
import sys
import traceback
from contextlib import redirect_stderr, redirect_stdout
from typing import Any, TextIO

from .capabilities import ScriptCapabilities, json_default, to_plain
from .exceptions import ScriptError, ScriptRuntimeError, ScriptSecurityError, ScriptSyntaxError
from .guard import SecurityGuard
from .policy import SandboxPolicy
from .type_erasure import erase_types

SCRIPT_FILENAME = "<script>"
ENTRY_POINT = "__script__"


def wrap_script(tree: ast.Module) -> ast.Module:
    """Move the script body into `async def __script__()`.

    Top-level `await` and `return` become legal, and a trailing expression statement
    becomes the return value.
    """
    body = list(tree.body)
    if body and isinstance(body[-1], ast.Expr):
        last = body[-1]
        body[-1] = ast.copy_location(ast.Return(value=last.value), last)
    if not body:
        body = [ast.Pass()]

    function = ast.AsyncFunctionDef(
        name=ENTRY_POINT,
        args=ast.arguments(
            posonlyargs=[], args=[], vararg=None, kwonlyargs=[], kw_defaults=[],
            kwarg=None, defaults=[],
        ),
        body=body,
        decorator_list=[],
        returns=None,
        type_params=[],
        lineno=1,
        col_offset=0,
    )
    module = ast.Module(body=[function], type_ignores=[])
    return ast.fix_missing_locations(module)


def compile_script(source: str) -> Any:  # noqa: ANN401
    """Parse, erase types, validate and compile a script.

    Raises:
        ScriptSyntaxError: If the source does not parse or compile
        ScriptSecurityError: If the guard rejects a construct
    """
    try:
        tree = ast.parse(source, filename=SCRIPT_FILENAME)
    except SyntaxError as e:
        raise ScriptSyntaxError(e.msg, e.lineno, e.offset) from e

    tree = erase_types(tree)
    SecurityGuard().check(tree)

    try:
        return compile(wrap_script(tree), SCRIPT_FILENAME, "exec")
    except SyntaxError as e:
        raise ScriptSyntaxError(e.msg, e.lineno, e.offset) from e


def script_position(error: BaseException) -> tuple[int | None, int | None]:
    """Line and 1-based column of the innermost script frame in the traceback."""
    line = column = None
    for frame in traceback.extract_tb(error.__traceback__):
        if frame.filename == SCRIPT_FILENAME:
            line = frame.lineno
            column = frame.colno + 1 if frame.colno is not None else None
    return line, column


def apply_limits(timeout_ms: int) -> None:
    """Best-effort POSIX resource limits for the worker process."""
    try:
        import resource
    except ImportError:
        return

    # Interpreter startup counts against RLIMIT_CPU too
    cpu_seconds = timeout_ms // 1000 + 10
    limits = [
        (resource.RLIMIT_CPU, cpu_seconds),
        (resource.RLIMIT_FSIZE, 0),
        (resource.RLIMIT_CORE, 0),
    ]
    for limit, value in limits:
        try:
            _, hard = resource.getrlimit(limit)
            if hard != resource.RLIM_INFINITY:
                value = min(value, hard)
            resource.setrlimit(limit, (value, hard))
        except (ValueError, OSError):
            continue


def execute(payload: dict[str, Any], channel: TextIO) -> dict[str, Any]:
    """Run one script payload; returns the result message."""
    policy = SandboxPolicy.model_validate(payload.get("policy") or {})
    capabilities = ScriptCapabilities(
        policy=policy,
        original_state=payload.get("state") or {},
        original_cache=payload.get("cache") or {},
        artifacts=payload.get("artifacts") or [],
        secrets=payload.get("secrets") or {},
    )

    try:
        code = compile_script(payload.get("source", ""))
    except ScriptError as e:
        return {"type": "result", "ok": False, "error": e.to_payload(), "logs": []}

    emit(channel, {"type": "started"})

    namespace = capabilities.namespace()
    sink = io.StringIO()
    try:
        with redirect_stdout(sink), redirect_stderr(sink):
            exec(code, namespace)  # noqa: S102
            value = asyncio.run(namespace[ENTRY_POINT]())
        result = to_plain(value)
        state_delta, removed_state = capabilities.state_changes()
        cache_delta, removed_cache = capabilities.cache_changes()
    except ScriptSecurityError as e:
        # Raised by runtime attribute checks, which carry no position yet
        violation = e
        if e.line is None:
            violation = ScriptSecurityError(e.message, *script_position(e))
        return _failure(violation, capabilities)
    except Exception as e:
        line, column = script_position(e)
        error = ScriptRuntimeError(f"{type(e).__name__}: {e}", line, column)
        return _failure(error, capabilities)

    return {
        "type": "result",
        "ok": True,
        "result": result,
        "state_delta": state_delta,
        "removed_state_keys": removed_state,
        "cache_delta": cache_delta,
        "removed_cache_keys": removed_cache,
        "logs": capabilities.console.entries,
    }


def _failure(error: ScriptError, capabilities: ScriptCapabilities) -> dict[str, Any]:
    return {
        "type": "result",
        "ok": False,
        "error": error.to_payload(),
        "logs": capabilities.console.entries,
    }


def emit(channel: TextIO, message: dict[str, Any]) -> None:
    channel.write(json.dumps(message, default=json_default) + "\n")
    channel.flush()


def main() -> None:
    """Worker entry point."""
    channel = sys.stdout
    try:
        payload = json.loads(sys.stdin.read())
    except json.JSONDecodeError as e:
        emit(channel, {"type": "result", "ok": False,
                       "error": {"kind": "sandbox", "message": f"Invalid payload: {e}"}})
        return

    apply_limits(int(payload.get("timeout_ms") or 0))
    emit(channel, execute(payload, channel))


if __name__ == "__main__":
    main()
