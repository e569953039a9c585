"""Parent side of the script sandbox.

Each script runs in a fresh worker process with a minimal environment. The wall-clock
deadline starts when the worker reports `started` (after interpreter startup and
compilation), and the process is killed when it expires or when the awaiting task is
cancelled.
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import SandboxError, ScriptError, ScriptTimeoutError
from .policy import SandboxPolicy

logger = logging.getLogger(__name__)

WORKER_MODULE = "blockflow.engine.sandbox.worker"
STREAM_LIMIT = 16 * 1024 * 1024
STDERR_TAIL = 2000

# src/ directory holding the blockflow package
PACKAGE_ROOT = Path(__file__).resolve().parents[3]


@dataclass
class ScriptOutcome:
    """Successful script execution.

    Attributes:
        result: Value of the script's final expression (or `return`), as plain data
        state_delta: State keys the script added or changed
        removed_state_keys: State keys the script deleted
        cache_delta: Cache keys the script added or changed
        removed_cache_keys: Cache keys the script deleted
        console: Captured console entries
    """

    result: Any = None
    state_delta: dict[str, Any] = field(default_factory=dict)
    removed_state_keys: list[str] = field(default_factory=list)
    cache_delta: dict[str, Any] = field(default_factory=dict)
    removed_cache_keys: list[str] = field(default_factory=list)
    console: list[dict[str, Any]] = field(default_factory=list)


def worker_environment() -> dict[str, str]:
    """Environment for the worker: nothing from the parent beyond the import path."""
    return {
        "PYTHONPATH": str(PACKAGE_ROOT),
        "PYTHONDONTWRITEBYTECODE": "1",
        "PYTHONIOENCODING": "utf-8",
        "PYTHONHASHSEED": "0",
    }


async def run_script(
    source: str,
    *,
    state: dict[str, Any] | None = None,
    cache: dict[str, Any] | None = None,
    artifacts: list[Any] | None = None,
    secrets: dict[str, Any] | None = None,
    timeout_ms: int | None = None,
    policy: SandboxPolicy | None = None,
) -> ScriptOutcome:
    """Execute a script in a worker process.

    Args:
        source: Script text
        state: Run state; the script works on its own copy
        cache: Run cache; the script works on its own copy
        artifacts: Read-only artifact list
        secrets: Read-only secret mapping
        timeout_ms: Requested deadline, clamped by the policy
        policy: Sandbox limits (defaults to SandboxPolicy())

    Returns:
        ScriptOutcome with the result value, deltas and console entries

    Raises:
        ScriptSyntaxError: Script does not parse
        ScriptSecurityError: Script uses a blocked construct
        ScriptRuntimeError: Script raised
        ScriptTimeoutError: Deadline exceeded (worker killed)
        SandboxError: Worker failed to start or produced no result
    """
    policy = policy or SandboxPolicy()
    timeout = policy.clamp_timeout(timeout_ms)
    payload = {
        "source": source,
        "state": state or {},
        "cache": cache or {},
        "artifacts": artifacts or [],
        "secrets": secrets or {},
        "policy": policy.model_dump(),
        "timeout_ms": timeout,
    }
    try:
        data = json.dumps(payload, default=str).encode("utf-8")
    except ValueError as e:
        raise SandboxError(f"Run data is not serialisable: {e}") from e

    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        WORKER_MODULE,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=worker_environment(),
        limit=STREAM_LIMIT,
    )
    logger.debug(f"Sandbox worker started (pid {process.pid}, timeout {timeout}ms)")
    stderr_task = asyncio.create_task(process.stderr.read())

    try:
        process.stdin.write(data)
        await process.stdin.drain()
        process.stdin.close()

        first = await asyncio.wait_for(process.stdout.readline(), policy.startup_timeout_s)
        message = _parse_line(first)

        if message is not None and message.get("type") == "started":
            try:
                rest = await asyncio.wait_for(process.stdout.read(), timeout / 1000)
            except TimeoutError:
                process.kill()
                await process.wait()
                raise ScriptTimeoutError(timeout) from None
            message = _parse_line(rest)

        await process.wait()
    except TimeoutError:
        raise SandboxError(
            f"Worker did not start within {policy.startup_timeout_s}s"
        ) from None
    except (BrokenPipeError, ConnectionResetError) as e:
        message = None
        logger.debug(f"Sandbox worker closed its input early: {e}")
    finally:
        if process.returncode is None:
            process.kill()
            await process.wait()

    stderr = await stderr_task
    if message is None:
        tail = stderr.decode("utf-8", errors="replace")[-STDERR_TAIL:].strip()
        logger.warning(f"Sandbox worker exited with code {process.returncode}: {tail}")
        raise SandboxError(
            f"Worker exited with code {process.returncode} without a result"
            + (f": {tail}" if tail else "")
        )

    return _outcome(message)


def _parse_line(raw: bytes) -> dict[str, Any] | None:
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


def _outcome(message: dict[str, Any]) -> ScriptOutcome:
    console = list(message.get("logs") or [])
    if not message.get("ok"):
        raise ScriptError.from_payload(message.get("error") or {}, console)

    return ScriptOutcome(
        result=message.get("result"),
        state_delta=dict(message.get("state_delta") or {}),
        removed_state_keys=list(message.get("removed_state_keys") or []),
        cache_delta=dict(message.get("cache_delta") or {}),
        removed_cache_keys=list(message.get("removed_cache_keys") or []),
        console=console,
    )
