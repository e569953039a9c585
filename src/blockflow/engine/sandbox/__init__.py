"""Isolated execution of block-supplied scripts."""

from .exceptions import (
    SandboxError,
    ScriptError,
    ScriptRuntimeError,
    ScriptSecurityError,
    ScriptSyntaxError,
    ScriptTimeoutError,
)
from .guard import SecurityGuard
from .policy import SandboxPolicy
from .runner import ScriptOutcome, run_script
from .ssrf import SSRFBlockedError, check_url
from .type_erasure import erase_types

__all__ = [
    "SSRFBlockedError",
    "SandboxError",
    "SandboxPolicy",
    "ScriptError",
    "ScriptOutcome",
    "ScriptRuntimeError",
    "ScriptSecurityError",
    "ScriptSyntaxError",
    "ScriptTimeoutError",
    "SecurityGuard",
    "check_url",
    "erase_types",
    "run_script",
]
