"""Resource and egress policy for the script sandbox.

Environment variables:
    BLOCKFLOW_SANDBOX_MAX_TIMEOUT_MS   ceiling for per-block timeouts (1000-600000)
    BLOCKFLOW_SANDBOX_ALLOWED_HOSTS    comma-separated hosts exempt from the
                                       private-address check (e.g. an internal API)
"""

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..config import env_int

DEFAULT_TIMEOUT_MS = 10_000
MIN_TIMEOUT_MS = 10
MAX_TIMEOUT_MS = 30_000


class SandboxPolicy(BaseModel):
    """Limits applied to every script execution.

    Frozen, so script capabilities built from it cannot widen it.
    """

    model_config = ConfigDict(frozen=True)

    default_timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    min_timeout_ms: int = Field(default=MIN_TIMEOUT_MS, ge=1)
    max_timeout_ms: int = Field(default=MAX_TIMEOUT_MS, ge=1)

    max_console_entries: int = Field(default=100, ge=0)
    max_console_bytes: int = Field(default=10 * 1024, ge=0)

    fetch_timeout_s: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)
    max_sleep_s: float = Field(default=5.0, ge=0)
    allowed_hosts: tuple[str, ...] = ()

    startup_timeout_s: float = Field(
        default=15.0, gt=0, description="Time allowed for the worker process to start"
    )

    def clamp_timeout(self, requested: Any = None) -> int:
        """Clamp a requested timeout (ms) into [min_timeout_ms, max_timeout_ms].

        Missing or non-numeric values use default_timeout_ms.
        """
        try:
            timeout = int(requested) if requested is not None else self.default_timeout_ms
        except (TypeError, ValueError):
            timeout = self.default_timeout_ms
        return max(self.min_timeout_ms, min(self.max_timeout_ms, timeout))

    @classmethod
    def from_env(cls) -> "SandboxPolicy":
        """Defaults overridden by BLOCKFLOW_SANDBOX_* environment variables."""
        hosts = os.getenv("BLOCKFLOW_SANDBOX_ALLOWED_HOSTS", "")
        return cls(
            max_timeout_ms=env_int(
                "BLOCKFLOW_SANDBOX_MAX_TIMEOUT_MS", MAX_TIMEOUT_MS, 1_000, 600_000
            ),
            allowed_hosts=tuple(host.strip().lower() for host in hosts.split(",") if host.strip()),
        )
