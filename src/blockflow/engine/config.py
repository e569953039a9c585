"""Engine configuration with environment overrides.

Environment variables (values outside the valid range are clamped, unparsable values
fall back to the default):
    BLOCKFLOW_MAX_STEPS         executed-step budget per run (1-1000000, default 10000)
    BLOCKFLOW_MAX_DURATION_MS   wall-clock budget per run (1-86400000, default 300000)
"""

import logging
import os

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10_000
DEFAULT_MAX_DURATION_MS = 5 * 60 * 1000


def env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer environment variable clamped to [minimum, maximum]."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    return max(minimum, min(maximum, value))


class InterpreterConfig(BaseModel):
    """Limits and conventions of the orchestration loop."""

    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    max_duration_ms: int = Field(default=DEFAULT_MAX_DURATION_MS, ge=1)
    ui_type_prefix: str = Field(
        default="ui_", description="Block types with this prefix pause the run"
    )
    goto_type: str = Field(default="goto", description="Block type handled as a jump")

    @classmethod
    def from_env(cls) -> "InterpreterConfig":
        """Defaults overridden by BLOCKFLOW_* environment variables."""
        return cls(
            max_steps=env_int("BLOCKFLOW_MAX_STEPS", DEFAULT_MAX_STEPS, 1, 1_000_000),
            max_duration_ms=env_int(
                "BLOCKFLOW_MAX_DURATION_MS", DEFAULT_MAX_DURATION_MS, 1, 86_400_000
            ),
        )
