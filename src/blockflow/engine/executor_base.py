"""Handler contract and block dispatcher.

Handlers are async callables `(block, context) -> BlockResult`. Most built-in handlers
subclass BlockHandler, which validates the block's logic bag against a per-type
configuration model before running, so each block type has one concrete
configuration shape at the boundary while the orchestrator stays generic.

Key principles:
- Handlers are stateless (one instance serves every block of its type)
- Handlers return a BlockResult (or None / a plain dict) and raise on failure
- Changes to the run context travel only through BlockResult deltas
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from .block import Block, BlockResult
from .block_status import ErrorStrategy
from .context import RunContext
from .exceptions import BlockConfigurationError, UnknownBlockTypeError

logger = logging.getLogger(__name__)

HandlerFunc = Callable[[Block, RunContext], Awaitable[BlockResult | Mapping[str, Any] | None]]


class HandlerSecurityLevel(Enum):
    """Security level classification for handlers.

    Used for audit output (`python -m blockflow handlers`).
    """

    SAFE = "safe"  # Pure context transformation
    TRUSTED = "trusted"  # Timed waits, platform adapters
    PRIVILEGED = "privileged"  # Runs supplied code or reaches the network


class HandlerCapabilities(BaseModel):
    """Capability flags declared by a handler for security audit."""

    runs_untrusted_code: bool = False
    can_network: bool = False
    can_modify_state: bool = False


class HandlerConfig(BaseModel):
    """Base configuration model for a block's logic bag.

    Keys not declared by the handler's model are ignored; `on_error` is shared by
    every block type.
    """

    model_config = ConfigDict(extra="ignore")

    on_error: ErrorStrategy = Field(
        default=ErrorStrategy.ABORT,
        description="What happens to the run when this block fails",
    )


class BlockHandler(ABC):
    """Base class for typed block handlers.

    Subclasses must:
    1. Set class attributes (type_name, config_type)
    2. Implement execute()
    3. Optionally override the security attributes

    Example:
        class SleepHandler(BlockHandler):
            type_name = "sleep"
            config_type = SleepConfig

            async def execute(self, config, block, context) -> BlockResult:
                await asyncio.sleep(config.sleep_duration_ms / 1000)
                return BlockResult()
    """

    type_name: ClassVar[str]
    config_type: ClassVar[type[HandlerConfig]] = HandlerConfig

    security_level: ClassVar[HandlerSecurityLevel] = HandlerSecurityLevel.SAFE
    capabilities: ClassVar[HandlerCapabilities] = HandlerCapabilities()

    async def __call__(self, block: Block, context: RunContext) -> BlockResult:
        config = self.parse_config(block)
        return await self.execute(config, block, context)

    def parse_config(self, block: Block) -> HandlerConfig:
        """Validate the block's logic against config_type.

        Raises:
            BlockConfigurationError: If the logic does not match the model
        """
        try:
            return self.config_type.model_validate(block.logic)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'logic'}: {err['msg']}"
                for err in e.errors()
            )
            raise BlockConfigurationError(block.type, block.name, details) from e

    @abstractmethod
    async def execute(
        self, config: HandlerConfig, block: Block, context: RunContext
    ) -> BlockResult:
        """Run the block.

        Args:
            config: Validated configuration (instance of config_type)
            block: The block being executed
            context: Live run context; read freely, change only via the returned deltas

        Returns:
            BlockResult describing the changes to apply

        Raises:
            Exception: Any exception marks the step failed
        """

    def get_config_schema(self) -> dict[str, Any]:
        """JSON Schema of the handler's logic bag."""
        return self.config_type.model_json_schema()

    def get_capabilities(self) -> dict[str, Any]:
        """Handler capabilities for security audit."""
        return {
            "type": self.type_name,
            "security_level": self.security_level.value,
            "capabilities": self.capabilities.model_dump(),
        }


class BlockDispatcher(BaseModel):
    """
    Registry of block handlers.

    Maps block-type identifiers to handlers, invokes the matching handler for a block
    and reports the block's error strategy.
    """

    model_config = {"arbitrary_types_allowed": True}

    _handlers: dict[str, HandlerFunc] = PrivateAttr(default_factory=dict)

    def register(self, handler: BlockHandler) -> None:
        """Register a typed handler under handler.type_name."""
        if handler.type_name in self._handlers:
            raise ValueError(f"Handler already registered: {handler.type_name}")
        self._handlers[handler.type_name] = handler

    def register_handler(self, block_type: str, handler: HandlerFunc) -> None:
        """Register (or replace) the handler for `block_type`."""
        if block_type in self._handlers:
            logger.debug(f"Replacing handler for block type '{block_type}'")
        self._handlers[block_type] = handler

    def has_handler(self, block_type: str) -> bool:
        """Check if a handler is registered for `block_type`."""
        return block_type in self._handlers

    def get_registered_types(self) -> list[str]:
        """List registered block types."""
        return list(self._handlers.keys())

    def describe(self) -> list[dict[str, Any]]:
        """Capabilities of every registered handler, for audit output."""
        described = []
        for block_type, handler in self._handlers.items():
            if isinstance(handler, BlockHandler):
                described.append(handler.get_capabilities())
            else:
                described.append({"type": block_type, "security_level": "unknown"})
        return described

    async def execute(self, block: Block, context: RunContext) -> BlockResult:
        """Invoke the handler registered for block.type.

        Raises:
            UnknownBlockTypeError: If no handler matches the block's type
            Exception: Whatever the handler raises
        """
        handler = self._handlers.get(block.type)
        if handler is None:
            raise UnknownBlockTypeError(block.type, self.get_registered_types())

        result = handler(block, context)
        if inspect.isawaitable(result):
            result = await result
        return self._coerce(result)

    def get_error_strategy(self, block: Block) -> ErrorStrategy:
        """Error strategy from the block's logic (`on_error`), default abort."""
        if block.logic.get("on_error") == ErrorStrategy.CONTINUE.value:
            return ErrorStrategy.CONTINUE
        return ErrorStrategy.ABORT

    @staticmethod
    def _coerce(result: Any) -> BlockResult:
        if result is None:
            return BlockResult()
        if isinstance(result, BlockResult):
            return result
        if isinstance(result, Mapping):
            return BlockResult.model_validate(dict(result))
        raise TypeError(
            f"Handler returned {type(result).__name__}; expected BlockResult, dict or None"
        )


def create_default_dispatcher(sandbox_policy: Any = None) -> BlockDispatcher:
    """Create a BlockDispatcher with the built-in handlers registered.

    Built-ins are the script handler (`code`) and the timed wait (`sleep`). Platform
    handlers (HTTP, AI, UI rendering, ...) are registered by the embedding system.

    Args:
        sandbox_policy: Optional SandboxPolicy for the script handler

    Example:
        dispatcher = create_default_dispatcher()
        dispatcher.register_handler("notify", notify_handler)
        interpreter = Interpreter(dispatcher=dispatcher)
    """
    from .executors_code import CodeHandler
    from .executors_flow import SleepHandler

    dispatcher = BlockDispatcher()
    dispatcher.register(CodeHandler(policy=sandbox_policy))
    dispatcher.register(SleepHandler())
    return dispatcher
