"""Tests for the handler registry and handler contract."""

from typing import ClassVar

import pytest
from test_utils import Recorder, make_block

from blockflow.engine import (
    BlockConfigurationError,
    BlockDispatcher,
    BlockHandler,
    BlockResult,
    ErrorStrategy,
    HandlerConfig,
    RunContext,
    UnknownBlockTypeError,
    create_default_dispatcher,
)


class GreetConfig(HandlerConfig):
    who: str


class GreetHandler(BlockHandler):
    type_name: ClassVar[str] = "greet"
    config_type: ClassVar[type[HandlerConfig]] = GreetConfig

    async def execute(  # type: ignore[override]
        self, config: GreetConfig, block, context: RunContext
    ) -> BlockResult:
        return BlockResult(state_delta={"greeting": f"hello {config.who}"})


class TestRegistry:
    """Registration and lookup."""

    def test_default_dispatcher_builtins(self) -> None:
        dispatcher = create_default_dispatcher()
        assert dispatcher.has_handler("code")
        assert dispatcher.has_handler("sleep")
        assert not dispatcher.has_handler("ui_form")

    def test_register_rejects_duplicates(self) -> None:
        dispatcher = BlockDispatcher()
        dispatcher.register(GreetHandler())
        with pytest.raises(ValueError, match="already registered"):
            dispatcher.register(GreetHandler())

    def test_register_handler_replaces(self) -> None:
        dispatcher = BlockDispatcher()
        first, second = Recorder(), Recorder()
        dispatcher.register_handler("record", first)
        dispatcher.register_handler("record", second)
        assert dispatcher.get_registered_types() == ["record"]

    def test_describe(self) -> None:
        described = {entry["type"]: entry for entry in create_default_dispatcher().describe()}
        assert described["code"]["security_level"] == "privileged"
        assert described["code"]["capabilities"]["runs_untrusted_code"] is True
        assert described["sleep"]["security_level"] == "trusted"


class TestExecute:
    """Dispatch and result coercion."""

    @pytest.mark.asyncio
    async def test_unknown_type(self) -> None:
        with pytest.raises(UnknownBlockTypeError) as exc_info:
            await BlockDispatcher().execute(make_block("x", type="mystery"), RunContext())
        assert exc_info.value.block_type == "mystery"
        assert 'register_handler("mystery"' in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_typed_handler_validates_logic(self) -> None:
        dispatcher = BlockDispatcher()
        dispatcher.register(GreetHandler())

        result = await dispatcher.execute(
            make_block("g", type="greet", logic={"who": "Bob"}), RunContext()
        )
        assert result.state_delta == {"greeting": "hello Bob"}

        with pytest.raises(BlockConfigurationError, match="who"):
            await dispatcher.execute(make_block("g", type="greet"), RunContext())

    @pytest.mark.asyncio
    async def test_plain_function_results_are_coerced(self) -> None:
        dispatcher = BlockDispatcher()

        async def returns_none(block, context):
            return None

        async def returns_dict(block, context):
            return {"state_delta": {"x": 1}}

        def synchronous(block, context):
            return BlockResult(cache_delta={"y": 2})

        dispatcher.register_handler("none", returns_none)
        dispatcher.register_handler("dict", returns_dict)
        dispatcher.register_handler("sync", synchronous)

        assert (await dispatcher.execute(make_block("a", type="none"), RunContext())).is_empty()
        dict_result = await dispatcher.execute(make_block("b", type="dict"), RunContext())
        assert dict_result.state_delta == {"x": 1}
        sync_result = await dispatcher.execute(make_block("c", type="sync"), RunContext())
        assert sync_result.cache_delta == {"y": 2}

    @pytest.mark.asyncio
    async def test_invalid_return_type(self) -> None:
        dispatcher = BlockDispatcher()

        async def returns_number(block, context):
            return 42

        dispatcher.register_handler("bad", returns_number)
        with pytest.raises(TypeError, match="expected BlockResult"):
            await dispatcher.execute(make_block("a", type="bad"), RunContext())

    def test_error_strategy(self) -> None:
        dispatcher = BlockDispatcher()
        assert dispatcher.get_error_strategy(make_block("a")) == ErrorStrategy.ABORT
        continuing = make_block("b", logic={"on_error": "continue"})
        assert dispatcher.get_error_strategy(continuing) == ErrorStrategy.CONTINUE
