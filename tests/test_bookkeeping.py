"""Tests for delta arithmetic and step records."""

import copy

from test_utils import make_block

from blockflow.engine import (
    REMOVED,
    BlockResult,
    RunBookkeeper,
    RunContext,
    StepError,
    StepStatus,
    calculate_delta,
    merge_delta,
)


class TestRemovedMarker:
    """The REMOVED sentinel."""

    def test_identity_survives_copies(self) -> None:
        assert copy.copy(REMOVED) is REMOVED
        assert copy.deepcopy({"k": REMOVED})["k"] is REMOVED

    def test_repr_and_truthiness(self) -> None:
        assert repr(REMOVED) == "REMOVED"
        assert not REMOVED


class TestCalculateDelta:
    """Shallow key-wise differences."""

    def test_added_changed_removed(self) -> None:
        before = {"a": 1, "b": 2, "c": 3}
        after = {"a": 1, "b": 20, "d": 4}
        assert calculate_delta(before, after) == {"b": 20, "d": 4, "c": REMOVED}

    def test_identical_is_empty(self) -> None:
        assert calculate_delta({"a": [1, {"b": 2}]}, {"a": [1, {"b": 2}]}) == {}

    def test_type_change_is_a_change(self) -> None:
        assert calculate_delta({"a": 1}, {"a": 1.0}) == {"a": 1.0}
        assert calculate_delta({"a": 1}, {"a": True}) == {"a": True}

    def test_nested_change_reports_whole_value(self) -> None:
        before = {"user": {"name": "a", "tags": ["x"]}}
        after = {"user": {"name": "a", "tags": ["x", "y"]}}
        assert calculate_delta(before, after) == {"user": {"name": "a", "tags": ["x", "y"]}}

    def test_round_trip_reconstructs_after(self) -> None:
        before = {"a": 1, "b": {"c": 2}, "gone": True}
        after = {"a": 2, "b": {"c": 3}, "new": None}
        merged = dict(before)
        merge_delta(merged, calculate_delta(before, after))
        assert merged == after


class TestMergeDelta:
    """Applying deltas."""

    def test_sets_and_removes(self) -> None:
        target = {"a": 1, "b": 2}
        merge_delta(target, {"a": 10, "b": REMOVED, "c": 3})
        assert target == {"a": 10, "c": 3}

    def test_removing_absent_key_is_noop(self) -> None:
        target = {"a": 1}
        merge_delta(target, {"zzz": REMOVED})
        assert target == {"a": 1}

    def test_none_delta(self) -> None:
        target = {"a": 1}
        merge_delta(target, None)
        assert target == {"a": 1}


class TestRunBookkeeper:
    """Step lifecycle."""

    def test_execution_order_is_monotonic(self) -> None:
        bookkeeper = RunBookkeeper()
        first = bookkeeper.create_step(make_block("a"))
        second = bookkeeper.create_deferred_step(make_block("b"), "iter_1")
        assert (first.execution_order, second.execution_order) == (0, 1)
        assert second.is_deferred and second.iteration_id == "iter_1"
        assert bookkeeper.get_execution_count() == 2

    def test_step_copies_logic(self) -> None:
        block = make_block("a", logic={"set": {"x": [1]}})
        step = RunBookkeeper().create_step(block)
        step.logic["set"]["x"].append(2)
        assert block.logic == {"set": {"x": [1]}}

    def test_complete_records_deltas(self) -> None:
        bookkeeper = RunBookkeeper()
        step = bookkeeper.create_step(make_block("a"))
        result = BlockResult(state_delta={"x": 1}, cache_delta={"c": 2}, meta={"took": 3})
        bookkeeper.complete_step(step, result)
        assert step.status == StepStatus.COMPLETED
        assert step.state_delta == {"x": 1}
        assert step.cache_delta == {"c": 2}
        assert step.meta == {"took": 3}
        assert step.ended_at is not None

    def test_complete_prefers_observed_state_delta(self) -> None:
        bookkeeper = RunBookkeeper()
        step = bookkeeper.create_step(make_block("a"))
        bookkeeper.complete_step(step, BlockResult(state_delta={"x": 1}), state_delta={"y": 2})
        assert step.state_delta == {"y": 2}

    def test_fail_and_skip(self) -> None:
        bookkeeper = RunBookkeeper()
        failed = bookkeeper.create_step(make_block("a"))
        skipped = bookkeeper.create_step(make_block("b"))
        bookkeeper.fail_step(failed, StepError(message="boom", block_id="id_a", block_name="a"))
        bookkeeper.skip_step(skipped)
        assert failed.status == StepStatus.FAILED and failed.error.message == "boom"
        assert skipped.status == StepStatus.SKIPPED and skipped.error is None

    def test_apply_deltas_touches_state_cache_event(self) -> None:
        context = RunContext(state={"a": 1}, cache={"c": 1}, event={"e": 1})
        RunBookkeeper.apply_deltas(
            context,
            BlockResult(
                state_delta={"a": REMOVED, "b": 2},
                cache_delta={"c": 5},
                event_delta={"e": REMOVED},
            ),
        )
        assert context.state == {"b": 2}
        assert context.cache == {"c": 5}
        assert context.event == {}

    def test_get_steps_returns_copies(self) -> None:
        bookkeeper = RunBookkeeper()
        bookkeeper.create_step(make_block("a"))
        steps = bookkeeper.get_steps()
        steps[0].block_name = "changed"
        assert bookkeeper.get_steps()[0].block_name == "a"
