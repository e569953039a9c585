"""Tests for run result serialisation and secret redaction."""

from datetime import datetime

from blockflow.engine import (
    REMOVED,
    RunContext,
    RunMetadata,
    RunResult,
    RunStatus,
    SecretRedactor,
)
from blockflow.engine.bookkeeping import Step, StepError
from blockflow.engine.block_status import StepStatus
from blockflow.engine.run_result import jsonable


def make_step(**fields) -> Step:
    fields.setdefault("status", StepStatus.COMPLETED)
    return Step(
        block_id="id_a",
        block_name="a",
        block_type="code",
        block_order=0,
        execution_order=0,
        **fields,
    )


class TestJsonable:
    def test_removed_becomes_null(self) -> None:
        assert jsonable({"gone": REMOVED, "kept": 1}) == {"gone": None, "kept": 1}

    def test_nested_values(self) -> None:
        value = {
            "status": RunStatus.COMPLETED,
            "when": datetime(2024, 1, 2, 3, 4, 5),
            "tags": ("a", "b"),
            "meta": RunMetadata(id="run_1"),
            1: object.__name__,
        }
        result = jsonable(value)
        assert result["status"] == "completed"
        assert result["when"] == "2024-01-02T03:04:05"
        assert result["tags"] == ["a", "b"]
        assert result["meta"]["id"] == "run_1"
        assert result["1"] == "object"


class TestToResponse:
    def test_completed(self) -> None:
        context = RunContext(state={"total": 3}, run=RunMetadata(id="run_1"))
        result = RunResult.completed([make_step(state_delta={"x": REMOVED})], context, 12)

        response = result.to_response()

        assert response["status"] == "completed"
        assert response["run_id"] == "run_1"
        assert response["duration_ms"] == 12
        assert response["state"] == {"total": 3}
        assert response["steps"][0]["state_delta"] == {"x": None}
        assert response["steps"][0]["status"] == "completed"
        assert "error" not in response

    def test_failed_without_context(self) -> None:
        result = RunResult.failed('Block "a" failed: boom', [], RunContext(), 5)
        response = result.to_response(include_context=False)
        assert response["error"] == 'Block "a" failed: boom'
        assert "state" not in response

    def test_awaiting_action(self) -> None:
        result = RunResult.awaiting_action([], RunContext(), 1, 2, "id_approve", "approve")
        response = result.to_response()
        assert response["status"] == "awaiting_action"
        assert response["resume_index"] == 2
        assert response["paused_block"] == "approve"

    def test_cancelled_message(self) -> None:
        assert RunResult.cancelled([], RunContext(), 1).error_message == "Run cancelled"
        result = RunResult.cancelled([], RunContext(), 1, reason="user request")
        assert result.error_message == "Run cancelled: user request"

    def test_context_secrets_redacted(self) -> None:
        secret = "sk-live-abcdef123456"
        context = RunContext(secrets={"api_key": secret}, state={"echo": f"key={secret}"})
        step = make_step(
            status=StepStatus.FAILED,
            error=StepError(message=f"401 for {secret}", block_id="id_a", block_name="a"),
        )
        response = RunResult.failed(f"failed with {secret}", [step], context, 1).to_response()

        assert secret not in str(response)
        assert response["state"]["echo"] == "key=***REDACTED***"
        assert response["steps"][0]["error"]["message"] == "401 for ***REDACTED***"

    def test_extra_redactor(self) -> None:
        context = RunContext(state={"token": "tok-0123456789"})
        response = RunResult.completed([], context, 1).to_response(
            redactor=SecretRedactor({"t": "tok-0123456789"})
        )
        assert response["state"]["token"] == "***REDACTED***"


class TestSecretRedactor:
    def test_short_values_ignored(self) -> None:
        redactor = SecretRedactor({"pin": "1234", "none": None})
        assert redactor.redact({"pin": "1234"}) == {"pin": "1234"}

    def test_longest_secret_first(self) -> None:
        redactor = SecretRedactor({"short": "abcdefgh", "long": "abcdefgh-ijkl"})
        assert redactor.redact("value abcdefgh-ijkl") == "value ***REDACTED***"

    def test_structure_preserved(self) -> None:
        redactor = SecretRedactor({"k": "secret-value-1"})
        data = {"list": ["secret-value-1", 3], "tuple": ("secret-value-1",), "n": None}
        assert redactor.redact(data) == {
            "list": ["***REDACTED***", 3],
            "tuple": ("***REDACTED***",),
            "n": None,
        }
