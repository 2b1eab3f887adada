from __future__ import annotations

import sys
from pathlib import Path

from content_factory.errors import ExecutionFailure
from content_factory.sandbox import (
    ExecutionResult,
    SandboxHarness,
    TestCase,
    outputs_match,
    verify_test_cases,
)

INCREMENT = "def increment(n):\n    return n + 1\n"


class ScriptedHarness:
    def __init__(self, outcomes: dict[str, object]) -> None:
        self.outcomes = outcomes
        self.calls: list[str] = []

    def execute(self, source_code: str, entry_point: str, serialized_args: str, timeout_ms: int) -> ExecutionResult:
        self.calls.append(serialized_args)
        outcome = self.outcomes[serialized_args]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome  # type: ignore[return-value]


def test_wrong_declared_output_is_replaced_by_executed_output(tmp_path: Path) -> None:
    cases = [
        TestCase.from_payload({"input": "4", "expected_output": "5"}, index=0),
        TestCase.from_payload({"input": "5", "expectedOutput": "5"}, index=1),
    ]
    report = verify_test_cases(INCREMENT, "increment", cases, SandboxHarness(sys.executable, temp_dir=tmp_path), 10_000)

    first, second = report.test_cases
    assert (first.id, first.expected_output, first.match) == ("1", "5", True)
    assert (second.id, second.expected_output, second.actual_output, second.match) == ("2", "6", "6", False)
    assert report.results[1].declared_output == "5"
    assert report.executed == 2
    assert report.mismatched == 1
    assert report.all_executed


def test_failed_execution_keeps_declared_output() -> None:
    harness = ScriptedHarness(
        {
            "1": ExecutionResult(value=2, output="2"),
            "[]": ExecutionFailure("exit", "exit code 1: IndexError"),
        }
    )
    cases = [
        TestCase(id="a", input="1", expected_output="2"),
        TestCase(id="b", input="[]", expected_output="0"),
    ]
    report = verify_test_cases(INCREMENT, "increment", cases, harness, 1_000)

    kept = report.test_cases[1]
    assert kept.expected_output == "0"
    assert kept.actual_output is None
    assert kept.match is None
    assert "IndexError" in (kept.error or "")
    assert report.results[1].error_kind == "exit"
    assert report.failed == 1
    assert not report.all_executed
    assert harness.calls == ["1", "[]"]


def test_payload_round_trip_drops_unset_fields() -> None:
    case = TestCase.from_payload({"id": 7, "input": [1, 2], "expected_output": {"ok": True}})
    assert case.id == "7"
    assert case.input == "[1,2]"
    assert case.expected_output == '{"ok":true}'
    assert case.to_payload() == {"id": "7", "input": "[1,2]", "expected_output": '{"ok":true}', "description": ""}


def test_outputs_match_compares_json_values() -> None:
    assert outputs_match("[1, 2]", ExecutionResult(value=[1, 2], output="[1,2]"))
    assert outputs_match('{"b": 1, "a": 2}', ExecutionResult(value={"a": 2, "b": 1}, output='{"a":2,"b":1}'))
    assert outputs_match("2.0", ExecutionResult(value=2, output="2"))
    assert not outputs_match("true", ExecutionResult(value=1, output="1"))
    assert not outputs_match("[1, 2]", ExecutionResult(value=[2, 1], output="[2,1]"))


def test_outputs_match_accepts_bare_strings() -> None:
    assert outputs_match("hello", ExecutionResult(value="hello", output='"hello"'))
    assert outputs_match('"hello"', ExecutionResult(value="hello", output='"hello"'))
    assert not outputs_match("hello", ExecutionResult(value="world", output='"world"'))
