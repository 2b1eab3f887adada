"""Self-correcting verification of generated test cases.

The generator's expected output is a hypothesis; the reference solution's
executed output is ground truth. On disagreement the executed output replaces
the declared one and ``match=False`` records what verification observed. When
execution fails the declared output is kept and the failure is recorded next
to it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Protocol

from ..errors import ExecutionFailure
from .harness import ExecutionResult

logger = logging.getLogger(__name__)


class Harness(Protocol):
    def execute(self, source_code: str, entry_point: str, serialized_args: str, timeout_ms: int) -> ExecutionResult:
        ...


@dataclass(frozen=True)
class TestCase:
    __test__ = False

    id: str
    input: str
    expected_output: str
    description: str = ""
    actual_output: str | None = None
    match: bool | None = None
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, index: int = 0) -> "TestCase":
        expected = payload.get("expected_output", payload.get("expectedOutput", ""))
        return cls(
            id=str(payload.get("id") or index + 1),
            input=_as_text(payload.get("input", "")),
            expected_output=_as_text(expected),
            description=str(payload.get("description", "")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    id: str
    input: str
    declared_output: str
    actual_output: str | None
    match: bool | None
    error: str | None = None
    error_kind: str | None = None

    @property
    def executed(self) -> bool:
        return self.error is None


@dataclass
class VerificationReport:
    test_cases: list[TestCase] = field(default_factory=list)
    results: list[TestResult] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return sum(1 for result in self.results if result.executed)

    @property
    def mismatched(self) -> int:
        return sum(1 for result in self.results if result.match is False)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.executed)

    @property
    def all_executed(self) -> bool:
        return bool(self.results) and self.failed == 0


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _same_value(left: Any, right: Any) -> bool:
    # JSON equality without Python's bool/int coercion (true != 1)
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(_same_value(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(_same_value(left[key], right[key]) for key in left)
    return type(left) is type(right) and left == right


def outputs_match(declared: str, result: ExecutionResult) -> bool:
    """Compare a declared output against an execution result.

    Decoded JSON values are compared when ``declared`` parses as JSON; otherwise
    the stripped text is compared with the canonical output and, for string
    results, with the bare string.
    """
    text = declared.strip()
    try:
        decoded = json.loads(text)
    except ValueError:
        if isinstance(result.value, str) and text == result.value:
            return True
        return text == result.output
    return _same_value(decoded, result.value)


def verify_test_cases(
    source_code: str,
    entry_point: str,
    cases: Iterable[TestCase],
    harness: Harness,
    timeout_ms: int,
) -> VerificationReport:
    """Execute ``source_code`` against every case and return corrected cases plus results."""
    report = VerificationReport()
    for case in cases:
        try:
            result = harness.execute(source_code, entry_point, case.input, timeout_ms)
        except ExecutionFailure as exc:
            logger.info("Test case %s could not be executed (%s): %s", case.id, exc.kind, exc.message)
            report.test_cases.append(replace(case, actual_output=None, match=None, error=str(exc)))
            report.results.append(
                TestResult(
                    id=case.id,
                    input=case.input,
                    declared_output=case.expected_output,
                    actual_output=None,
                    match=None,
                    error=exc.message,
                    error_kind=exc.kind,
                )
            )
            continue

        matched = outputs_match(case.expected_output, result)
        if not matched:
            logger.info(
                "Test case %s declared %r but the solution returned %s; keeping the executed output",
                case.id,
                case.expected_output,
                result.output,
            )
        report.test_cases.append(
            replace(case, expected_output=result.output, actual_output=result.output, match=matched, error=None)
        )
        report.results.append(
            TestResult(
                id=case.id,
                input=case.input,
                declared_output=case.expected_output,
                actual_output=result.output,
                match=matched,
            )
        )
    return report
