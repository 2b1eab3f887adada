"""Coding challenge pipeline with sandbox-verified test cases.

Expected outputs proposed by the generator are replaced by what the sample
solution actually returns; cases whose execution fails keep their declared
output and carry the failure in ``test_results``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, TypedDict

from ..errors import GenerationFailure
from ..events import EventSink
from ..generation import ContentGenerator
from ..sandbox import SandboxHarness, TestCase, extract_entry_point, verify_test_cases
from ..sandbox.verifier import Harness
from ..settings import RuntimeSettings
from ..workflow import END, START, GateStatus, GraphDefinition, RunStatus, retry_router, status_router
from .base import ContentPipeline, PipelineResult

DEFAULT_HINTS = ["Think step by step"]


class CodingChallengeState(TypedDict):
    difficulty: str
    category: str
    companies: list[str]
    existing_titles: list[str]
    challenge: dict[str, Any] | None
    generation_attempts: int
    max_generation_attempts: int
    entry_point: str | None
    structure_gate: str
    test_results: list[dict[str, Any]]
    validated_test_cases: list[dict[str, Any]]
    status: str
    reason: str | None
    error: str | None


class CodingChallengePipeline(ContentPipeline):
    name = "coding_challenge"
    content_field = "challenge"

    def __init__(
        self,
        *,
        generator: ContentGenerator,
        settings: RuntimeSettings | None = None,
        events: EventSink | None = None,
        harness: Harness | None = None,
    ) -> None:
        settings = settings if settings is not None else RuntimeSettings.from_env()
        self.harness = harness if harness is not None else SandboxHarness(settings.sandbox_executable)
        super().__init__(generator=generator, settings=settings, events=events)

    def _build_graph(self) -> GraphDefinition:
        graph = GraphDefinition(self.name, CodingChallengeState)
        graph.add_node("generate_challenge", self._generate_challenge_node)
        graph.add_node("validate_structure", self._validate_structure_node)
        graph.add_node("execute_tests", self._execute_tests_node)
        graph.add_node("validate_output", self._validate_output_node)

        graph.add_edge(START, "generate_challenge")
        graph.add_router(
            "generate_challenge",
            retry_router(
                success=lambda state: state["challenge"] is not None,
                counter="generation_attempts",
                limit="max_generation_attempts",
                retry="generate_challenge",
                forward="validate_structure",
                fallback="validate_output",
            ),
            {"generate_challenge", "validate_structure", "validate_output"},
        )
        graph.add_router(
            "validate_structure",
            status_router("structure_gate", {GateStatus.APPROVED: "execute_tests", GateStatus.ERROR: "validate_output"}),
            {"execute_tests", "validate_output"},
        )
        graph.add_edge("execute_tests", "validate_output")
        graph.add_edge("validate_output", END)
        return graph

    def initial_state(
        self,
        *,
        difficulty: str = "medium",
        category: str = "arrays",
        companies: Sequence[str] = (),
        existing_titles: Sequence[str] = (),
    ) -> CodingChallengeState:
        return {
            "difficulty": difficulty,
            "category": category,
            "companies": list(companies),
            "existing_titles": list(existing_titles),
            "challenge": None,
            "generation_attempts": 0,
            "max_generation_attempts": self.settings.max_generation_attempts,
            "entry_point": None,
            "structure_gate": "",
            "test_results": [],
            "validated_test_cases": [],
            "status": RunStatus.PENDING.value,
            "reason": None,
            "error": None,
        }

    def run(
        self,
        *,
        difficulty: str = "medium",
        category: str = "arrays",
        companies: Sequence[str] = (),
        existing_titles: Sequence[str] = (),
    ) -> PipelineResult:
        return self.execute(
            self.initial_state(
                difficulty=difficulty, category=category, companies=companies, existing_titles=existing_titles
            )
        )

    def _generate_challenge_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["generation_attempts"] + 1
        params = {
            "difficulty": state["difficulty"],
            "category": state["category"],
            "companies": list(state["companies"]),
            "existing_titles": list(state["existing_titles"]),
        }
        try:
            result = self._generate("coding-challenge", params)
        except GenerationFailure as exc:
            self.events.warning("generate_challenge", "generation_failed", attempt=attempt, error=exc.message)
            return {"generation_attempts": attempt, "error": str(exc)}
        self.events.emit("generate_challenge", "generated", attempt=attempt, title=result.title)
        return {"challenge": result.model_dump(mode="json"), "generation_attempts": attempt, "error": None}

    def _validate_structure_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        challenge = state["challenge"] or {}
        problems: list[str] = []
        existing = {title.strip().lower() for title in state["existing_titles"]}
        if challenge.get("title", "").strip().lower() in existing:
            problems.append(f"Duplicate title: {challenge['title']}")
        if len(challenge.get("test_cases") or []) < 2:
            problems.append("Need at least 2 test cases")

        entry_point = challenge.get("entry_point") or extract_entry_point(challenge.get("sample_solution", ""))
        if not entry_point:
            problems.append("Sample solution defines no top-level function")

        if problems:
            error = "; ".join(problems)
            self.events.warning("validate_structure", "rejected", problems=problems)
            return {"structure_gate": GateStatus.ERROR.value, "error": error}
        return {"structure_gate": GateStatus.APPROVED.value, "entry_point": entry_point}

    def _execute_tests_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        challenge = state["challenge"] or {}
        cases = [TestCase.from_payload(case, index=index) for index, case in enumerate(challenge["test_cases"])]
        report = verify_test_cases(
            challenge["sample_solution"],
            state["entry_point"],
            cases,
            self.harness,
            self.settings.sandbox_timeout_ms,
        )
        self.events.emit(
            "execute_tests",
            "verified",
            executed=report.executed,
            corrected=report.mismatched,
            failed=report.failed,
        )
        return {
            "test_results": [
                {
                    "id": result.id,
                    "input": result.input,
                    "expected": result.declared_output,
                    "actual": result.actual_output,
                    "match": result.match,
                    "error": result.error,
                    "error_kind": result.error_kind,
                }
                for result in report.results
            ],
            "validated_test_cases": [case.to_payload() for case in report.test_cases],
        }

    def _validate_output_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        challenge = state["challenge"]
        if state["error"] or challenge is None:
            error = state["error"] or "No challenge generated"
            self.events.warning("validate_output", "failed", error=error)
            return {"status": RunStatus.ERROR.value, "error": error}

        test_cases = [
            {
                "id": case.get("id") or str(index + 1),
                "input": case["input"],
                "expected_output": case["expected_output"],
                "description": case.get("description", ""),
            }
            for index, case in enumerate(state["validated_test_cases"] or challenge["test_cases"])
        ]
        final = {
            **challenge,
            "entry_point": state["entry_point"],
            "test_cases": test_cases,
            "tags": list(challenge.get("tags") or [state["category"]]),
            "hints": list(challenge.get("hints") or DEFAULT_HINTS),
            "companies": list(challenge.get("companies") or state["companies"]),
        }
        return {"challenge": final, "status": RunStatus.COMPLETED.value}
