from __future__ import annotations

import difflib
import random
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypedDict

from ..certifications import CertificationCatalog, CertificationCatalogCache
from ..errors import GenerationFailure
from ..events import EventSink
from ..generation import ContentGenerator
from ..settings import RuntimeSettings
from ..workflow import END, START, GateStatus, GraphDefinition, RunStatus, retry_router, status_router
from .base import ContentPipeline, PipelineResult

MIN_QUESTION_CHARS = 30
MIN_EXPLANATION_CHARS = 50
OPTION_COUNT = 4
DUPLICATE_SIMILARITY = 0.9

_WHITESPACE_RE = re.compile(r"\s+")


class CertificationState(TypedDict):
    certification_id: str
    domain: str
    domain_weight: int
    difficulty: str
    count: int
    existing_questions: list[str]
    domain_gate: str
    questions: list[dict[str, Any]]
    generation_attempts: int
    max_generation_attempts: int
    validated_questions: list[dict[str, Any]]
    rejected: list[dict[str, Any]]
    batch: dict[str, Any] | None
    status: str
    reason: str | None
    error: str | None


def weighted_choice(domains: Sequence[Any], rng: random.Random) -> Any:
    """Pick a domain with probability proportional to its exam weight."""
    total = sum(domain.weight for domain in domains)
    remaining = rng.random() * total
    for domain in domains:
        remaining -= domain.weight
        if remaining <= 0:
            return domain
    return domains[0]


def _is_correct(option: Mapping[str, Any]) -> bool:
    # generator payloads use camelCase, validated models dump snake_case
    return bool(option.get("is_correct", option.get("isCorrect")))


def question_issues(question: Mapping[str, Any]) -> list[str]:
    issues: list[str] = []
    text = (question.get("question") or "").strip()
    if len(text) < MIN_QUESTION_CHARS:
        issues.append("Question too short")
    if not text.endswith("?"):
        issues.append("Must end with ?")
    options = question.get("options") or []
    if len(options) != OPTION_COUNT:
        issues.append(f"Must have exactly {OPTION_COUNT} options")
    if sum(1 for option in options if _is_correct(option)) != 1:
        issues.append("Must have exactly 1 correct answer")
    if len(question.get("explanation") or "") < MIN_EXPLANATION_CHARS:
        issues.append("Explanation too short")
    return issues


def _normalized(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def is_near_duplicate(text: str, others: Sequence[str], threshold: float = DUPLICATE_SIMILARITY) -> bool:
    candidate = _normalized(text)
    for other in others:
        if difflib.SequenceMatcher(None, candidate, _normalized(other)).ratio() >= threshold:
            return True
    return False


class CertificationPipeline(ContentPipeline):
    """Exam-aligned multiple-choice questions for one certification domain."""

    name = "certification"
    content_field = "batch"

    def __init__(
        self,
        *,
        generator: ContentGenerator,
        settings: RuntimeSettings | None = None,
        events: EventSink | None = None,
        catalog: CertificationCatalogCache | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings if settings is not None else RuntimeSettings.from_env()
        self.catalog = catalog if catalog is not None else CertificationCatalogCache.from_path(
            settings.catalog_file, ttl_seconds=settings.catalog_ttl_seconds
        )
        self.rng = rng if rng is not None else random.Random()
        self.clock = clock
        super().__init__(generator=generator, settings=settings, events=events)

    def _build_graph(self) -> GraphDefinition:
        graph = GraphDefinition(self.name, CertificationState)
        graph.add_node("select_domain", self._select_domain_node)
        graph.add_node("generate_questions", self._generate_questions_node)
        graph.add_node("validate_quality", self._validate_quality_node)
        graph.add_node("deduplicate", self._deduplicate_node)
        graph.add_node("finalize", self._finalize_node)

        graph.add_edge(START, "select_domain")
        graph.add_router(
            "select_domain",
            status_router("domain_gate", {GateStatus.APPROVED: "generate_questions", GateStatus.ERROR: "finalize"}),
            {"generate_questions", "finalize"},
        )
        graph.add_router(
            "generate_questions",
            retry_router(
                success=lambda state: bool(state["questions"]),
                counter="generation_attempts",
                limit="max_generation_attempts",
                retry="generate_questions",
                forward="validate_quality",
                fallback="finalize",
            ),
            {"generate_questions", "validate_quality", "finalize"},
        )
        graph.add_edge("validate_quality", "deduplicate")
        graph.add_edge("deduplicate", "finalize")
        graph.add_edge("finalize", END)
        return graph

    def initial_state(
        self,
        certification_id: str,
        *,
        domain: str = "",
        difficulty: str = "intermediate",
        count: int = 5,
        existing_questions: Sequence[str] = (),
    ) -> CertificationState:
        return {
            "certification_id": certification_id,
            "domain": domain,
            "domain_weight": 0,
            "difficulty": difficulty,
            "count": count,
            "existing_questions": list(existing_questions),
            "domain_gate": "",
            "questions": [],
            "generation_attempts": 0,
            "max_generation_attempts": self.settings.max_generation_attempts,
            "validated_questions": [],
            "rejected": [],
            "batch": None,
            "status": RunStatus.PENDING.value,
            "reason": None,
            "error": None,
        }

    def run(
        self,
        certification_id: str,
        *,
        domain: str = "",
        difficulty: str = "intermediate",
        count: int = 5,
        existing_questions: Sequence[str] = (),
    ) -> PipelineResult:
        return self.execute(
            self.initial_state(
                certification_id,
                domain=domain,
                difficulty=difficulty,
                count=count,
                existing_questions=existing_questions,
            )
        )

    def certifications_for_channel(self, channel: str) -> list[str]:
        return self.catalog.get().for_channel(channel)

    def generate_for_channel(self, channel: str, *, count: int = 5, difficulty: str = "intermediate") -> list[PipelineResult]:
        """Run once per certification mapped to ``channel``; an unmapped channel yields no runs."""
        certifications = self.certifications_for_channel(channel)
        if not certifications:
            self.events.emit("generate_for_channel", "no_certifications", channel=channel)
            return []
        return [self.run(certification_id, count=count, difficulty=difficulty) for certification_id in certifications]

    def _current_catalog(self) -> CertificationCatalog:
        return self.catalog.get()

    def _select_domain_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        try:
            certification = self._current_catalog().get(state["certification_id"])
        except KeyError:
            error = f"Unknown certification: {state['certification_id']}"
            self.events.warning("select_domain", "unknown_certification", certification=state["certification_id"])
            return {"domain_gate": GateStatus.ERROR.value, "error": error}

        if state["domain"]:
            try:
                chosen = certification.domain(state["domain"])
            except KeyError as exc:
                return {"domain_gate": GateStatus.ERROR.value, "error": str(exc.args[0])}
        else:
            chosen = weighted_choice(certification.domains, self.rng)
        self.events.emit("select_domain", "selected", domain=chosen.id, weight=chosen.weight)
        return {"domain": chosen.id, "domain_weight": chosen.weight, "domain_gate": GateStatus.APPROVED.value}

    def _generate_questions_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["generation_attempts"] + 1
        certification = self._current_catalog().get(state["certification_id"])
        params = {
            "certification_id": state["certification_id"],
            "domain": state["domain"],
            "domain_name": certification.domain(state["domain"]).name,
            "domain_weight": state["domain_weight"],
            "difficulty": state["difficulty"],
            "count": state["count"],
        }
        try:
            result = self._generate("certification-question", params)
        except GenerationFailure as exc:
            self.events.warning("generate_questions", "generation_failed", attempt=attempt, error=exc.message)
            return {"generation_attempts": attempt, "error": str(exc)}
        questions = [question.model_dump(mode="json") for question in result.questions]
        if not questions:
            return {"generation_attempts": attempt, "error": "Generator returned no questions"}
        self.events.emit("generate_questions", "generated", attempt=attempt, count=len(questions))
        return {"questions": questions, "generation_attempts": attempt, "error": None}

    def _validate_quality_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        validated: list[dict[str, Any]] = []
        rejected: list[dict[str, Any]] = []
        for question in state["questions"]:
            issues = question_issues(question)
            if issues:
                rejected.append({"question": question.get("question", ""), "issues": issues})
            else:
                validated.append(dict(question))
        self.events.emit("validate_quality", "validated", passed=len(validated), rejected=len(rejected))
        return {"validated_questions": validated, "rejected": rejected}

    def _deduplicate_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        kept: list[dict[str, Any]] = []
        seen = list(state["existing_questions"])
        rejected = list(state["rejected"])
        for question in state["validated_questions"]:
            text = question["question"]
            if is_near_duplicate(text, seen):
                rejected.append({"question": text, "issues": ["Near-duplicate of an existing question"]})
                continue
            kept.append(question)
            seen.append(text)
        if len(kept) < len(state["validated_questions"]):
            self.events.emit("deduplicate", "duplicates_removed", removed=len(state["validated_questions"]) - len(kept))
        return {"validated_questions": kept, "rejected": rejected}

    def _finalize_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        if not state["validated_questions"]:
            error = state["error"] or "No questions passed quality validation"
            self.events.warning("finalize", "failed", error=error)
            return {"status": RunStatus.ERROR.value, "error": error}

        stamp = int(self.clock() * 1000)
        certification_id = state["certification_id"]
        domain = state["domain"]
        questions = [
            {
                **question,
                "id": f"{certification_id}-{domain}-{stamp}-{index}",
                "certification_id": certification_id,
                "domain": domain,
                "domain_weight": state["domain_weight"],
            }
            for index, question in enumerate(state["validated_questions"])
        ]
        batch = {
            "certification_id": certification_id,
            "domain": domain,
            "difficulty": state["difficulty"],
            "questions": questions,
            "rejected": list(state["rejected"]),
        }
        return {"validated_questions": questions, "batch": batch, "status": RunStatus.COMPLETED.value}
