"""Blog pipeline: real-world case discovery with source verification, then a cited post.

Flow::

    find_real_world_case -> validate_source -+-> find_real_world_case   (retry, failing company excluded)
                                             +-> validate_case -+-> generate_blog -> validate_citations -> final_validate
                                             |                  +-> final_validate (case rejected)
                                             +-> skip_topic -> final_validate     (attempts exhausted)
"""

from __future__ import annotations

import json
import operator
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any, TypedDict

from ..errors import GenerationFailure
from ..events import EventSink
from ..generation import ContentGenerator
from ..reachability import ReachabilityCheck, is_reachable
from ..settings import RuntimeSettings
from ..workflow import END, START, GateStatus, GraphDefinition, RunStatus, retry_router, status_router
from .base import ContentPipeline, PipelineResult

MIN_CASE_SCORE = 6
RECOMMENDED_SOURCES = 8
_CITATION_RE = re.compile(r"\[\d+\]")


class BlogState(TypedDict):
    question_id: str
    question: str
    answer: str
    explanation: str
    channel: str
    difficulty: str
    tags: list[str]
    companies: list[str]
    real_world_case: dict[str, Any] | None
    case_score: int
    case_reason: str
    case_attempts: int
    max_case_attempts: int
    source_valid: bool
    failed_companies: Annotated[list[str], operator.add]
    case_gate: str
    blog_content: dict[str, Any] | None
    generation_attempts: int
    max_generation_attempts: int
    citation_report: dict[str, Any]
    quality_issues: list[str]
    status: str
    reason: str | None
    error: str | None


@dataclass(frozen=True)
class BlogTopic:
    question_id: str
    question: str
    answer: str = ""
    explanation: str = ""
    channel: str = ""
    difficulty: str = "intermediate"
    tags: Sequence[str] = field(default_factory=tuple)
    companies: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BlogTopic":
        return cls(
            question_id=str(payload.get("question_id") or payload.get("id") or ""),
            question=str(payload["question"]),
            answer=str(payload.get("answer", "")),
            explanation=str(payload.get("explanation", "")),
            channel=str(payload.get("channel", "")),
            difficulty=str(payload.get("difficulty", "intermediate")),
            tags=tuple(payload.get("tags") or ()),
            companies=tuple(payload.get("companies") or ()),
        )


def citation_report(blog: Mapping[str, Any]) -> dict[str, Any]:
    sources = list(blog.get("sources") or [])
    body = json.dumps(blog.get("sections") or [], ensure_ascii=False)
    return {
        "sources": len(sources),
        "inline_citations": len(_CITATION_RE.findall(body)),
        "enough_sources": len(sources) >= RECOMMENDED_SOURCES,
    }


def quality_issues(blog: Mapping[str, Any]) -> list[str]:
    issues: list[str] = []
    if not blog.get("title"):
        issues.append("Missing title")
    if not blog.get("introduction"):
        issues.append("Missing introduction")
    if len(blog.get("sections") or []) < 2:
        issues.append("Need more sections")
    if not blog.get("conclusion"):
        issues.append("Missing conclusion")
    if len(blog.get("sources") or []) < 5:
        issues.append("Need more sources")
    return issues


class BlogPipeline(ContentPipeline):
    """Blog generation anchored on a real-world case whose source must be reachable."""

    name = "blog"
    content_field = "blog_content"

    def __init__(
        self,
        *,
        generator: ContentGenerator,
        settings: RuntimeSettings | None = None,
        events: EventSink | None = None,
        reachability: ReachabilityCheck = is_reachable,
    ) -> None:
        self.reachability = reachability
        super().__init__(generator=generator, settings=settings, events=events)

    def _build_graph(self) -> GraphDefinition:
        graph = GraphDefinition(self.name, BlogState)
        graph.add_node("find_real_world_case", self._find_real_world_case_node)
        graph.add_node("validate_source", self._validate_source_node)
        graph.add_node("skip_topic", self._skip_topic_node)
        graph.add_node("validate_case", self._validate_case_node)
        graph.add_node("generate_blog", self._generate_blog_node)
        graph.add_node("validate_citations", self._validate_citations_node)
        graph.add_node("final_validate", self._final_validate_node)

        graph.add_edge(START, "find_real_world_case")
        graph.add_edge("find_real_world_case", "validate_source")
        graph.add_router(
            "validate_source",
            retry_router(
                success=lambda state: bool(state["source_valid"]),
                counter="case_attempts",
                limit="max_case_attempts",
                retry="find_real_world_case",
                forward="validate_case",
                fallback="skip_topic",
            ),
            {"find_real_world_case", "validate_case", "skip_topic"},
        )
        graph.add_edge("skip_topic", "final_validate")
        graph.add_router(
            "validate_case",
            status_router("case_gate", {GateStatus.APPROVED: "generate_blog", GateStatus.SKIP: "final_validate"}),
            {"generate_blog", "final_validate"},
        )
        graph.add_router(
            "generate_blog",
            retry_router(
                success=lambda state: state["blog_content"] is not None,
                counter="generation_attempts",
                limit="max_generation_attempts",
                retry="generate_blog",
                forward="validate_citations",
                fallback="final_validate",
            ),
            {"generate_blog", "validate_citations", "final_validate"},
        )
        graph.add_edge("validate_citations", "final_validate")
        graph.add_edge("final_validate", END)
        return graph

    def initial_state(self, topic: BlogTopic) -> BlogState:
        return {
            "question_id": topic.question_id,
            "question": topic.question,
            "answer": topic.answer,
            "explanation": topic.explanation,
            "channel": topic.channel,
            "difficulty": topic.difficulty,
            "tags": list(topic.tags),
            "companies": list(topic.companies),
            "real_world_case": None,
            "case_score": 0,
            "case_reason": "",
            "case_attempts": 0,
            "max_case_attempts": self.settings.max_source_attempts,
            "source_valid": False,
            "failed_companies": [],
            "case_gate": "",
            "blog_content": None,
            "generation_attempts": 0,
            "max_generation_attempts": self.settings.max_generation_attempts,
            "citation_report": {},
            "quality_issues": [],
            "status": RunStatus.PENDING.value,
            "reason": None,
            "error": None,
        }

    def run(self, topic: BlogTopic) -> PipelineResult:
        return self.execute(self.initial_state(topic))

    def _find_real_world_case_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["case_attempts"] + 1
        excluded = list(state["failed_companies"])
        self.events.emit(
            "find_real_world_case", "attempt", attempt=attempt, limit=state["max_case_attempts"], excluded=excluded
        )
        params = {
            "question": state["question"],
            "answer": state["answer"],
            "explanation": state["explanation"],
            "channel": state["channel"],
            "tags": list(state["tags"]),
            "companies": list(state["companies"]),
            "exclude_companies": excluded,
        }
        try:
            result = self._generate("realWorldCase", params)
        except GenerationFailure as exc:
            self.events.warning("find_real_world_case", "generation_failed", attempt=attempt, error=exc.message)
            return {
                "real_world_case": None,
                "case_score": 0,
                "case_reason": f"Error finding case: {exc.message}",
                "case_attempts": attempt,
                "source_valid": False,
            }

        case = result.model_dump(mode="json") if result.company else None
        self.events.emit(
            "find_real_world_case",
            "case_found" if case else "no_case",
            company=result.company,
            score=result.interest_score,
            source_url=result.source_url,
        )
        return {
            "real_world_case": case,
            "case_score": result.interest_score,
            "case_reason": result.reason,
            "case_attempts": attempt,
            "source_valid": False,
        }

    def _exclusion(self, state: Mapping[str, Any], company: str | None) -> list[str]:
        # dedupe before appending: the reducer concatenates verbatim
        if not company or company in state["failed_companies"]:
            return []
        return [company]

    def _validate_source_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        case = state["real_world_case"]
        if case is None:
            return {"source_valid": False}
        company = case.get("company")
        url = case.get("source_url")
        if not url:
            self.events.warning("validate_source", "missing_source", company=company)
            return {"source_valid": False, "failed_companies": self._exclusion(state, company)}

        if self.reachability(url, self.settings.reachability_timeout_ms):
            self.events.emit("validate_source", "source_reachable", url=url)
            return {"source_valid": True}
        self.events.warning("validate_source", "source_unreachable", url=url, company=company)
        return {"source_valid": False, "failed_companies": self._exclusion(state, company)}

    def _skip_topic_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        failed = ", ".join(state["failed_companies"]) or "none"
        reason = (
            f"Could not find a real-world case with a reachable source after {state['case_attempts']} attempts. "
            f"Excluded companies: {failed}"
        )
        if state["case_reason"].startswith("Error finding case"):
            reason = f"{reason}. Last error: {state['case_reason']}"
        self.events.warning("skip_topic", "skipped", reason=reason)
        return {"status": RunStatus.SKIPPED.value, "reason": reason}

    def _validate_case_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        case = state["real_world_case"]
        score = state["case_score"]
        if case is None or score < MIN_CASE_SCORE:
            reason = state["case_reason"] or f"Case score {score} below threshold {MIN_CASE_SCORE}"
            self.events.emit("validate_case", "case_rejected", score=score)
            return {"case_gate": GateStatus.SKIP.value, "reason": reason}
        self.events.emit("validate_case", "case_approved", score=score, company=case.get("company"))
        return {"case_gate": GateStatus.APPROVED.value}

    def _generate_blog_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["generation_attempts"] + 1
        case = state["real_world_case"] or {}
        params = {
            "question": state["question"],
            "answer": state["answer"],
            "explanation": state["explanation"],
            "channel": state["channel"],
            "difficulty": state["difficulty"],
            "tags": list(state["tags"]),
            "real_world_case": dict(case),
        }
        try:
            result = self._generate("blog", params)
        except GenerationFailure as exc:
            self.events.warning("generate_blog", "generation_failed", attempt=attempt, error=exc.message)
            return {"generation_attempts": attempt, "error": str(exc)}

        content = result.model_dump(mode="json")
        content["real_world_example"] = {
            "company": case.get("company"),
            "title": case.get("title"),
            "summary": case.get("summary", ""),
            "source_url": case.get("source_url"),
        }
        self.events.emit(
            "generate_blog", "generated", title=content["title"], sections=len(content["sections"]), attempt=attempt
        )
        return {"blog_content": content, "generation_attempts": attempt, "error": None}

    def _validate_citations_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        report = citation_report(state["blog_content"] or {})
        if not report["enough_sources"]:
            self.events.warning(
                "validate_citations", "few_sources", sources=report["sources"], recommended=RECOMMENDED_SOURCES
            )
        return {"citation_report": report}

    def _final_validate_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        if state["status"] == RunStatus.SKIPPED.value or state["case_gate"] == GateStatus.SKIP.value:
            return {"status": RunStatus.SKIPPED.value}
        blog = state["blog_content"]
        if blog is None:
            error = state["error"] or "No blog content generated"
            self.events.warning("final_validate", "failed", error=error)
            return {"status": RunStatus.ERROR.value, "error": error}

        issues = quality_issues(blog)
        if issues:
            self.events.warning("final_validate", "quality_issues", issues=issues)
        return {"status": RunStatus.COMPLETED.value, "quality_issues": issues}
