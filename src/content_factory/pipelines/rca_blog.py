from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypedDict

from ..errors import GenerationFailure
from ..workflow import END, START, GateStatus, GraphDefinition, RunStatus, retry_router, status_router
from .base import ContentPipeline, PipelineResult

MIN_TITLE_CHARS = 10
MIN_DESCRIPTION_CHARS = 50


class RcaBlogState(TypedDict):
    company: str
    search_queries: list[str]
    incidents: list[dict[str, Any]]
    search_attempts: int
    max_search_attempts: int
    incident_gate: str
    selected_incident: dict[str, Any] | None
    blog_content: dict[str, Any] | None
    generation_attempts: int
    max_generation_attempts: int
    quality_issues: list[str]
    status: str
    reason: str | None
    error: str | None


def search_queries(company: str) -> list[str]:
    return [
        f"{company} engineering blog postmortem incident",
        f"{company} outage root cause analysis",
        f"{company} system failure post-incident review",
        f"{company} production incident lessons learned",
    ]


def has_detail(incident: Mapping[str, Any]) -> bool:
    return (
        len(incident.get("title") or "") > MIN_TITLE_CHARS
        and len(incident.get("description") or "") > MIN_DESCRIPTION_CHARS
    )


def incident_score(incident: Mapping[str, Any]) -> int:
    """Rank incidents by how much material they give the writer."""
    return (
        len(incident.get("title") or "")
        + 2 * len(incident.get("description") or "")
        + 3 * len(incident.get("lesson") or "")
        + (50 if incident.get("source_url") else 0)
    )


class RcaBlogPipeline(ContentPipeline):
    """Root-cause-analysis blog built from a real, published incident report."""

    name = "rca_blog"
    content_field = "blog_content"

    def _build_graph(self) -> GraphDefinition:
        graph = GraphDefinition(self.name, RcaBlogState)
        graph.add_node("search_incidents", self._search_incidents_node)
        graph.add_node("validate_incidents", self._validate_incidents_node)
        graph.add_node("select_incident", self._select_incident_node)
        graph.add_node("generate_blog", self._generate_blog_node)
        graph.add_node("validate_output", self._validate_output_node)

        graph.add_edge(START, "search_incidents")
        graph.add_router(
            "search_incidents",
            retry_router(
                success=lambda state: bool(state["incidents"]),
                counter="search_attempts",
                limit="max_search_attempts",
                retry="search_incidents",
                forward="validate_incidents",
                fallback="validate_output",
            ),
            {"search_incidents", "validate_incidents", "validate_output"},
        )
        graph.add_router(
            "validate_incidents",
            status_router("incident_gate", {GateStatus.APPROVED: "select_incident", GateStatus.ERROR: "validate_output"}),
            {"select_incident", "validate_output"},
        )
        graph.add_edge("select_incident", "generate_blog")
        graph.add_router(
            "generate_blog",
            retry_router(
                success=lambda state: state["blog_content"] is not None,
                counter="generation_attempts",
                limit="max_generation_attempts",
                retry="generate_blog",
                forward="validate_output",
                fallback="validate_output",
            ),
            {"generate_blog", "validate_output"},
        )
        graph.add_edge("validate_output", END)
        return graph

    def initial_state(self, company: str) -> RcaBlogState:
        return {
            "company": company,
            "search_queries": [],
            "incidents": [],
            "search_attempts": 0,
            "max_search_attempts": self.settings.max_search_attempts,
            "incident_gate": "",
            "selected_incident": None,
            "blog_content": None,
            "generation_attempts": 0,
            "max_generation_attempts": self.settings.max_generation_attempts,
            "quality_issues": [],
            "status": RunStatus.PENDING.value,
            "reason": None,
            "error": None,
        }

    def run(self, company: str) -> PipelineResult:
        return self.execute(self.initial_state(company))

    def _search_incidents_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["search_attempts"] + 1
        queries = search_queries(state["company"])
        try:
            result = self._generate("rcaSearch", {"company": state["company"], "search_queries": queries})
        except GenerationFailure as exc:
            self.events.warning("search_incidents", "search_failed", attempt=attempt, error=exc.message)
            return {"search_queries": queries, "incidents": [], "search_attempts": attempt, "error": str(exc)}
        incidents = [incident.model_dump(mode="json") for incident in result.incidents]
        self.events.emit("search_incidents", "searched", attempt=attempt, found=len(incidents))
        return {"search_queries": queries, "incidents": incidents, "search_attempts": attempt, "error": None}

    def _validate_incidents_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        detailed = [incident for incident in state["incidents"] if has_detail(incident)]
        if not detailed:
            self.events.warning("validate_incidents", "no_detailed_incidents", found=len(state["incidents"]))
            return {"incident_gate": GateStatus.ERROR.value, "error": "No incidents with sufficient detail"}
        return {"incident_gate": GateStatus.APPROVED.value, "incidents": detailed}

    def _select_incident_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        # max() keeps the first of equally scored incidents
        selected = max(state["incidents"], key=incident_score)
        self.events.emit("select_incident", "selected", title=selected.get("title"), score=incident_score(selected))
        return {"selected_incident": {**selected, "score": incident_score(selected)}}

    def _generate_blog_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["generation_attempts"] + 1
        params = {"company": state["company"], "incident": dict(state["selected_incident"] or {})}
        try:
            result = self._generate("rcaBlog", params)
        except GenerationFailure as exc:
            self.events.warning("generate_blog", "generation_failed", attempt=attempt, error=exc.message)
            return {"generation_attempts": attempt, "error": str(exc)}
        content = result.model_dump(mode="json")
        content["incident"] = dict(state["selected_incident"] or {})
        return {"blog_content": content, "generation_attempts": attempt, "error": None}

    def _validate_output_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        blog = state["blog_content"]
        if blog is None:
            error = state["error"] or f"No incidents found for {state['company']}"
            self.events.warning("validate_output", "failed", error=error)
            return {"status": RunStatus.ERROR.value, "error": error}
        issues: list[str] = []
        if not blog.get("title"):
            issues.append("Missing title")
        if not blog.get("introduction"):
            issues.append("Missing introduction")
        if len(blog.get("sections") or []) < 2:
            issues.append("Need more sections")
        if issues:
            self.events.warning("validate_output", "quality_issues", issues=issues)
        return {"status": RunStatus.COMPLETED.value, "quality_issues": issues}
