from __future__ import annotations

from conftest import FakeGenerator

from content_factory.errors import GenerationFailure
from content_factory.pipelines import RcaBlogPipeline
from content_factory.pipelines.rca_blog import has_detail, incident_score

SHORT = {"title": "Outage", "description": "It broke."}
DNS = {
    "title": "Global DNS resolution failure",
    "description": "A configuration push removed the resolver pool for every region at once, failing all lookups.",
    "lesson": "Stage configuration pushes.",
    "sourceUrl": "https://status.example/dns",
}
DISK = {
    "title": "Storage cluster ran out of disk",
    "description": "Compaction fell behind after a traffic spike and the cluster refused writes for an hour.",
}
RCA_BLOG = {
    "title": "The day DNS disappeared",
    "introduction": "Every lookup failed for 42 minutes.",
    "sections": [
        {"heading": "Timeline", "content": "At 09:14 the push began."},
        {"heading": "Root cause", "content": "An empty resolver list was valid config."},
    ],
    "conclusion": "Validate configs semantically.",
}


def test_best_detailed_incident_is_selected_and_written(settings, events) -> None:
    generator = FakeGenerator({"rcaSearch": [[SHORT, DISK, DNS]], "rcaBlog": [RCA_BLOG]})
    result = RcaBlogPipeline(generator=generator, settings=settings, events=events).run("Acme")

    assert result.completed
    assert result.content["incident"]["title"] == DNS["title"]
    kept = result.run.final_state["incidents"]
    assert [incident["title"] for incident in kept] == [DISK["title"], DNS["title"]]
    assert all(has_detail(incident) for incident in kept)
    assert generator.calls_for("rcaBlog")[0]["incident"]["source_url"] == DNS["sourceUrl"]
    assert result.run.final_state["quality_issues"] == []


def test_empty_search_exhausts_attempts_and_errors(settings, events) -> None:
    generator = FakeGenerator({"rcaSearch": [{"incidents": []}]})
    result = RcaBlogPipeline(generator=generator, settings=settings, events=events).run("Acme")

    assert result.status == "error"
    assert result.error == "No incidents found for Acme"
    assert result.run.count("search_incidents") == settings.max_search_attempts
    assert generator.calls_for("rcaBlog") == []


def test_incidents_without_detail_stop_before_generation(settings, events) -> None:
    generator = FakeGenerator({"rcaSearch": [[SHORT]]})
    result = RcaBlogPipeline(generator=generator, settings=settings, events=events).run("Acme")

    assert result.status == "error"
    assert result.error == "No incidents with sufficient detail"
    assert result.run.visited == ["search_incidents", "validate_incidents", "validate_output"]


def test_search_failure_then_success(settings, events) -> None:
    generator = FakeGenerator(
        {"rcaSearch": [GenerationFailure("rcaSearch", "timeout"), [DNS]], "rcaBlog": [RCA_BLOG]}
    )
    result = RcaBlogPipeline(generator=generator, settings=settings, events=events).run("Acme")

    assert result.completed
    assert result.run.count("search_incidents") == 2
    assert generator.calls_for("rcaSearch")[0]["search_queries"][0] == "Acme engineering blog postmortem incident"


def test_incident_score_prefers_lessons_and_sources() -> None:
    base = {"title": "t" * 20, "description": "d" * 60}
    assert incident_score({**base, "lesson": "x"}) > incident_score(base)
    assert incident_score({**base, "source_url": "https://x"}) - incident_score(base) == 50
