from __future__ import annotations

import random
from typing import Any

import pytest
from conftest import FakeGenerator

from content_factory.certifications import CertificationCatalog, CertificationCatalogCache
from content_factory.generation import CertificationQuestion
from content_factory.pipelines import CertificationPipeline
from content_factory.pipelines.certification import is_near_duplicate, question_issues, weighted_choice

CATALOG = CertificationCatalog.model_validate(
    {
        "version": 1,
        "certifications": [
            {
                "id": "aws-saa",
                "name": "AWS Solutions Architect Associate",
                "domains": [
                    {"id": "design-secure", "name": "Design Secure Architectures", "weight": 30},
                    {"id": "design-cost", "name": "Design Cost-Optimized Architectures", "weight": 70},
                ],
                "channel_mappings": ["aws"],
            }
        ],
    }
)


class FixedRandom:
    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


def _question(text: str, *, correct: int = 1, explanation: str | None = None) -> dict[str, Any]:
    return {
        "question": text,
        "options": [{"id": letter, "text": f"Option {letter}", "isCorrect": index < correct} for index, letter in enumerate("abcd")],
        "explanation": explanation
        or "Option a is right because it encrypts at rest; the others leave data exposed or add cost.",
        "difficulty": "intermediate",
        "tags": ["s3"],
    }


GOOD = _question("Which S3 feature encrypts every new object by default at rest?")
SECOND = _question("Which IAM construct grants temporary credentials to an EC2 instance?")


def _pipeline(generator: FakeGenerator, settings, events, **kwargs: Any) -> CertificationPipeline:
    return CertificationPipeline(
        generator=generator,
        settings=settings,
        events=events,
        catalog=CertificationCatalogCache(lambda: CATALOG),
        clock=lambda: 1_700_000_000.0,
        **kwargs,
    )


def test_valid_questions_are_finalized_with_stable_ids(settings, events) -> None:
    generator = FakeGenerator({"certification-question": [[GOOD, SECOND]]})
    result = _pipeline(generator, settings, events).run("aws-saa", domain="design-secure", count=2)

    assert result.completed
    batch = result.content
    assert batch is not None
    assert [question["id"] for question in batch["questions"]] == [
        "aws-saa-design-secure-1700000000000-0",
        "aws-saa-design-secure-1700000000000-1",
    ]
    assert batch["questions"][0]["domain_weight"] == 30
    params = generator.calls_for("certification-question")[0]
    assert params["domain_name"] == "Design Secure Architectures"
    assert params["count"] == 2


def test_quality_and_duplicate_rejections_are_recorded(settings, events) -> None:
    too_short = _question("What is S3?")
    two_correct = _question("Which two services can both be the single correct answer here?", correct=2)
    near_copy = _question("Which S3 feature encrypts every new object by default at rest ?")
    generator = FakeGenerator({"certification-question": [[GOOD, too_short, two_correct, near_copy]]})

    result = _pipeline(generator, settings, events).run("aws-saa", domain="design-secure")

    assert result.completed
    assert [question["question"] for question in result.content["questions"]] == [GOOD["question"]]
    rejected = {entry["question"]: entry["issues"] for entry in result.content["rejected"]}
    assert "Question too short" in rejected["What is S3?"]
    assert "Must have exactly 1 correct answer" in rejected[two_correct["question"]]
    assert rejected[near_copy["question"]] == ["Near-duplicate of an existing question"]


def test_existing_questions_are_not_repeated(settings, events) -> None:
    generator = FakeGenerator({"certification-question": [[GOOD]]})
    result = _pipeline(generator, settings, events).run(
        "aws-saa", domain="design-secure", existing_questions=[GOOD["question"].upper()]
    )

    assert result.status == "error"
    assert result.error == "No questions passed quality validation"


def test_unknown_certification_ends_in_error(settings, events) -> None:
    generator = FakeGenerator({})
    result = _pipeline(generator, settings, events).run("gcp-ace")

    assert result.status == "error"
    assert "gcp-ace" in (result.error or "")
    assert result.run.visited == ["select_domain", "finalize"]
    assert generator.calls == []


def test_domain_is_drawn_by_weight(settings, events) -> None:
    generator = FakeGenerator({"certification-question": [[GOOD]]})
    result = _pipeline(generator, settings, events, rng=FixedRandom(0.5)).run("aws-saa")
    assert result.content["domain"] == "design-cost"


def test_channel_runs_once_per_mapped_certification(settings, events) -> None:
    generator = FakeGenerator({"certification-question": [[GOOD]]})
    pipeline = _pipeline(generator, settings, events, rng=random.Random(7))

    assert [result.status for result in pipeline.generate_for_channel("aws")] == ["completed"]
    assert pipeline.generate_for_channel("gardening") == []
    assert events.named("no_certifications")


@pytest.mark.parametrize(("draw", "expected"), [(0.0, "design-secure"), (0.29, "design-secure"), (0.31, "design-cost"), (0.999, "design-cost")])
def test_weighted_choice_boundaries(draw: float, expected: str) -> None:
    domains = CATALOG.get("aws-saa").domains
    assert weighted_choice(domains, FixedRandom(draw)).id == expected


def test_question_issues_and_similarity() -> None:
    assert question_issues(GOOD) == []
    assert "Must end with ?" in question_issues({**GOOD, "question": GOOD["question"].rstrip("?") + "."})
    assert is_near_duplicate("What  is   an S3 bucket policy?", ["what is an s3 bucket policy?"])
    assert not is_near_duplicate("What is an S3 bucket policy?", ["How does Route 53 failover routing work?"])


def test_question_issues_reads_both_option_spellings() -> None:
    validated = CertificationQuestion.model_validate(GOOD).model_dump()
    assert validated["options"][0]["is_correct"] is True
    assert question_issues(validated) == []
    assert question_issues(GOOD) == []

    no_answer = {**GOOD, "options": [{**option, "isCorrect": False} for option in GOOD["options"]]}
    assert "Must have exactly 1 correct answer" in question_issues(no_answer)
    two_answers = CertificationQuestion.model_validate(_question(GOOD["question"], correct=2)).model_dump()
    assert "Must have exactly 1 correct answer" in question_issues(two_answers)
