"""Tagged result models, one per generation operation.

Validating at the adapter boundary lets generating nodes tell a garbage
response (:class:`GenerationFailure`) from a well-formed but incomplete one
(:class:`IncompleteGeneration`) without probing fields by hand.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..errors import GenerationFailure, IncompleteGeneration


class GenerationModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RealWorldCaseResult(GenerationModel):
    interest_score: int = Field(ge=0, le=10)
    reason: str
    company: str | None = None
    source_url: str | None = None
    title: str | None = None
    summary: str = ""


class BlogSection(GenerationModel):
    heading: str
    content: str


class BlogSource(GenerationModel):
    url: str
    title: str = ""
    type: str = ""


class BlogResult(GenerationModel):
    title: str = Field(min_length=1)
    introduction: str
    sections: list[BlogSection]
    conclusion: str
    sources: list[BlogSource]
    tags: list[str] = Field(default_factory=list)


class LinkedInStoryResult(GenerationModel):
    story: str = Field(min_length=50)


class ChallengeTestCase(GenerationModel):
    input: str
    expected_output: str
    id: str | None = None
    description: str = ""

    @field_validator("input", "expected_output", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class ChallengeComplexity(GenerationModel):
    time: str
    space: str


class CodingChallengeResult(GenerationModel):
    title: str = Field(min_length=1)
    description: str
    difficulty: str
    starter_code: str
    test_cases: list[ChallengeTestCase] = Field(min_length=2)
    sample_solution: str
    complexity: ChallengeComplexity
    entry_point: str | None = None
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    hints: list[str] = Field(default_factory=list)
    companies: list[str] = Field(default_factory=list)


class Incident(GenerationModel):
    title: str
    description: str
    company: str = ""
    lesson: str = ""
    source_url: str | None = None
    date: str = ""


class RcaSearchResult(GenerationModel):
    incidents: list[Incident]


class RcaBlogResult(GenerationModel):
    title: str = Field(min_length=1)
    introduction: str
    sections: list[BlogSection]
    conclusion: str = ""
    sources: list[BlogSource] = Field(default_factory=list)


class CertificationOption(GenerationModel):
    id: str
    text: str
    is_correct: bool = False


class CertificationQuestion(GenerationModel):
    question: str
    options: list[CertificationOption]
    explanation: str = ""
    difficulty: str = "intermediate"
    tags: list[str] = Field(default_factory=list)


class CertificationQuestionBatch(GenerationModel):
    questions: list[CertificationQuestion]


RESULT_MODELS: dict[str, type[GenerationModel]] = {
    "realWorldCase": RealWorldCaseResult,
    "blog": BlogResult,
    "linkedinStory": LinkedInStoryResult,
    "coding-challenge": CodingChallengeResult,
    "rcaSearch": RcaSearchResult,
    "rcaBlog": RcaBlogResult,
    "certification-question": CertificationQuestionBatch,
}

# operations whose generator may answer with a bare JSON array
_LIST_ENVELOPES = {
    "certification-question": "questions",
    "rcaSearch": "incidents",
}


def parse_generation_result(operation: str, payload: Any) -> GenerationModel:
    """Validate a raw generator payload against the operation's result model.

    Args:
        operation: One of :data:`RESULT_MODELS`.
        payload: A model instance, a mapping, or (for list operations) a bare list.

    Returns:
        The validated result model.

    Raises:
        GenerationFailure: Unknown operation or a payload of the wrong shape.
        IncompleteGeneration: Well-formed payload missing required content.
    """
    schema = RESULT_MODELS.get(operation)
    if schema is None:
        raise GenerationFailure(operation, "unknown generation operation")
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    if isinstance(payload, list) and operation in _LIST_ENVELOPES:
        payload = {_LIST_ENVELOPES[operation]: payload}
    if not isinstance(payload, dict):
        raise GenerationFailure(operation, f"expected a JSON object, got {type(payload).__name__}")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        missing = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise IncompleteGeneration(operation, f"{schema.__name__} rejected field(s): {', '.join(missing)}") from exc
