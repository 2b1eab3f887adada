from __future__ import annotations

from typing import Any

import pytest
from pydantic import BaseModel, ValidationError

from content_factory.errors import GenerationFailure, IncompleteGeneration
from content_factory.generation import (
    CodingChallengeResult,
    LLMContentGenerator,
    RcaSearchResult,
    RealWorldCaseResult,
    bind_structured_output,
    build_prompt,
    get_structured_chat_model,
    normalize_structured_output,
    parse_generation_result,
)
from content_factory.settings import RuntimeSettings


class FakeStructuredRunnable:
    def __init__(self, chat: FakeChatModel, schema: type[BaseModel], include_raw: bool) -> None:
        self.chat = chat
        self.schema = schema
        self.include_raw = include_raw

    def invoke(self, input: Any) -> Any:
        self.chat.prompts.append(input)
        if isinstance(self.chat.reply, BaseException):
            raise self.chat.reply
        if not self.include_raw:
            return self.chat.reply
        try:
            parsed = self.schema.model_validate(self.chat.reply)
        except ValidationError as exc:
            return {"raw": self.chat.reply, "parsed": None, "parsing_error": exc}
        return {"raw": self.chat.reply, "parsed": parsed, "parsing_error": None}


class FakeChatModel:
    def __init__(self, reply: Any) -> None:
        self.reply = reply
        self.prompts: list[str] = []
        self.bindings: list[dict[str, Any]] = []

    def invoke(self, input: Any) -> Any:
        raise AssertionError("structured output must be bound before invoking")

    def with_structured_output(self, schema: type[BaseModel], **kwargs: Any) -> FakeStructuredRunnable:
        self.bindings.append({"schema": schema, **kwargs})
        return FakeStructuredRunnable(self, schema, kwargs.get("include_raw", False))


def test_camel_case_payload_populates_snake_case_fields() -> None:
    result = parse_generation_result(
        "realWorldCase",
        {"interestScore": 8, "reason": "Well documented", "company": "Acme", "sourceUrl": "https://acme.dev/p"},
    )
    assert isinstance(result, RealWorldCaseResult)
    assert result.source_url == "https://acme.dev/p"
    assert result.interest_score == 8


def test_garbage_is_a_generation_failure_not_incomplete() -> None:
    with pytest.raises(GenerationFailure) as excinfo:
        parse_generation_result("blog", "I cannot help with that.")
    assert not isinstance(excinfo.value, IncompleteGeneration)

    with pytest.raises(GenerationFailure) as excinfo:
        parse_generation_result("blog", 42)
    assert not isinstance(excinfo.value, IncompleteGeneration)


def test_missing_required_content_is_incomplete() -> None:
    with pytest.raises(IncompleteGeneration, match="sections"):
        parse_generation_result("blog", {"title": "T", "introduction": "I", "conclusion": "C", "sources": []})

    with pytest.raises(IncompleteGeneration):
        parse_generation_result("realWorldCase", {"interestScore": 14, "reason": "too interesting"})


def test_bare_lists_are_wrapped_for_list_operations() -> None:
    result = parse_generation_result("rcaSearch", [{"title": "DNS outage", "description": "Resolvers failed"}])
    assert isinstance(result, RcaSearchResult)
    assert result.incidents[0].title == "DNS outage"

    with pytest.raises(GenerationFailure):
        parse_generation_result("blog", [{"title": "not a list operation"}])


def test_unknown_operation_is_rejected() -> None:
    with pytest.raises(GenerationFailure, match="unknown generation operation"):
        parse_generation_result("poem", {})


def test_challenge_outputs_are_coerced_to_json_text() -> None:
    payload = {
        "title": "Two Sum",
        "description": "Find two indices.",
        "difficulty": "easy",
        "starterCode": "def two_sum(nums, target):\n    pass",
        "sampleSolution": "def two_sum(nums, target):\n    return [0, 1]",
        "testCases": [
            {"input": "[2, 7], 9", "expectedOutput": [0, 1]},
            {"input": "[3, 3], 6", "expectedOutput": "[0, 1]"},
        ],
        "complexity": {"time": "O(n)", "space": "O(n)"},
    }
    result = parse_generation_result("coding-challenge", payload)
    assert isinstance(result, CodingChallengeResult)
    assert result.test_cases[0].expected_output == "[0,1]"
    assert result.test_cases[1].expected_output == "[0, 1]"


def test_prompt_names_excluded_companies() -> None:
    prompt = build_prompt("realWorldCase", {"question": "How do CDNs work?", "exclude_companies": ["Acme", "Globex"]})
    assert "Acme, Globex" in prompt
    assert "Acme" not in build_prompt("realWorldCase", {"question": "How do CDNs work?"})
    with pytest.raises(KeyError):
        build_prompt("poem", {})


def test_llm_generator_binds_result_model_as_structured_output() -> None:
    chat = FakeChatModel({"interestScore": 7, "reason": "Solid postmortem", "company": "Acme"})
    generator = LLMContentGenerator(RuntimeSettings(), chat_model=chat)

    result = generator.generate("realWorldCase", {"question": "What is a circuit breaker?"})
    generator.generate("realWorldCase", {"question": "What is a bulkhead?"})

    assert isinstance(result, RealWorldCaseResult)
    assert result.company == "Acme"
    assert "What is a circuit breaker?" in chat.prompts[0]
    assert chat.bindings == [
        {"schema": RealWorldCaseResult, "method": "function_calling", "include_raw": True, "strict": False}
    ]


def test_llm_generator_maps_schema_violations_to_incomplete() -> None:
    generator = LLMContentGenerator(RuntimeSettings(), chat_model=FakeChatModel({"interestScore": 14}))
    with pytest.raises(IncompleteGeneration):
        generator.generate("realWorldCase", {"question": "q"})


def test_llm_generator_maps_parsing_errors_to_failure() -> None:
    class ToolCallDecodeError(Exception):
        pass

    class BrokenRunnable:
        def invoke(self, input: Any) -> Any:
            return {"raw": "not json", "parsed": None, "parsing_error": ToolCallDecodeError("bad tool call")}

    class BrokenChat(FakeChatModel):
        def with_structured_output(self, schema: type[BaseModel], **kwargs: Any) -> BrokenRunnable:
            return BrokenRunnable()

    generator = LLMContentGenerator(RuntimeSettings(), chat_model=BrokenChat(None))
    with pytest.raises(GenerationFailure, match="parsing failed") as excinfo:
        generator.generate("blog", {"question": "q"})
    assert not isinstance(excinfo.value, IncompleteGeneration)


def test_llm_generator_wraps_transport_errors() -> None:
    generator = LLMContentGenerator(RuntimeSettings(), chat_model=FakeChatModel(TimeoutError("read timeout")))
    with pytest.raises(GenerationFailure, match="TimeoutError"):
        generator.generate("blog", {"question": "q"})


def test_llm_generator_rejects_unknown_operation() -> None:
    chat = FakeChatModel({})
    generator = LLMContentGenerator(RuntimeSettings(), chat_model=chat)
    with pytest.raises(GenerationFailure):
        generator.generate("poem", {})
    assert chat.prompts == []
    assert chat.bindings == []


def test_normalize_structured_output_accepts_instances_and_dicts() -> None:
    instance = RealWorldCaseResult(interest_score=3, reason="meh")
    assert normalize_structured_output(raw_output=instance, schema=RealWorldCaseResult) is instance
    result = normalize_structured_output(raw_output={"interestScore": 5, "reason": "ok"}, schema=RealWorldCaseResult)
    assert result.interest_score == 5

    with pytest.raises(RuntimeError, match="unsupported payload type"):
        normalize_structured_output(raw_output="{}", schema=RealWorldCaseResult)
    with pytest.raises(RuntimeError, match="no parsed payload"):
        normalize_structured_output(
            raw_output={"raw": None, "parsed": None, "parsing_error": None}, schema=RealWorldCaseResult
        )
    with pytest.raises(RuntimeError, match="validation failed") as excinfo:
        normalize_structured_output(raw_output={"interestScore": 99}, schema=RealWorldCaseResult)
    assert isinstance(excinfo.value.__cause__, ValidationError)


def test_json_mode_rejects_strict_binding() -> None:
    with pytest.raises(ValueError, match="json_mode"):
        bind_structured_output(FakeChatModel({}), RealWorldCaseResult, method="json_mode", strict=True)


def test_missing_api_key_fails_fast(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    generator = LLMContentGenerator(RuntimeSettings(), repo_root=tmp_path)
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        generator.generate("blog", {"question": "q"})


def test_structured_chat_model_wraps_chat_openai(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    adapter = get_structured_chat_model(model_name="gpt-4o-mini", schema=RealWorldCaseResult, repo_root=tmp_path)
    assert adapter.schema is RealWorldCaseResult
    assert hasattr(adapter.runnable, "invoke")
