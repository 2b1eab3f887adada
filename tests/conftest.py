from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

import pytest

from content_factory.events import RecordingEventSink
from content_factory.settings import RuntimeSettings


class FakeGenerator:
    """Scripted ContentGenerator: one queue of answers per operation.

    An answer that is an exception instance is raised; anything else is
    returned as the raw payload. The last answer of a queue repeats forever.
    """

    def __init__(self, script: Mapping[str, list[Any]]) -> None:
        self.script = {operation: list(answers) for operation, answers in script.items()}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def generate(self, operation: str, params: Mapping[str, Any]) -> Any:
        self.calls.append((operation, copy.deepcopy(dict(params))))
        answers = self.script.get(operation)
        if not answers:
            raise AssertionError(f"unexpected generation call: {operation}")
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(answer, BaseException):
            raise answer
        return copy.deepcopy(answer)

    def calls_for(self, operation: str) -> list[dict[str, Any]]:
        return [params for name, params in self.calls if name == operation]


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings(max_generation_retries=2, max_source_attempts=3, max_search_attempts=2)


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()
