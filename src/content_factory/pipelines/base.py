from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from ..events import EventSink, NodeEvents
from ..generation import ContentGenerator, GenerationModel, parse_generation_result
from ..settings import RuntimeSettings
from ..workflow import CompiledGraph, Executor, GraphDefinition, PipelineRun, RunStatus

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Caller-facing outcome of one run: terminal status plus whatever content was produced."""

    pipeline: str
    status: str
    content: dict[str, Any] | None
    reason: str | None
    error: str | None
    run: PipelineRun

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED.value


class ContentPipeline:
    """Shared wiring for the content pipelines.

    Subclasses declare their state ``TypedDict``, build a :class:`GraphDefinition`
    in ``_build_graph`` and name the state field holding the produced content.
    """

    name: ClassVar[str] = ""
    content_field: ClassVar[str] = ""

    def __init__(
        self,
        *,
        generator: ContentGenerator,
        settings: RuntimeSettings | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.generator = generator
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.events = NodeEvents(self.name, events)
        self.executor = Executor(self.settings)
        self.graph: CompiledGraph = self._build_graph().compile()

    def _build_graph(self) -> GraphDefinition:
        raise NotImplementedError

    def _generate(self, operation: str, params: Mapping[str, Any]) -> Any:
        """Call the generator and validate its answer against the operation's result model."""
        result: GenerationModel = parse_generation_result(operation, self.generator.generate(operation, params))
        return result

    def execute(self, initial_state: Mapping[str, Any]) -> PipelineResult:
        run = self.executor.run(self.graph, initial_state)
        final = run.final_state
        status = str(final.get("status") or RunStatus.ERROR.value)
        if status not in {RunStatus.COMPLETED.value, RunStatus.SKIPPED.value, RunStatus.ERROR.value}:
            logger.warning("%s ended with non-terminal status %r", self.name, status)
            status = RunStatus.ERROR.value
        content = final.get(self.content_field)
        self.events.emit("run", "finished", status=status, steps=len(run.steps))
        return PipelineResult(
            pipeline=self.name,
            status=status,
            content=dict(content) if isinstance(content, Mapping) else None,
            reason=final.get("reason"),
            error=final.get("error"),
            run=run,
        )
