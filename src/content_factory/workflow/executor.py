from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from ..settings import RuntimeSettings
from .graph import STEP_RECORDER_KEY, CompiledGraph

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class ExecutionStep:
    """One node invocation: the node name and the delta it returned."""

    node: str
    delta: Mapping[str, Any]


@dataclass
class PipelineRun:
    graph_name: str
    initial_state: dict[str, Any]
    steps: list[ExecutionStep] = field(default_factory=list)
    final_state: dict[str, Any] = field(default_factory=dict)

    @property
    def visited(self) -> list[str]:
        return [step.node for step in self.steps]

    @property
    def status(self) -> str | None:
        value = self.final_state.get("status")
        return None if value is None else str(value)

    def count(self, node: str) -> int:
        return sum(1 for step in self.steps if step.node == node)


class Executor:
    """Runs a compiled graph one node at a time and streams every delta.

    Node invocations within a run are strictly sequential. Each run gets its
    own step recorder, so a single executor can serve concurrent runs; an
    exception raised by a node propagates out of :meth:`stream` / :meth:`run`
    and ends only that run.
    """

    def __init__(self, settings: RuntimeSettings | None = None) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    def _config(self, recorder: list[tuple[str, dict[str, Any]]]) -> dict[str, Any]:
        return {
            "recursion_limit": self.settings.recursion_limit,
            "configurable": {STEP_RECORDER_KEY: recorder},
        }

    def stream(self, graph: CompiledGraph, initial_state: Mapping[str, Any]) -> Iterator[ExecutionStep]:
        if graph.is_async:
            raise TypeError(f"{graph.name} has async nodes; use astream()/arun()")
        state = graph.schema.validate_initial(initial_state)
        recorder: list[tuple[str, dict[str, Any]]] = []
        for _chunk in graph.runnable.stream(state, config=self._config(recorder), stream_mode="updates"):
            yield from _drain(recorder)
        yield from _drain(recorder)

    async def astream(self, graph: CompiledGraph, initial_state: Mapping[str, Any]) -> AsyncIterator[ExecutionStep]:
        state = graph.schema.validate_initial(initial_state)
        recorder: list[tuple[str, dict[str, Any]]] = []
        async for _chunk in graph.runnable.astream(state, config=self._config(recorder), stream_mode="updates"):
            for step in _drain(recorder):
                yield step
        for step in _drain(recorder):
            yield step

    def run(
        self,
        graph: CompiledGraph,
        initial_state: Mapping[str, Any],
        *,
        on_step: Callable[[ExecutionStep], None] | None = None,
    ) -> PipelineRun:
        """Run ``graph`` to END and return every step plus the merged final state.

        Args:
            graph: A compiled graph definition.
            initial_state: A value for every declared state field.
            on_step: Optional callback invoked as each step is produced.

        Returns:
            The completed PipelineRun.

        Raises:
            IncompleteStateError: If ``initial_state`` misses declared fields.
            UnknownStateFieldError: If a node writes an undeclared field.
            RoutingError: If a router picks an undeclared target.
            Exception: Anything raised inside a node body, unchanged.
        """
        state = graph.schema.validate_initial(initial_state)
        run = PipelineRun(graph_name=graph.name, initial_state=dict(state), final_state=state)
        for step in self.stream(graph, state):
            run.steps.append(step)
            run.final_state = graph.schema.merge(run.final_state, step.delta, source=step.node)
            if on_step is not None:
                on_step(step)
        logger.debug("%s finished after %d step(s) with status=%s", graph.name, len(run.steps), run.status)
        return run

    async def arun(self, graph: CompiledGraph, initial_state: Mapping[str, Any]) -> PipelineRun:
        state = graph.schema.validate_initial(initial_state)
        run = PipelineRun(graph_name=graph.name, initial_state=dict(state), final_state=state)
        async for step in self.astream(graph, state):
            run.steps.append(step)
            run.final_state = graph.schema.merge(run.final_state, step.delta, source=step.node)
        return run


def _drain(recorder: list[tuple[str, dict[str, Any]]]) -> Iterator[ExecutionStep]:
    while recorder:
        node, delta = recorder.pop(0)
        yield ExecutionStep(node=node, delta=MappingProxyType(dict(delta)))


@dataclass(frozen=True)
class BatchOutcome(Generic[ResultT]):
    index: int
    status: str
    result: ResultT | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_batch(jobs: Sequence[Callable[[], ResultT]], *, max_workers: int = 4) -> list[BatchOutcome[ResultT]]:
    """Execute independent runs concurrently and report each one separately.

    A job that raises is reported as an ``error`` outcome carrying the exception
    type and message; sibling jobs keep running. Outcomes are returned in
    submission order.
    """
    if not jobs:
        return []

    def _guarded(index: int, job: Callable[[], ResultT]) -> BatchOutcome[ResultT]:
        try:
            result = job()
        except Exception as exc:  # noqa: BLE001 - reported per run, siblings continue
            logger.exception("Batch run %d failed: %s", index, exc)
            return BatchOutcome(index=index, status="error", error=str(exc), error_type=type(exc).__name__)
        status = getattr(result, "status", None)
        status = getattr(status, "value", status)
        return BatchOutcome(index=index, status=str(status) if status is not None else "completed", result=result)

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as pool:
        futures = [pool.submit(_guarded, index, job) for index, job in enumerate(jobs)]
        return [future.result() for future in futures]
