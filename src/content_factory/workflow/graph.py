from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from ..errors import GraphConfigurationError, RoutingError
from .state import StateSchema, read_only

logger = logging.getLogger(__name__)

Delta = Mapping[str, Any]
NodeFn = Callable[[Mapping[str, Any]], Union[Delta, None, Awaitable[Union[Delta, None]]]]
RouterFn = Callable[[Mapping[str, Any]], str]

# configurable key under which the executor hands each run its own step recorder
STEP_RECORDER_KEY = "content_factory_step_recorder"

_RESERVED = frozenset({START, END})


@dataclass(frozen=True)
class Route:
    source: str
    router: RouterFn
    targets: frozenset[str]


def _recorder(config: RunnableConfig | None) -> list[tuple[str, dict[str, Any]]] | None:
    if not config:
        return None
    return config.get("configurable", {}).get(STEP_RECORDER_KEY)


def _checked_delta(schema: StateSchema, name: str, output: Any) -> dict[str, Any]:
    if output is None:
        return {}
    if not isinstance(output, Mapping):
        raise TypeError(f"node '{name}' must return a mapping delta, got {type(output).__name__}")
    schema.validate_delta(name, output)
    return dict(output)


class GraphDefinition:
    """Named stages, static edges and conditional routers for one pipeline.

    The definition is plain data until :meth:`compile` validates the wiring and
    lowers it onto a LangGraph ``StateGraph``. Every configuration mistake
    (unknown targets, missing entry edge, dead ends, unreachable nodes) is
    reported there rather than mid-run.
    """

    def __init__(self, name: str, state_type: type) -> None:
        self.name = name
        self.state_type = state_type
        self.schema = StateSchema.from_typed_dict(state_type)
        self._nodes: dict[str, NodeFn] = {}
        self._edges: list[tuple[str, str]] = []
        self._routes: list[Route] = []

    def add_node(self, name: str, fn: NodeFn) -> "GraphDefinition":
        if not isinstance(name, str) or not name.strip():
            raise GraphConfigurationError(f"{self.name}: node names must be non-empty strings")
        if name in _RESERVED:
            raise GraphConfigurationError(f"{self.name}: '{name}' is a reserved node name")
        if name in self._nodes:
            raise GraphConfigurationError(f"{self.name}: duplicate node '{name}'")
        self._nodes[name] = fn
        return self

    def add_edge(self, source: str, target: str) -> "GraphDefinition":
        self._edges.append((source, target))
        return self

    def add_router(self, source: str, router: RouterFn, targets: Iterable[str]) -> "GraphDefinition":
        self._routes.append(Route(source=source, router=router, targets=frozenset(targets)))
        return self

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def _validate(self) -> dict[str, frozenset[str]]:
        if not self._nodes:
            raise GraphConfigurationError(f"{self.name}: graph declares no nodes")
        declared = set(self._nodes)

        entry = [target for source, target in self._edges if source == START]
        if len(entry) != 1:
            raise GraphConfigurationError(f"{self.name}: START must have exactly one outgoing edge, found {len(entry)}")
        if entry[0] not in declared:
            raise GraphConfigurationError(f"{self.name}: START edge targets undeclared node '{entry[0]}'")

        static: dict[str, str] = {}
        for source, target in self._edges:
            if source == START:
                continue
            if source not in declared:
                raise GraphConfigurationError(f"{self.name}: edge from undeclared node '{source}'")
            if target != END and target not in declared:
                raise GraphConfigurationError(f"{self.name}: edge {source} -> '{target}' targets an undeclared node")
            if source in static:
                raise GraphConfigurationError(f"{self.name}: node '{source}' has more than one static edge")
            static[source] = target

        routed: dict[str, Route] = {}
        for route in self._routes:
            if route.source not in declared:
                raise GraphConfigurationError(f"{self.name}: router attached to undeclared node '{route.source}'")
            if route.source in routed:
                raise GraphConfigurationError(f"{self.name}: node '{route.source}' has more than one router")
            if not route.targets:
                raise GraphConfigurationError(f"{self.name}: router on '{route.source}' declares no targets")
            unknown = sorted(t for t in route.targets if t != END and t not in declared)
            if unknown:
                raise GraphConfigurationError(
                    f"{self.name}: router on '{route.source}' declares undeclared target(s): {', '.join(unknown)}"
                )
            routed[route.source] = route

        transitions: dict[str, frozenset[str]] = {START: frozenset(entry)}
        for name in self._nodes:
            if name in static:
                if name in routed:
                    logger.warning(
                        "%s: node '%s' has a static edge and a router; the static edge takes priority",
                        self.name,
                        name,
                    )
                transitions[name] = frozenset({static[name]})
            elif name in routed:
                transitions[name] = routed[name].targets
            else:
                raise GraphConfigurationError(f"{self.name}: node '{name}' has no outgoing edge or router")

        reachable: set[str] = set()
        queue = deque(entry)
        while queue:
            current = queue.popleft()
            if current == END or current in reachable:
                continue
            reachable.add(current)
            queue.extend(transitions[current])
        unreachable = sorted(declared - reachable)
        if unreachable:
            raise GraphConfigurationError(f"{self.name}: unreachable node(s) from START: {', '.join(unreachable)}")
        if END not in {target for targets in transitions.values() for target in targets}:
            raise GraphConfigurationError(f"{self.name}: no transition reaches END")
        return transitions

    def _wrap_node(self, name: str, fn: NodeFn) -> Callable[..., Any]:
        schema = self.schema
        if inspect.iscoroutinefunction(fn):

            async def invoke_async(state: dict[str, Any], config: RunnableConfig) -> dict[str, Any]:
                delta = _checked_delta(schema, name, await fn(read_only(state)))
                recorder = _recorder(config)
                if recorder is not None:
                    recorder.append((name, delta))
                return delta

            return invoke_async

        def invoke(state: dict[str, Any], config: RunnableConfig) -> dict[str, Any]:
            delta = _checked_delta(schema, name, fn(read_only(state)))
            recorder = _recorder(config)
            if recorder is not None:
                recorder.append((name, delta))
            return delta

        return invoke

    def _wrap_router(self, route: Route) -> Callable[[dict[str, Any]], str]:
        graph_name = self.name

        def choose(state: dict[str, Any]) -> str:
            target = route.router(read_only(state))
            if target not in route.targets:
                raise RoutingError(
                    f"{graph_name}: router on '{route.source}' returned {target!r}, "
                    f"declared targets are {sorted(route.targets)}"
                )
            return target

        return choose

    def compile(self) -> "CompiledGraph":
        transitions = self._validate()
        builder = StateGraph(self.state_type)
        for name, fn in self._nodes.items():
            builder.add_node(name, self._wrap_node(name, fn))

        static_sources = {source for source, _ in self._edges}
        for source, target in self._edges:
            builder.add_edge(source, target)
        for route in self._routes:
            if route.source in static_sources:
                continue
            source = route.source
            builder.add_conditional_edges(
                source,
                self._wrap_router(route),
                {target: target for target in sorted(route.targets)},
            )
        is_async = any(inspect.iscoroutinefunction(fn) for fn in self._nodes.values())
        return CompiledGraph(
            name=self.name,
            schema=self.schema,
            transitions=transitions,
            runnable=builder.compile(),
            is_async=is_async,
        )


@dataclass(frozen=True)
class CompiledGraph:
    name: str
    schema: StateSchema
    transitions: Mapping[str, frozenset[str]]
    runnable: Any
    is_async: bool = False

    def successors(self, node: str) -> frozenset[str]:
        return self.transitions[node]

    def allows(self, source: str, target: str) -> bool:
        return target in self.transitions.get(source, frozenset())
