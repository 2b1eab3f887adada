"""Structured observability events emitted by pipeline nodes.

Events are a side channel: they never appear in a node's returned delta, so
node logic can be asserted on state alone while still reporting progress.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineEvent:
    pipeline: str
    node: str
    event: str
    level: int = logging.INFO
    data: dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    def emit(self, event: PipelineEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink: forwards every event to the ``content_factory.events`` logger."""

    def __init__(self, target: logging.Logger | None = None) -> None:
        self._logger = target if target is not None else logger

    def emit(self, event: PipelineEvent) -> None:
        details = " ".join(f"{key}={value!r}" for key, value in sorted(event.data.items()))
        self._logger.log(event.level, "[%s.%s] %s %s", event.pipeline, event.node, event.event, details)


class RecordingEventSink:
    """Collects events in memory; safe to share between concurrent runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[PipelineEvent] = []

    def emit(self, event: PipelineEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[PipelineEvent]:
        with self._lock:
            return list(self._events)

    def named(self, event: str) -> list[PipelineEvent]:
        return [item for item in self.events if item.event == event]


class NodeEvents:
    """Binds a sink to one pipeline so node bodies only name the node and event."""

    def __init__(self, pipeline: str, sink: EventSink | None = None) -> None:
        self.pipeline = pipeline
        self.sink = sink if sink is not None else LoggingEventSink()

    def emit(self, node: str, event: str, *, level: int = logging.INFO, **data: Any) -> None:
        self.sink.emit(PipelineEvent(pipeline=self.pipeline, node=node, event=event, level=level, data=data))

    def warning(self, node: str, event: str, **data: Any) -> None:
        self.emit(node, event, level=logging.WARNING, **data)
