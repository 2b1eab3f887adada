"""Retry and validation-gate conventions layered on graph routers.

A generating node bumps its attempt counter on every invocation and writes
either a success payload or an error marker; :func:`retry_router` sends it
forward, back to itself, or to a fallback. A validation gate writes a
:class:`GateStatus` computed from existing state only, and
:func:`status_router` dispatches on that field without ever retrying.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from .graph import RouterFn


class GateStatus(str, Enum):
    APPROVED = "approved"
    SKIP = "skip"
    ERROR = "error"


class RunStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED.value, RunStatus.SKIPPED.value, RunStatus.ERROR.value})


def attempts_exhausted(state: Mapping[str, Any], counter: str, limit: str) -> bool:
    return int(state[counter]) >= int(state[limit])


def retry_router(
    *,
    success: Callable[[Mapping[str, Any]], bool],
    counter: str,
    limit: str,
    retry: str,
    forward: str,
    fallback: str,
) -> RouterFn:
    """Build the router paired with a generating node.

    Args:
        success: Predicate telling whether the node produced a usable payload.
        counter: State field holding attempts made so far (incremented by the node).
        limit: State field holding the maximum number of attempts.
        retry: Target re-running the generating node.
        forward: Target taken on success.
        fallback: Target taken once the attempt budget is spent.

    Returns:
        A pure router function; it never returns ``retry`` once ``counter >= limit``.
    """

    def route(state: Mapping[str, Any]) -> str:
        if success(state):
            return forward
        if not attempts_exhausted(state, counter, limit):
            return retry
        return fallback

    route.__name__ = f"route_after_{retry}"
    return route


def status_router(field: str, routes: Mapping[GateStatus, str]) -> RouterFn:
    """Dispatch purely on a gate status field written by a validation node."""
    table = {GateStatus(key).value: target for key, target in routes.items()}

    def route(state: Mapping[str, Any]) -> str:
        value = state[field]
        value = getattr(value, "value", value)
        if value not in table:
            raise KeyError(f"gate field '{field}' holds unrouted status {value!r}")
        return table[value]

    route.__name__ = f"route_on_{field}"
    return route
