from __future__ import annotations

import operator
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, get_args, get_origin, get_type_hints

from ..errors import IncompleteStateError, UnknownStateFieldError


class Reducer(str, Enum):
    OVERWRITE = "overwrite"
    APPEND = "append"


def _reducer_for(hint: Any) -> Reducer:
    if get_origin(hint) is Annotated:
        metadata = get_args(hint)[1:]
        if any(item is operator.add for item in metadata):
            return Reducer.APPEND
    return Reducer.OVERWRITE


@dataclass(frozen=True)
class StateSchema:
    """Declared fields of a pipeline state and the merge rule for each one.

    Schemas are derived from the same ``TypedDict`` that LangGraph compiles,
    so the reducers applied here are exactly the channels LangGraph uses:
    ``Annotated[list[...], operator.add]`` appends, everything else overwrites.
    """

    name: str
    reducers: Mapping[str, Reducer]

    @classmethod
    def from_typed_dict(cls, state_type: type) -> "StateSchema":
        hints = get_type_hints(state_type, include_extras=True)
        if not hints:
            raise ValueError(f"State type {state_type.__name__} declares no fields")
        reducers = {name: _reducer_for(hint) for name, hint in hints.items()}
        return cls(name=state_type.__name__, reducers=MappingProxyType(reducers))

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(self.reducers)

    def append_fields(self) -> list[str]:
        return sorted(name for name, reducer in self.reducers.items() if reducer is Reducer.APPEND)

    def validate_initial(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Require a value for every declared field and nothing else.

        Returns:
            A plain-dict copy of ``values``.

        Raises:
            IncompleteStateError: If any declared field is missing.
            UnknownStateFieldError: If ``values`` names an undeclared field.
        """
        unknown = [key for key in values if key not in self.reducers]
        if unknown:
            raise UnknownStateFieldError(unknown, source=f"initial state for {self.name}")
        missing = sorted(self.fields - set(values))
        if missing:
            raise IncompleteStateError(f"initial state for {self.name} is missing: {', '.join(missing)}")
        for key in self.append_fields():
            _require_sequence(key, values[key], source=f"initial state for {self.name}")
        return dict(values)

    def validate_delta(self, source: str, delta: Mapping[str, Any]) -> None:
        unknown = [key for key in delta if key not in self.reducers]
        if unknown:
            raise UnknownStateFieldError(unknown, source=f"node '{source}'")
        for key, value in delta.items():
            if self.reducers[key] is Reducer.APPEND:
                _require_sequence(key, value, source=f"node '{source}'")

    def merge(self, state: Mapping[str, Any], delta: Mapping[str, Any], *, source: str = "delta") -> dict[str, Any]:
        """Apply ``delta`` to ``state`` and return the new state.

        Neither argument is modified. Fields absent from ``delta`` are carried
        over unchanged; ``overwrite`` fields are replaced wholesale and
        ``append`` fields are concatenated in arrival order, duplicates kept.
        """
        self.validate_delta(source, delta)
        merged = dict(state)
        for key, value in delta.items():
            if self.reducers[key] is Reducer.APPEND:
                merged[key] = [*merged.get(key, []), *value]
            else:
                merged[key] = value
        return merged

    def replay(self, initial: Mapping[str, Any], deltas: Iterable[tuple[str, Mapping[str, Any]]]) -> dict[str, Any]:
        state = self.validate_initial(initial)
        for source, delta in deltas:
            state = self.merge(state, delta, source=source)
        return state


def _require_sequence(key: str, value: Any, *, source: str) -> None:
    if not isinstance(value, (list, tuple)):
        raise TypeError(f"{source}: append field '{key}' requires a list, got {type(value).__name__}")


def read_only(state: Mapping[str, Any]) -> Mapping[str, Any]:
    """Snapshot handed to nodes and routers; item assignment raises ``TypeError``."""
    return MappingProxyType(dict(state))
