"""Failure taxonomy shared by the workflow engine, generators and the sandbox."""

from __future__ import annotations


class GraphConfigurationError(ValueError):
    """Raised by ``GraphDefinition.compile`` when the wiring is invalid."""


class UnknownStateFieldError(KeyError):
    """Raised when a state value or node delta names a field the schema does not declare."""

    def __init__(self, fields: list[str], *, source: str) -> None:
        self.fields = sorted(fields)
        self.source = source
        super().__init__(f"{source} wrote undeclared state field(s): {', '.join(self.fields)}")

    def __str__(self) -> str:
        return self.args[0]


class IncompleteStateError(ValueError):
    """Raised when an initial state does not provide every declared field."""


class RoutingError(RuntimeError):
    """Raised when a router returns a target outside its declared set."""


class GenerationFailure(RuntimeError):
    """The content generator failed or returned an unusable payload."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"{operation}: {message}")


class IncompleteGeneration(GenerationFailure):
    """The generator returned well-formed JSON that is missing required content."""


class ExecutionFailure(RuntimeError):
    """Sandboxed execution failed to produce a result.

    ``kind`` is one of ``spawn``, ``exit``, ``timeout``, ``entry_point`` or ``output``.
    """

    def __init__(self, kind: str, message: str) -> None:
        self.kind = kind
        self.message = message
        super().__init__(f"{kind}: {message}")
