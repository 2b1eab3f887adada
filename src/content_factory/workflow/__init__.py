from langgraph.graph import END, START

from .executor import BatchOutcome, ExecutionStep, Executor, PipelineRun, run_batch
from .gates import GateStatus, RunStatus, retry_router, status_router
from .graph import CompiledGraph, GraphDefinition
from .state import Reducer, StateSchema

__all__ = [
    "BatchOutcome",
    "CompiledGraph",
    "END",
    "ExecutionStep",
    "Executor",
    "GateStatus",
    "GraphDefinition",
    "PipelineRun",
    "Reducer",
    "RunStatus",
    "START",
    "StateSchema",
    "retry_router",
    "run_batch",
    "status_router",
]
