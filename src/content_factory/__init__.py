from importlib.metadata import PackageNotFoundError, version

from .canonical import to_canonical_json
from .certifications import CachedValue, CertificationCatalog, CertificationCatalogCache, load_catalog
from .errors import (
    ExecutionFailure,
    GenerationFailure,
    GraphConfigurationError,
    IncompleteGeneration,
    IncompleteStateError,
    RoutingError,
    UnknownStateFieldError,
)
from .events import LoggingEventSink, NodeEvents, PipelineEvent, RecordingEventSink
from .generation import ContentGenerator, LLMContentGenerator
from .pipelines import (
    ArticlePost,
    BlogPipeline,
    BlogTopic,
    CertificationPipeline,
    CodingChallengePipeline,
    LinkedInPipeline,
    PipelineResult,
    RcaBlogPipeline,
)
from .reachability import is_reachable
from .sandbox import SandboxHarness, TestCase, VerificationReport, verify_test_cases
from .settings import RuntimeSettings
from .store import JsonFileContentStore
from .workflow import END, START, Executor, GraphDefinition, PipelineRun, StateSchema, run_batch


def get_version() -> str:
    try:
        return version("content-factory")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "END",
    "START",
    "ArticlePost",
    "BlogPipeline",
    "BlogTopic",
    "CachedValue",
    "CertificationCatalog",
    "CertificationCatalogCache",
    "CertificationPipeline",
    "CodingChallengePipeline",
    "ContentGenerator",
    "ExecutionFailure",
    "Executor",
    "GenerationFailure",
    "GraphConfigurationError",
    "GraphDefinition",
    "IncompleteGeneration",
    "IncompleteStateError",
    "JsonFileContentStore",
    "LLMContentGenerator",
    "LinkedInPipeline",
    "LoggingEventSink",
    "NodeEvents",
    "PipelineEvent",
    "PipelineResult",
    "PipelineRun",
    "RcaBlogPipeline",
    "RecordingEventSink",
    "RoutingError",
    "RuntimeSettings",
    "SandboxHarness",
    "StateSchema",
    "TestCase",
    "UnknownStateFieldError",
    "VerificationReport",
    "get_version",
    "is_reachable",
    "load_catalog",
    "run_batch",
    "to_canonical_json",
    "verify_test_cases",
]
