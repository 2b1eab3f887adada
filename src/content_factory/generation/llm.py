from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Literal, Protocol, TypeVar

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

from ..errors import GenerationFailure, IncompleteGeneration
from ..settings import RuntimeSettings
from .models import RESULT_MODELS, GenerationModel
from .prompts import build_prompt

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
StructuredOutputMethod = Literal["function_calling", "json_mode", "json_schema"]

_DEFAULT_TIMEOUT: int = 120
_DEFAULT_MAX_RETRIES: int = 2


class ContentGenerator(Protocol):
    """Narrow interface to the unreliable content generator.

    Implementations raise :class:`GenerationFailure` (or its subclass
    :class:`IncompleteGeneration`) on any problem. Calls are not idempotent.
    """

    def generate(self, operation: str, params: Mapping[str, Any]) -> GenerationModel:
        ...


class SupportsInvoke(Protocol):
    """Protocol for any LangChain-compatible runnable that supports invoke."""

    def invoke(self, input: Any) -> Any:  # noqa: ANN401 - external runnable protocol.
        ...


class SupportsStructuredOutput(SupportsInvoke, Protocol):
    def with_structured_output(self, schema: Any, **kwargs: Any) -> SupportsInvoke:  # noqa: ANN401
        ...


@dataclass(slots=True)
class StructuredOutputAdapter(Generic[ModelT]):
    """Wraps a structured-output runnable and validates its response against ``schema``."""

    schema: type[ModelT]
    runnable: SupportsInvoke

    def invoke(self, prompt: str) -> ModelT:
        """Invoke the LLM and return a validated Pydantic model instance.

        Raises:
            RuntimeError: If the LLM returns unparseable or invalid output.
        """
        raw_output = self.runnable.invoke(prompt)
        return normalize_structured_output(raw_output=raw_output, schema=self.schema)


def ensure_openai_api_key(repo_root: Path | None = None) -> str:
    """Load OPENAI_API_KEY from environment or .env and return it.

    Args:
        repo_root: Optional repo root path to search for .env file.

    Returns:
        The API key string.

    Raises:
        RuntimeError: If OPENAI_API_KEY is unavailable after all sources are checked.
    """
    repo = repo_root if repo_root is not None else Path.cwd()
    env_path = repo / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise RuntimeError("OPENAI_API_KEY is required for content generation")
    return key


def get_chat_model(
    *,
    model_name: str,
    temperature: float = 0.7,
    timeout: int = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    repo_root: Path | None = None,
) -> ChatOpenAI:
    """Construct a ChatOpenAI instance with validated API key and production defaults.

    Raises:
        ValueError: If ``model_name`` is blank.
        RuntimeError: If OPENAI_API_KEY is not available.
    """
    if not model_name or not model_name.strip():
        raise ValueError("model_name must be a non-empty string")
    ensure_openai_api_key(repo_root=repo_root)
    return ChatOpenAI(model=model_name, temperature=temperature, timeout=timeout, max_retries=max_retries)


def normalize_structured_output(*, raw_output: Any, schema: type[ModelT]) -> ModelT:
    """Normalize raw LLM structured output into a validated Pydantic model instance.

    Handles the ``include_raw=True`` envelope (``{"parsed", "parsing_error", "raw"}``),
    direct model instances and plain dicts.

    Raises:
        RuntimeError: If the output cannot be parsed or validated against the schema.
            A schema validation failure is chained as ``__cause__``.
    """
    payload = raw_output
    if isinstance(payload, dict) and "parsed" in payload and "parsing_error" in payload:
        parsing_error = payload.get("parsing_error")
        if parsing_error is not None:
            raise RuntimeError(
                f"Structured output parsing failed for {schema.__name__}: {parsing_error!r}"
            ) from parsing_error
        payload = payload.get("parsed")
        if payload is None:
            raise RuntimeError(f"Structured output returned no parsed payload for {schema.__name__}")

    if isinstance(payload, schema):
        return payload

    if isinstance(payload, BaseModel):
        candidate = payload.model_dump(mode="json")
    elif isinstance(payload, dict):
        candidate = payload
    else:
        raise RuntimeError(
            f"Structured output for {schema.__name__} returned unsupported payload type {type(payload).__name__}"
        )

    try:
        return schema.model_validate(candidate)
    except ValidationError as exc:
        raise RuntimeError(f"Structured output validation failed for {schema.__name__}: {exc}") from exc


def bind_structured_output(
    model: SupportsStructuredOutput,
    schema: type[ModelT],
    *,
    method: StructuredOutputMethod = "function_calling",
    strict: bool = False,
    include_raw: bool = True,
) -> StructuredOutputAdapter[ModelT]:
    """Bind ``schema`` to ``model`` through ``with_structured_output``.

    Raises:
        ValueError: If strict=True with method='json_mode'.
    """
    if method == "json_mode" and strict:
        raise ValueError("strict=True is not valid for method='json_mode'")
    runnable = model.with_structured_output(
        schema,
        method=method,
        include_raw=include_raw,
        strict=strict if method != "json_mode" else None,
    )
    return StructuredOutputAdapter(schema=schema, runnable=runnable)


def get_structured_chat_model(
    *,
    model_name: str,
    schema: type[ModelT],
    temperature: float = 0.7,
    timeout: int = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    method: StructuredOutputMethod = "function_calling",
    strict: bool = False,
    include_raw: bool = True,
    repo_root: Path | None = None,
) -> StructuredOutputAdapter[ModelT]:
    """Build a StructuredOutputAdapter that invokes the LLM with schema-constrained output.

    Result models carry optional fields with defaults, which OpenAI's strict
    mode rejects, so ``strict`` defaults to False.

    Raises:
        ValueError: If strict=True with method='json_mode'.
        RuntimeError: If OPENAI_API_KEY is not available.
    """
    model = get_chat_model(
        model_name=model_name,
        temperature=temperature,
        timeout=timeout,
        max_retries=max_retries,
        repo_root=repo_root,
    )
    return bind_structured_output(model, schema, method=method, strict=strict, include_raw=include_raw)


class LLMContentGenerator:
    """ContentGenerator backed by an OpenAI chat model through LangChain.

    Each operation's result model is bound to the chat model with
    ``with_structured_output``; adapters are built lazily and cached so that
    constructing pipelines (and their tests) never requires credentials.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        chat_model: SupportsStructuredOutput | None = None,
        repo_root: Path | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.repo_root = repo_root
        self._chat_model = chat_model
        self._adapters: dict[str, StructuredOutputAdapter[Any]] = {}
        self._lock = threading.Lock()

    @property
    def chat_model(self) -> SupportsStructuredOutput:
        if self._chat_model is None:
            self._chat_model = get_chat_model(
                model_name=self.settings.model_name,
                timeout=self.settings.generation_timeout_seconds,
                repo_root=self.repo_root,
            )
        return self._chat_model

    def _adapter(self, operation: str) -> StructuredOutputAdapter[Any]:
        schema = RESULT_MODELS.get(operation)
        if schema is None:
            raise GenerationFailure(operation, "unknown generation operation")
        with self._lock:
            adapter = self._adapters.get(operation)
            if adapter is None:
                adapter = bind_structured_output(self.chat_model, schema)
                self._adapters[operation] = adapter
            return adapter

    def generate(self, operation: str, params: Mapping[str, Any]) -> GenerationModel:
        try:
            prompt = build_prompt(operation, params)
        except KeyError as exc:
            raise GenerationFailure(operation, str(exc)) from exc
        adapter = self._adapter(operation)

        logger.debug("Invoking %s for %s (%d prompt chars)", self.settings.model_name, operation, len(prompt))
        try:
            return adapter.invoke(prompt)
        except RuntimeError as exc:
            if isinstance(exc.__cause__, ValidationError):
                raise IncompleteGeneration(operation, str(exc)) from exc
            raise GenerationFailure(operation, str(exc)) from exc
        except Exception as exc:  # noqa: BLE001 - transport, auth and timeout errors all surface as GenerationFailure
            raise GenerationFailure(operation, f"{type(exc).__name__}: {exc}") from exc
