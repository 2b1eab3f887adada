from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "config" / "certifications.json"


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    model_name: str = "gpt-4o-mini"
    generation_timeout_seconds: int = 120
    max_generation_retries: int = 2
    max_source_attempts: int = 3
    max_search_attempts: int = 2
    reachability_timeout_ms: int = 5_000
    sandbox_timeout_ms: int = 10_000
    sandbox_python: str = ""
    recursion_limit: int = 100
    catalog_path: str = ""
    catalog_ttl_seconds: int = 60
    output_root: str = "generated"
    batch_workers: int = 4

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            model_name=os.getenv("CONTENT_MODEL", "gpt-4o-mini"),
            generation_timeout_seconds=_get_env_int("CONTENT_GENERATION_TIMEOUT", default=120, minimum=1),
            max_generation_retries=_get_env_int("CONTENT_MAX_GENERATION_RETRIES", default=2, minimum=0, maximum=10),
            max_source_attempts=_get_env_int("CONTENT_MAX_SOURCE_ATTEMPTS", default=3, minimum=1, maximum=20),
            max_search_attempts=_get_env_int("CONTENT_MAX_SEARCH_ATTEMPTS", default=2, minimum=1, maximum=20),
            reachability_timeout_ms=_get_env_int("CONTENT_REACHABILITY_TIMEOUT_MS", default=5_000, minimum=100),
            sandbox_timeout_ms=_get_env_int("CONTENT_SANDBOX_TIMEOUT_MS", default=10_000, minimum=100),
            sandbox_python=os.getenv("CONTENT_SANDBOX_PYTHON", ""),
            recursion_limit=_get_env_int("CONTENT_RECURSION_LIMIT", default=100, minimum=10),
            catalog_path=os.getenv("CONTENT_CATALOG_PATH", ""),
            catalog_ttl_seconds=_get_env_int("CONTENT_CATALOG_TTL", default=60, minimum=0),
            output_root=os.getenv("CONTENT_OUTPUT_ROOT", "generated"),
            batch_workers=_get_env_int("CONTENT_BATCH_WORKERS", default=4, minimum=1, maximum=64),
        ).normalized()

    @property
    def max_generation_attempts(self) -> int:
        """First attempt plus the configured retries."""
        return self.max_generation_retries + 1

    @property
    def sandbox_executable(self) -> str:
        return self.sandbox_python or sys.executable

    @property
    def catalog_file(self) -> Path:
        return Path(self.catalog_path) if self.catalog_path else DEFAULT_CATALOG_PATH

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        model_name = self.model_name.strip()
        if not model_name:
            raise ValueError("CONTENT_MODEL must be non-empty")
        if not self.output_root.strip():
            raise ValueError("CONTENT_OUTPUT_ROOT must be non-empty")
        if self.max_source_attempts < 1:
            raise ValueError(f"CONTENT_MAX_SOURCE_ATTEMPTS must be >= 1, got: {self.max_source_attempts}")
        if self.max_search_attempts < 1:
            raise ValueError(f"CONTENT_MAX_SEARCH_ATTEMPTS must be >= 1, got: {self.max_search_attempts}")
        if self.max_generation_retries < 0:
            raise ValueError(f"CONTENT_MAX_GENERATION_RETRIES must be >= 0, got: {self.max_generation_retries}")
        if self.recursion_limit > 100_000:
            raise ValueError(f"CONTENT_RECURSION_LIMIT must be <= 100000, got: {self.recursion_limit}")
        return RuntimeSettings(
            model_name=model_name,
            generation_timeout_seconds=self.generation_timeout_seconds,
            max_generation_retries=self.max_generation_retries,
            max_source_attempts=self.max_source_attempts,
            max_search_attempts=self.max_search_attempts,
            reachability_timeout_ms=self.reachability_timeout_ms,
            sandbox_timeout_ms=self.sandbox_timeout_ms,
            sandbox_python=self.sandbox_python.strip(),
            recursion_limit=self.recursion_limit,
            catalog_path=self.catalog_path.strip(),
            catalog_ttl_seconds=self.catalog_ttl_seconds,
            output_root=self.output_root.strip(),
            batch_workers=self.batch_workers,
        )

    def output_path(self, repo_root: Path) -> Path:
        path = Path(self.output_root)
        return path if path.is_absolute() else repo_root / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
