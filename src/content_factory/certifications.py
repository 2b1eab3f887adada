"""Certification catalog: exam domains with weights and channel mappings.

The catalog is one versioned JSON artifact validated by pydantic. A
:class:`CertificationCatalogCache` owns the loaded value together with the
time it was fetched, refreshes it lazily once the TTL expires, and exposes an
explicit :meth:`~CertificationCatalogCache.reload`.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

SUPPORTED_CATALOG_VERSION = 1

T = TypeVar("T")


class CertificationDomain(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    weight: int = Field(gt=0)


class Certification(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    domains: list[CertificationDomain] = Field(min_length=1)
    channel_mappings: list[str] = Field(default_factory=list)

    def domain(self, domain_id: str) -> CertificationDomain:
        for domain in self.domains:
            if domain.id == domain_id:
                return domain
        raise KeyError(f"{self.id} has no domain '{domain_id}'")


class CertificationCatalog(BaseModel):
    version: int
    certifications: list[Certification]

    @model_validator(mode="after")
    def _check(self) -> "CertificationCatalog":
        if self.version != SUPPORTED_CATALOG_VERSION:
            raise ValueError(f"unsupported catalog version {self.version}, expected {SUPPORTED_CATALOG_VERSION}")
        seen: set[str] = set()
        for certification in self.certifications:
            if certification.id in seen:
                raise ValueError(f"duplicate certification id '{certification.id}'")
            seen.add(certification.id)
        return self

    def get(self, certification_id: str) -> Certification:
        for certification in self.certifications:
            if certification.id == certification_id:
                return certification
        raise KeyError(f"unknown certification '{certification_id}'")

    def channel_to_certifications(self) -> dict[str, list[str]]:
        mapping: dict[str, list[str]] = {}
        for certification in self.certifications:
            for channel in certification.channel_mappings:
                ids = mapping.setdefault(channel, [])
                if certification.id not in ids:
                    ids.append(certification.id)
        return mapping

    def for_channel(self, channel: str) -> list[str]:
        return self.channel_to_certifications().get(channel, [])


def load_catalog(path: Path) -> CertificationCatalog:
    """Read and validate the catalog at ``path``.

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: If the file is not valid JSON or fails schema validation.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    try:
        catalog = CertificationCatalog.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"{path} failed catalog validation: {exc}") from exc
    logger.info("Loaded %d certification(s) from %s", len(catalog.certifications), path)
    return catalog


@dataclass(frozen=True)
class CachedValue(Generic[T]):
    value: T
    fetched_at: float


class CertificationCatalogCache:
    """Lazily refreshed catalog holder with an injectable clock."""

    def __init__(
        self,
        loader: Callable[[], CertificationCatalog],
        *,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: CachedValue[CertificationCatalog] | None = None

    @classmethod
    def from_path(cls, path: Path, *, ttl_seconds: float = 60.0) -> "CertificationCatalogCache":
        return cls(lambda: load_catalog(path), ttl_seconds=ttl_seconds)

    @property
    def cached(self) -> CachedValue[CertificationCatalog] | None:
        return self._cached

    def is_stale(self) -> bool:
        cached = self._cached
        return cached is None or (self._clock() - cached.fetched_at) >= self.ttl_seconds

    def get(self) -> CertificationCatalog:
        with self._lock:
            if self.is_stale():
                self._cached = CachedValue(value=self._loader(), fetched_at=self._clock())
            assert self._cached is not None
            return self._cached.value

    def reload(self) -> CertificationCatalog:
        with self._lock:
            self._cached = CachedValue(value=self._loader(), fetched_at=self._clock())
            logger.info("Certification catalog reloaded")
            return self._cached.value
