from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import tempfile
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator, Protocol

from .canonical import to_json_value

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"
_INDEX_NAME = "index.json"
_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,199}$")


class ContentStore(Protocol):
    """Persistence collaborator: save and load generated content by kind and id."""

    def save(self, kind: str, content_id: str, payload: Any, *, status: str = "completed") -> Path:
        ...

    def load(self, kind: str, content_id: str) -> dict[str, Any]:
        ...

    def list_ids(self, kind: str) -> list[str]:
        ...


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on a ``.lock`` sidecar of *path* for the duration of the context."""
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* through a same-directory temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def slugify_name(name: str, *, max_length: int = 48) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", name.lower()).strip("-")
    slug = re.sub(r"-{2,}", "-", slug)
    return slug[:max_length].rstrip("-")


def new_content_id(title: str) -> str:
    """Readable, collision-resistant id: a title slug plus a short random suffix."""
    return f"{slugify_name(title) or 'item'}-{uuid.uuid4().hex[:8]}"


def _validate_segment(value: str, label: str) -> str:
    if not _SAFE_ID.match(value):
        raise ValueError(f"{label} must match {_SAFE_ID.pattern}, got: {value!r}")
    return value


class JsonFileContentStore:
    """One pretty-printed JSON document per item under ``<root>/<kind>/<id>.json``.

    Each kind also keeps an ``index.json`` of saved ids with their run status
    and save time; index updates are serialized with a file lock so concurrent
    batch workers can share a store.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _kind_dir(self, kind: str) -> Path:
        return self.root / _validate_segment(kind, "kind")

    def path_for(self, kind: str, content_id: str) -> Path:
        return self._kind_dir(kind) / f"{_validate_segment(content_id, 'content_id')}.json"

    def save(self, kind: str, content_id: str, payload: Any, *, status: str = "completed") -> Path:
        path = self.path_for(kind, content_id)
        document = json.dumps(to_json_value(payload), indent=2, sort_keys=True, ensure_ascii=False)
        _atomic_write_text(path, document + "\n")

        index_path = self._kind_dir(kind) / _INDEX_NAME
        with _locked_file(index_path):
            index = self._read_index(index_path)
            index[content_id] = {"status": status, "saved_at": datetime.now(UTC).isoformat()}
            _atomic_write_text(index_path, json.dumps(index, indent=2, sort_keys=True) + "\n")
        logger.info("Saved %s/%s (%s)", kind, content_id, status)
        return path

    def load(self, kind: str, content_id: str) -> dict[str, Any]:
        path = self.path_for(kind, content_id)
        if not path.is_file():
            raise FileNotFoundError(f"{kind} '{content_id}' not found: {path}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{kind} '{content_id}' at {path} is not valid JSON") from exc

    def list_ids(self, kind: str) -> list[str]:
        return sorted(self._read_index(self._kind_dir(kind) / _INDEX_NAME))

    @staticmethod
    def _read_index(path: Path) -> dict[str, Any]:
        if not path.is_file():
            return {}
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"content index at {path} is corrupt") from exc
