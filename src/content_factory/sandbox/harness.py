from __future__ import annotations

import ast
import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import ExecutionFailure

logger = logging.getLogger(__name__)

RESULT_MARKER = "__CONTENT_FACTORY_RESULT__"
ENTRY_POINT_MISSING_EXIT = 3
_STDERR_TAIL = 2_000

_PRELUDE = """\
import ast as _cf_ast
import json as _cf_json
import math as _cf_math
import sys as _cf_sys
from collections.abc import Iterable as _CfIterable, Iterator as _CfIterator, Mapping as _CfMapping

"""

_EPILOGUE = """


def _cf_to_json(obj):
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if _cf_math.isfinite(obj) else str(obj)
    if isinstance(obj, (list, tuple)):
        return [_cf_to_json(item) for item in obj]
    if isinstance(obj, _CfMapping):
        return {str(key): _cf_to_json(value) for key, value in obj.items()}
    if isinstance(obj, _CfIterator):
        return [_cf_to_json(item) for item in obj]
    if isinstance(obj, _CfIterable) and not isinstance(obj, (bytes, bytearray)):
        return [_cf_to_json(item) for item in obj]
    return str(obj)


def _cf_args(raw):
    raw = raw.strip()
    if not raw:
        return ()
    try:
        values = tuple(_cf_json.loads("[" + raw + "]"))
    except ValueError:
        values = _cf_ast.literal_eval("(" + raw + ",)")
    if len(values) == 1 and isinstance(values[0], tuple):
        values = values[0]
    return values


_cf_entry = globals().get(__ENTRY__)
if not callable(_cf_entry):
    _cf_sys.stderr.write("entry point %r is not a callable defined by the submission\\n" % (__ENTRY__,))
    _cf_sys.exit(__MISSING_EXIT__)
_cf_result = _cf_entry(*_cf_args(_cf_sys.stdin.read()))
_cf_sys.stdout.write("\\n" + __MARKER__ + _cf_json.dumps(_cf_to_json(_cf_result)) + "\\n")
"""


@dataclass(frozen=True)
class ExecutionResult:
    """Canonical result of one sandboxed call.

    ``value`` is plain JSON data; ``output`` is its compact, key-sorted JSON text.
    """

    value: Any
    output: str


def canonical_output(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def extract_entry_point(source_code: str) -> str | None:
    """Return the name of the first top-level function defined by ``source_code``."""
    try:
        module = ast.parse(source_code)
    except SyntaxError:
        return None
    for node in module.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            return node.name
    return None


def build_wrapper(source_code: str, entry_point: str) -> str:
    epilogue = (
        _EPILOGUE.replace("__ENTRY__", repr(entry_point))
        .replace("__MISSING_EXIT__", str(ENTRY_POINT_MISSING_EXIT))
        .replace("__MARKER__", repr(RESULT_MARKER))
    )
    return _PRELUDE + source_code + epilogue


def _remove_quietly(path: str) -> None:
    try:
        shutil.rmtree(path)
    except OSError as exc:
        logger.debug("Could not remove sandbox staging directory %s: %s", path, exc)


class SandboxHarness:
    """Runs untrusted solution code in a fresh interpreter process.

    Each call stages its wrapper script in a private directory, runs it with
    a hard wall-clock timeout and removes the directory on every exit path,
    so concurrent calls never share files or interpreter state. The child
    runs with ``-P`` so modules lying next to the script never shadow the
    standard library.
    """

    def __init__(self, python_executable: str | None = None, *, temp_dir: str | Path | None = None) -> None:
        self.python_executable = python_executable or sys.executable
        self.temp_dir = str(temp_dir) if temp_dir is not None else None

    def _environment(self) -> dict[str, str]:
        return {
            "PATH": os.environ.get("PATH", ""),
            "PYTHONHASHSEED": "0",
            "PYTHONIOENCODING": "utf-8",
            "PYTHONDONTWRITEBYTECODE": "1",
        }

    def execute(self, source_code: str, entry_point: str, serialized_args: str, timeout_ms: int) -> ExecutionResult:
        """Call ``entry_point(*args)`` from ``source_code`` in a child interpreter.

        Args:
            source_code: Python source defining the entry point.
            entry_point: Name of the function to call.
            serialized_args: Comma-separated JSON values (Python literals are accepted too).
            timeout_ms: Wall-clock budget for the whole child process.

        Returns:
            The JSON-converted return value.

        Raises:
            ExecutionFailure: On spawn errors, non-zero exit, timeout, a missing
                entry point or unparseable output.
        """
        if not entry_point or not entry_point.isidentifier():
            raise ExecutionFailure("entry_point", f"invalid entry point name {entry_point!r}")

        staging_dir = tempfile.mkdtemp(prefix="challenge_", dir=self.temp_dir)
        script_path = os.path.join(staging_dir, "challenge.py")
        try:
            with open(script_path, "w", encoding="utf-8") as handle:
                handle.write(build_wrapper(source_code, entry_point))
            try:
                completed = subprocess.run(
                    [self.python_executable, "-s", "-B", "-P", script_path],
                    input=serialized_args,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    timeout=timeout_ms / 1000.0,
                    env=self._environment(),
                    cwd=staging_dir,
                )
            except subprocess.TimeoutExpired as exc:
                raise ExecutionFailure("timeout", f"{entry_point} exceeded {timeout_ms} ms") from exc
            except OSError as exc:
                raise ExecutionFailure("spawn", f"could not start {self.python_executable}: {exc}") from exc
        finally:
            _remove_quietly(staging_dir)

        stderr = (completed.stderr or "").strip()[-_STDERR_TAIL:]
        if completed.returncode == ENTRY_POINT_MISSING_EXIT and "entry point" in stderr:
            raise ExecutionFailure("entry_point", stderr)
        if completed.returncode != 0:
            raise ExecutionFailure("exit", f"exit code {completed.returncode}: {stderr or 'no stderr'}")
        return _parse_result(completed.stdout or "")


def _parse_result(stdout: str) -> ExecutionResult:
    payload = None
    for line in reversed(stdout.splitlines()):
        if line.startswith(RESULT_MARKER):
            payload = line[len(RESULT_MARKER):]
            break
    if payload is None:
        raise ExecutionFailure("output", "child process produced no result line")
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ExecutionFailure("output", f"result line is not valid JSON: {exc}") from exc
    return ExecutionResult(value=value, output=canonical_output(value))
