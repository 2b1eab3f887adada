from __future__ import annotations

import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from content_factory.errors import ExecutionFailure
from content_factory.sandbox import SandboxHarness, extract_entry_point
from content_factory.sandbox import harness as harness_module

ADD = "def add(a, b):\n    return a + b\n"


def _harness(tmp_path: Path) -> SandboxHarness:
    return SandboxHarness(sys.executable, temp_dir=tmp_path)


def _leftovers(tmp_path: Path) -> list[str]:
    return sorted(path.name for path in tmp_path.iterdir())


def test_executes_entry_point_with_json_arguments(tmp_path: Path) -> None:
    result = _harness(tmp_path).execute(ADD, "add", "2, 3", 10_000)
    assert result.value == 5
    assert result.output == "5"
    assert _leftovers(tmp_path) == []


def test_output_is_canonical_json(tmp_path: Path) -> None:
    source = "def group(words):\n    return {'z': sorted(words), 'a': (1, 2), 'm': None}\n"
    result = _harness(tmp_path).execute(source, "group", '["b", "a"]', 10_000)
    assert result.output == '{"a":[1,2],"m":null,"z":["a","b"]}'


def test_python_literal_and_single_tuple_arguments(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    assert harness.execute(ADD, "add", "(1, 2)", 10_000).value == 3
    echo = "def echo(*args):\n    return list(args)\n"
    assert harness.execute(echo, "echo", "'a', True, None", 10_000).value == ["a", True, None]
    assert harness.execute(echo, "echo", "", 10_000).value == []


def test_solution_stdout_does_not_corrupt_result(tmp_path: Path) -> None:
    source = "def noisy(n):\n    print('debugging', n)\n    return n * 2\n"
    assert _harness(tmp_path).execute(source, "noisy", "21", 10_000).value == 42


def test_hash_seed_is_pinned(tmp_path: Path) -> None:
    source = "def h():\n    return hash('determinism')\n"
    harness = _harness(tmp_path)
    assert harness.execute(source, "h", "", 10_000).value == harness.execute(source, "h", "", 10_000).value


def test_missing_entry_point_is_reported(tmp_path: Path) -> None:
    with pytest.raises(ExecutionFailure) as excinfo:
        _harness(tmp_path).execute(ADD, "subtract", "1, 2", 10_000)
    assert excinfo.value.kind == "entry_point"
    assert _leftovers(tmp_path) == []


def test_invalid_entry_point_name_never_spawns(tmp_path: Path) -> None:
    with pytest.raises(ExecutionFailure) as excinfo:
        _harness(tmp_path).execute(ADD, "add; import os", "1, 2", 10_000)
    assert excinfo.value.kind == "entry_point"
    assert _leftovers(tmp_path) == []


def test_raising_solution_is_a_non_zero_exit(tmp_path: Path) -> None:
    source = "def boom():\n    raise ValueError('bad input')\n"
    with pytest.raises(ExecutionFailure) as excinfo:
        _harness(tmp_path).execute(source, "boom", "", 10_000)
    assert excinfo.value.kind == "exit"
    assert "bad input" in excinfo.value.message
    assert _leftovers(tmp_path) == []


def test_timeout_kills_the_child(tmp_path: Path) -> None:
    source = "import time\n\ndef slow():\n    time.sleep(30)\n"
    with pytest.raises(ExecutionFailure) as excinfo:
        _harness(tmp_path).execute(source, "slow", "", 300)
    assert excinfo.value.kind == "timeout"
    assert _leftovers(tmp_path) == []


def test_spawn_failure_is_reported(tmp_path: Path) -> None:
    harness = SandboxHarness(str(tmp_path / "no-such-python"), temp_dir=tmp_path)
    with pytest.raises(ExecutionFailure) as excinfo:
        harness.execute(ADD, "add", "1, 2", 10_000)
    assert excinfo.value.kind == "spawn"
    assert _leftovers(tmp_path) == []


def test_cleanup_failure_is_swallowed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(path: str) -> None:
        raise PermissionError(path)

    monkeypatch.setattr(harness_module.shutil, "rmtree", refuse)
    result = _harness(tmp_path).execute(ADD, "add", "4, 5", 10_000)
    assert result.value == 9


SHADOW_JSON = "loads = lambda text: []\ndumps = lambda obj, **kwargs: \"[]\"\n"


def test_module_planted_in_temp_dir_does_not_shadow_stdlib(tmp_path: Path) -> None:
    (tmp_path / "json.py").write_text(SHADOW_JSON, encoding="utf-8")
    result = _harness(tmp_path).execute(ADD, "add", "2, 3", 10_000)
    assert result.value == 5
    assert _leftovers(tmp_path) == ["json.py"]


def test_module_beside_the_script_does_not_shadow_stdlib(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    staging = tmp_path / "staging"
    staging.mkdir()
    (staging / "json.py").write_text(SHADOW_JSON, encoding="utf-8")
    monkeypatch.setattr(harness_module.tempfile, "mkdtemp", lambda **kwargs: str(staging))

    result = _harness(tmp_path).execute(ADD, "add", "2, 3", 10_000)

    assert result.value == 5
    assert _leftovers(tmp_path) == []


def test_concurrent_executions_do_not_share_files(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    source = "def square(n):\n    return n * n\n"
    with ThreadPoolExecutor(max_workers=4) as pool:
        values = list(pool.map(lambda n: harness.execute(source, "square", str(n), 10_000).value, range(6)))
    assert values == [0, 1, 4, 9, 16, 25]
    assert _leftovers(tmp_path) == []


def test_extract_entry_point_picks_first_top_level_function() -> None:
    source = "import math\n\nclass Helper:\n    def method(self):\n        pass\n\ndef solve(x):\n    def inner():\n        pass\n    return x\n\ndef other():\n    pass\n"
    assert extract_entry_point(source) == "solve"
    assert extract_entry_point("x = 1\n") is None
    assert extract_entry_point("def broken(:\n") is None


def test_parse_result_requires_marker_line() -> None:
    with pytest.raises(ExecutionFailure) as excinfo:
        harness_module._parse_result("just some output\n")
    assert excinfo.value.kind == "output"
    parsed = harness_module._parse_result(f"noise\n{harness_module.RESULT_MARKER}[1, 2]\n")
    assert parsed.output == "[1,2]"
