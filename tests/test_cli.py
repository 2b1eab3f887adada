from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import FakeGenerator

from content_factory import __main__ as cli
from content_factory.store import JsonFileContentStore

STORY = (
    "Our cache stampede took the homepage down twice in one week. Request coalescing fixed it in an afternoon, "
    "and the lesson stuck with the whole team."
)


def _use_generator(monkeypatch: pytest.MonkeyPatch, generator: FakeGenerator) -> None:
    monkeypatch.setattr(cli, "LLMContentGenerator", lambda settings: generator)


def test_parse_args_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args([])
    args = cli.parse_args(["--workers", "2", "rca-blog", "--company", "Acme", "--company", "Globex"])
    assert args.company == ["Acme", "Globex"]
    assert args.workers == 2


def test_linkedin_command_persists_completed_posts(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys) -> None:
    _use_generator(monkeypatch, FakeGenerator({"linkedinStory": [{"story": STORY}]}))
    posts = tmp_path / "posts.json"
    posts.write_text(
        json.dumps(
            [
                {"id": "p1", "title": "Cache stampedes", "url": "https://blog.example/stampede", "channel": "backend"},
                {"id": "p2", "title": "Request coalescing", "url": "https://blog.example/coalesce"},
            ]
        ),
        encoding="utf-8",
    )
    output = tmp_path / "out"

    exit_code = cli.main(["--output-root", str(output), "--workers", "2", "linkedin", "--post-file", str(posts)])

    assert exit_code == 0
    store = JsonFileContentStore(output)
    saved = store.list_ids("linkedin-posts")
    assert len(saved) == 2
    assert {store.load("linkedin-posts", content_id)["post_id"] for content_id in saved} == {"p1", "p2"}
    assert "completed=2/2" in capsys.readouterr().out


def test_skipped_runs_are_reported_but_not_persisted(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys) -> None:
    _use_generator(monkeypatch, FakeGenerator({"realWorldCase": [{"interestScore": 0, "reason": "Nothing public"}]}))
    questions = tmp_path / "questions.json"
    questions.write_text(json.dumps({"id": "q1", "question": "What is a bloom filter?"}), encoding="utf-8")
    output = tmp_path / "out"

    exit_code = cli.main(["--output-root", str(output), "blog", "--question-file", str(questions)])

    assert exit_code == 1
    assert JsonFileContentStore(output).list_ids("blog-posts") == []
    lines = capsys.readouterr().out.strip().splitlines()
    assert json.loads(lines[0])["status"] == "skipped"
    assert lines[-1] == "completed=0/1"


def test_missing_input_file_fails_before_running(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _use_generator(monkeypatch, FakeGenerator({}))
    assert cli.main(["--output-root", str(tmp_path), "linkedin", "--post-file", str(tmp_path / "nope.json")]) == 1


def test_unmapped_channel_fails_before_running(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _use_generator(monkeypatch, FakeGenerator({}))
    assert cli.main(["--output-root", str(tmp_path), "certification", "--channel", "gardening"]) == 1
