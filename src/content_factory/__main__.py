"""Entry point for `python -m content_factory` and the `content-factory` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from content_factory.generation import ContentGenerator, LLMContentGenerator
from content_factory.pipelines import (
    ArticlePost,
    BlogPipeline,
    BlogTopic,
    CertificationPipeline,
    CodingChallengePipeline,
    LinkedInPipeline,
    PipelineResult,
    RcaBlogPipeline,
)
from content_factory.settings import RuntimeSettings
from content_factory.store import ContentStore, JsonFileContentStore, new_content_id
from content_factory.workflow import BatchOutcome, RunStatus, run_batch

Job = Callable[[], PipelineResult]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate content through the workflow pipelines")
    parser.add_argument("--output-root", type=Path, default=None, help="Directory for generated content (default: CONTENT_OUTPUT_ROOT)")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent runs (default: CONTENT_BATCH_WORKERS)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    challenge = commands.add_parser("coding-challenge", help="Generate sandbox-verified coding challenges")
    challenge.add_argument("--count", type=int, default=1, help="Number of independent challenges")
    challenge.add_argument("--difficulty", default="medium", choices=["easy", "medium", "hard"])
    challenge.add_argument("--category", default="arrays")

    certification = commands.add_parser("certification", help="Generate certification exam questions")
    target = certification.add_mutually_exclusive_group(required=True)
    target.add_argument("--cert", help="Certification id from the catalog")
    target.add_argument("--channel", help="Channel id; runs once per mapped certification")
    certification.add_argument("--domain", default="", help="Domain id (default: weighted random)")
    certification.add_argument("--count", type=int, default=5, help="Questions per run")
    certification.add_argument("--difficulty", default="intermediate")

    blog = commands.add_parser("blog", help="Generate real-world-case blog posts")
    blog.add_argument("--question-file", type=Path, required=True, help="JSON object or array of interview questions")

    rca = commands.add_parser("rca-blog", help="Generate root-cause-analysis blog posts")
    rca.add_argument("--company", action="append", required=True, help="Company to research (repeatable)")

    linkedin = commands.add_parser("linkedin", help="Generate LinkedIn posts for published articles")
    linkedin.add_argument("--post-file", type=Path, required=True, help="JSON object or array of articles")
    return parser.parse_args(argv)


def load_records(path: Path) -> list[dict[str, Any]]:
    if not path.is_file():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    payload = json.loads(path.read_text(encoding="utf-8"))
    records = payload if isinstance(payload, list) else [payload]
    if not all(isinstance(record, dict) for record in records):
        raise ValueError(f"{path} must contain a JSON object or an array of objects")
    return records


def build_jobs(args: argparse.Namespace, generator: ContentGenerator, settings: RuntimeSettings) -> tuple[str, list[Job]]:
    """Return the store kind and one job per independent run."""
    if args.command == "coding-challenge":
        if args.count < 1:
            raise ValueError("--count must be >= 1")
        pipeline = CodingChallengePipeline(generator=generator, settings=settings)
        return "coding-challenges", [
            lambda: pipeline.run(difficulty=args.difficulty, category=args.category) for _ in range(args.count)
        ]

    if args.command == "certification":
        pipeline = CertificationPipeline(generator=generator, settings=settings)
        certifications = [args.cert] if args.cert else pipeline.certifications_for_channel(args.channel)
        if not certifications:
            raise ValueError(f"No certifications are mapped to channel '{args.channel}'")
        return "certification-questions", [
            (lambda cert=cert: pipeline.run(cert, domain=args.domain, difficulty=args.difficulty, count=args.count))
            for cert in certifications
        ]

    if args.command == "blog":
        pipeline = BlogPipeline(generator=generator, settings=settings)
        topics = [BlogTopic.from_payload(record) for record in load_records(args.question_file)]
        return "blog-posts", [(lambda topic=topic: pipeline.run(topic)) for topic in topics]

    if args.command == "rca-blog":
        pipeline = RcaBlogPipeline(generator=generator, settings=settings)
        return "rca-blog-posts", [(lambda company=company: pipeline.run(company)) for company in args.company]

    if args.command == "linkedin":
        pipeline = LinkedInPipeline(generator=generator, settings=settings)
        articles = [ArticlePost.from_payload(record) for record in load_records(args.post_file)]
        return "linkedin-posts", [(lambda article=article: pipeline.run(article)) for article in articles]

    raise ValueError(f"Unknown command: {args.command}")


def _content_title(content: dict[str, Any]) -> str:
    return str(content.get("title") or content.get("post_id") or content.get("certification_id") or "item")


def persist(outcomes: Sequence[BatchOutcome[PipelineResult]], store: ContentStore, kind: str) -> list[dict[str, Any]]:
    """Save completed runs and return one summary row per outcome.

    Skipped and failed runs are reported but never persisted, so the entity
    they were about stays eligible for a later run.
    """
    summary: list[dict[str, Any]] = []
    for outcome in outcomes:
        row: dict[str, Any] = {"index": outcome.index, "status": outcome.status}
        result = outcome.result
        if not outcome.ok or result is None:
            row.update(error=outcome.error, error_type=outcome.error_type)
        elif result.completed and result.content is not None:
            content_id = new_content_id(_content_title(result.content))
            row["path"] = str(store.save(kind, content_id, result.content, status=result.status))
            row["id"] = content_id
        else:
            row.update(reason=result.reason, error=result.error)
        summary.append(row)
    return summary


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = RuntimeSettings.from_env()
        generator = LLMContentGenerator(settings)
        kind, jobs = build_jobs(args, generator, settings)
    except (OSError, ValueError) as exc:
        logging.error("Unable to prepare runs: %s", exc)
        return 1

    output_root = args.output_root if args.output_root is not None else settings.output_path(Path.cwd())
    store = JsonFileContentStore(output_root)
    workers = args.workers if args.workers is not None else settings.batch_workers

    outcomes = run_batch(jobs, max_workers=workers)
    summary = persist(outcomes, store, kind)
    for row in summary:
        print(json.dumps(row, sort_keys=True, default=str))

    completed = sum(1 for outcome in outcomes if outcome.status == RunStatus.COMPLETED.value)
    print(f"completed={completed}/{len(outcomes)}")
    return 0 if completed == len(outcomes) else 1


if __name__ == "__main__":
    raise SystemExit(main())
