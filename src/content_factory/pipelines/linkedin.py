"""LinkedIn post pipeline.

``generate_story`` retries within its budget and hands over to a template
story when the generator keeps failing; the remaining nodes are a linear
chain of cleanup and quality checks that never fail the run on style issues.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, TypedDict

from ..errors import GenerationFailure
from ..workflow import END, START, GraphDefinition, RunStatus, retry_router
from .base import ContentPipeline, PipelineResult

PRACTICE_LINK = "https://open-interview.github.io/"
DEFAULT_TAGS = "#tech #engineering #interview"
LINKEDIN_LIMIT = 3000
MIN_POST_LENGTH = 100

_HASHTAG_RE = re.compile(r"#\w+")
_URL_RE = re.compile(r"https?://\S+")
_SENTENCE_RE = re.compile(r"[.!?]+")

CHANNEL_EMOJI = {
    "system-design": "🏗️",
    "devops": "⚙️",
    "frontend": "🎨",
    "backend": "🔧",
    "database": "🗄️",
    "security": "🔐",
    "ml-ai": "🤖",
    "generative-ai": "🤖",
    "algorithms": "📊",
    "testing": "🧪",
    "sre": "📈",
    "kubernetes": "☸️",
    "aws": "☁️",
    "terraform": "🏗️",
    "behavioral": "💬",
    "data-engineering": "📊",
    "machine-learning": "🤖",
    "prompt-engineering": "💡",
    "llm-ops": "🔄",
}


class LinkedInState(TypedDict):
    post_id: str
    title: str
    url: str
    excerpt: str
    channel: str
    tags: str
    story: str
    story_attempts: int
    max_story_attempts: int
    final_content: str
    cleaned_tags: str
    quality_issues: Annotated[list[str], operator.add]
    post: dict[str, Any] | None
    status: str
    reason: str | None
    error: str | None


@dataclass(frozen=True)
class ArticlePost:
    post_id: str
    title: str
    url: str
    excerpt: str = ""
    channel: str = ""
    tags: str = DEFAULT_TAGS

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ArticlePost":
        tags = payload.get("tags") or DEFAULT_TAGS
        if not isinstance(tags, str):
            tags = " ".join(tag if str(tag).startswith("#") else f"#{tag}" for tag in tags)
        return cls(
            post_id=str(payload.get("post_id") or payload.get("id") or ""),
            title=str(payload["title"]),
            url=str(payload["url"]),
            excerpt=str(payload.get("excerpt", "")),
            channel=str(payload.get("channel", "")),
            tags=tags,
        )


def channel_emoji(channel: str) -> str:
    return CHANNEL_EMOJI.get(channel, "📝")


def dedupe_tags(tags: str) -> str:
    """Drop case-insensitive duplicate hashtags, keeping the first spelling of each."""
    seen: set[str] = set()
    unique: list[str] = []
    for tag in _HASHTAG_RE.findall(tags or ""):
        if tag.lower() in seen:
            continue
        seen.add(tag.lower())
        unique.append(tag)
    return " ".join(unique) or DEFAULT_TAGS


def clean_story(story: str) -> tuple[str, list[str]]:
    issues: list[str] = []
    cleaned = story
    hashtags = _HASHTAG_RE.findall(cleaned)
    if hashtags:
        issues.append(f"Removed {len(hashtags)} hashtags from story")
        cleaned = _HASHTAG_RE.sub("", cleaned).strip()
    urls = _URL_RE.findall(cleaned)
    if urls:
        issues.append(f"Removed {len(urls)} URLs from story")
        cleaned = _URL_RE.sub("", cleaned).strip()

    sentences = [part.strip().lower() for part in _SENTENCE_RE.split(cleaned) if len(part.strip()) > 20]
    if sentences and len(set(sentences)) < len(sentences) * 0.8:
        issues.append("Possible repeated content detected")
    if len(cleaned) > 1500:
        issues.append("Story may be too long")
    if len(cleaned) < MIN_POST_LENGTH:
        issues.append("Story may be too short")
    return cleaned, issues


class LinkedInPipeline(ContentPipeline):
    name = "linkedin"
    content_field = "post"

    def _build_graph(self) -> GraphDefinition:
        graph = GraphDefinition(self.name, LinkedInState)
        graph.add_node("generate_story", self._generate_story_node)
        graph.add_node("fallback_story", self._fallback_story_node)
        graph.add_node("quality_check_1", self._quality_check_1_node)
        graph.add_node("build_post", self._build_post_node)
        graph.add_node("quality_check_2", self._quality_check_2_node)
        graph.add_node("final_validate", self._final_validate_node)

        graph.add_edge(START, "generate_story")
        graph.add_router(
            "generate_story",
            retry_router(
                success=lambda state: bool(state["story"]),
                counter="story_attempts",
                limit="max_story_attempts",
                retry="generate_story",
                forward="quality_check_1",
                fallback="fallback_story",
            ),
            {"generate_story", "quality_check_1", "fallback_story"},
        )
        graph.add_edge("fallback_story", "quality_check_1")
        graph.add_edge("quality_check_1", "build_post")
        graph.add_edge("build_post", "quality_check_2")
        graph.add_edge("quality_check_2", "final_validate")
        graph.add_edge("final_validate", END)
        return graph

    def initial_state(self, article: ArticlePost) -> LinkedInState:
        return {
            "post_id": article.post_id,
            "title": article.title,
            "url": article.url,
            "excerpt": article.excerpt,
            "channel": article.channel,
            "tags": article.tags,
            "story": "",
            "story_attempts": 0,
            "max_story_attempts": self.settings.max_generation_attempts,
            "final_content": "",
            "cleaned_tags": "",
            "quality_issues": [],
            "post": None,
            "status": RunStatus.PENDING.value,
            "reason": None,
            "error": None,
        }

    def run(self, article: ArticlePost) -> PipelineResult:
        return self.execute(self.initial_state(article))

    def _generate_story_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        attempt = state["story_attempts"] + 1
        params = {
            "title": state["title"],
            "excerpt": state["excerpt"],
            "channel": state["channel"],
            "tags": state["tags"],
        }
        try:
            result = self._generate("linkedinStory", params)
        except GenerationFailure as exc:
            self.events.warning("generate_story", "generation_failed", attempt=attempt, error=exc.message)
            return {"story_attempts": attempt, "error": str(exc)}
        self.events.emit("generate_story", "generated", attempt=attempt, chars=len(result.story))
        return {"story": result.story, "story_attempts": attempt, "error": None}

    def _fallback_story_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        excerpt = state["excerpt"] or "Check out this in-depth technical article!"
        story = f"{channel_emoji(state['channel'])} {state['title']}\n\n{excerpt}"
        self.events.warning("fallback_story", "template_used", attempts=state["story_attempts"])
        return {"story": story, "quality_issues": ["AI generation failed, using fallback"]}

    def _quality_check_1_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        story, issues = clean_story(state["story"])
        if issues:
            self.events.emit("quality_check_1", "issues", issues=issues)
        return {"story": story, "quality_issues": issues}

    def _build_post_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        tags = dedupe_tags(state["tags"])
        lines = [
            state["story"],
            "",
            "🔗 Read the full article:",
            state["url"],
            "",
            "🎯 Practice interview questions:",
            PRACTICE_LINK,
            "",
            tags,
        ]
        return {"final_content": "\n".join(lines), "cleaned_tags": tags}

    def _quality_check_2_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        content = state["final_content"]
        issues: list[str] = []
        if len(content) > LINKEDIN_LIMIT:
            issues.append(f"Content exceeds LinkedIn limit ({LINKEDIN_LIMIT} chars)")
        hashtags = _HASHTAG_RE.findall(content)
        if len({tag.lower() for tag in hashtags}) < len(hashtags):
            issues.append("Duplicate hashtags still present")
        if state["url"] not in content:
            issues.append("Article URL missing")
        if PRACTICE_LINK not in content:
            issues.append("Practice link missing")
        if issues:
            self.events.warning("quality_check_2", "issues", issues=issues)
        return {"quality_issues": issues}

    def _final_validate_node(self, state: Mapping[str, Any]) -> dict[str, Any]:
        content = state["final_content"]
        if len(content) < MIN_POST_LENGTH:
            return {"status": RunStatus.ERROR.value, "error": "No valid content"}
        critical = [issue for issue in state["quality_issues"] if "exceeds" in issue or "missing" in issue]
        if critical:
            self.events.warning("final_validate", "critical_issues", issues=critical)
        post = {
            "post_id": state["post_id"],
            "content": content,
            "tags": state["cleaned_tags"],
            "story": state["story"],
            "quality_issues": list(state["quality_issues"]),
        }
        return {"status": RunStatus.COMPLETED.value, "post": post}
