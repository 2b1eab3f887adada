from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

JSON_ONLY = "Respond with a single valid JSON document and nothing else. Do not wrap it in markdown."

PromptBuilder = Callable[[Mapping[str, Any]], str]

_BLOG_RULES = [
    "Every major claim carries an inline citation [n] pointing into the sources list",
    "At least 8 distinct, real sources; prefer official docs and engineering blogs",
    "At least 3 sections with practical, actionable content",
    "Never write in the first person",
]
_LINKEDIN_RULES = [
    "400-500 characters, 3-4 complete sentences",
    "Open with one hook sentence, close with a call to action",
    "At most two emojis; no hashtags and no links (they are added separately)",
]
_CHALLENGE_RULES = [
    "The sample solution is a single top-level function; starter code has the same signature",
    "At least 4 test cases; each input is the comma-separated JSON arguments of one call",
    "Each expected output is the JSON encoding of the return value",
    "State time and space complexity of the sample solution",
]
_CERTIFICATION_RULES = [
    "Questions align with the official exam objectives and end with a question mark",
    "Exactly 4 plausible options with exactly ONE correct answer",
    "The explanation says why the wrong options are wrong",
    "Test practical knowledge, not memorization",
]


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _real_world_case(params: Mapping[str, Any]) -> str:
    question = params.get("question", "")
    channel = params.get("channel") or "general"
    excluded = list(params.get("exclude_companies") or [])
    exclusion = ""
    if excluded:
        exclusion = f"Do NOT use any of these companies, their sources could not be verified: {', '.join(excluded)}\n"
    return f"""Find a real, publicly documented engineering case study that illustrates this interview topic.

Question: {question}
Topic/Channel: {channel}
{exclusion}
Score how interesting the case is for a technical blog post from 0 to 10 and explain why.
Only cite a source URL you are confident exists (engineering blog, postmortem, conference talk).

Output JSON:
{{"company": "Company name or null", "title": "Case title", "summary": "What happened",
 "sourceUrl": "https://...", "interestScore": 0, "reason": "Why this score"}}

{JSON_ONLY}"""


def _blog(params: Mapping[str, Any]) -> str:
    question = params.get("question", "")
    answer = params.get("answer", "")
    case = json.dumps(params.get("real_world_case") or {}, ensure_ascii=False)
    return f"""Write an engaging technical blog post that answers an interview question through a real-world case.

Question: {question}
Reference answer: {answer}
Real-world case: {case}

Requirements:
{_bullets(_BLOG_RULES)}

Output JSON:
{{"title": "...", "introduction": "...", "sections": [{{"heading": "...", "content": "..."}}],
 "conclusion": "...", "sources": [{{"title": "...", "url": "https://...", "type": "blog|docs|paper"}}],
 "tags": ["..."]}}

{JSON_ONLY}"""


def _linkedin_story(params: Mapping[str, Any]) -> str:
    title = params.get("title", "")
    channel = params.get("channel") or "tech"
    excerpt = params.get("excerpt") or "Technical interview preparation content"
    return f"""Create a SHORT engaging LinkedIn post for a technical blog article.

Article Title: {title}
Topic/Channel: {channel}
Summary: {excerpt}

Requirements:
{_bullets(_LINKEDIN_RULES)}

Output JSON: {{"story": "..."}}

{JSON_ONLY}"""


def _coding_challenge(params: Mapping[str, Any]) -> str:
    difficulty = params.get("difficulty", "medium")
    category = params.get("category", "")
    topic = f" about {category}" if category else ""
    return f"""Design an original {difficulty} coding interview challenge{topic} in Python.

Requirements:
{_bullets(_CHALLENGE_RULES)}

Output JSON:
{{"title": "...", "description": "...", "difficulty": "{difficulty}", "category": "{category}",
 "starterCode": "def solve(...):\\n    pass", "sampleSolution": "def solve(...): ...",
 "entryPoint": "solve",
 "testCases": [{{"input": "[1, 2, 3], 4", "expectedOutput": "true", "description": "..."}}],
 "complexity": {{"time": "O(n)", "space": "O(1)"}},
 "hints": ["..."], "tags": ["..."], "companies": ["..."]}}

{JSON_ONLY}"""


def _rca_search(params: Mapping[str, Any]) -> str:
    company = params.get("company") or "any well-known technology company"
    return f"""Find real, publicly documented production incidents and root-cause analyses from {company}.

Return up to five incidents with a clear timeline, root cause and lesson learned.
Prefer official postmortems and status-page write-ups and include their URLs.

Output JSON:
{{"incidents": [{{"title": "...", "company": "...", "date": "YYYY-MM-DD", "description": "...",
 "lesson": "...", "sourceUrl": "https://..."}}]}}

{JSON_ONLY}"""


def _rca_blog(params: Mapping[str, Any]) -> str:
    incident = json.dumps(params.get("incident") or {}, ensure_ascii=False)
    return f"""Write a root-cause-analysis blog post about this production incident.

Incident: {incident}

Structure: what happened, timeline, root cause, impact, how it was fixed, lessons for engineers.
Cite the incident's source where relevant and never invent figures.

Output JSON:
{{"title": "...", "introduction": "...", "sections": [{{"heading": "...", "content": "..."}}],
 "conclusion": "...", "sources": [{{"title": "...", "url": "https://..."}}]}}

{JSON_ONLY}"""


def _certification_question(params: Mapping[str, Any]) -> str:
    certification = str(params.get("certification_id", "")).upper()
    domain_name = params.get("domain_name") or params.get("domain", "")
    weight = params.get("domain_weight", 0)
    count = params.get("count", 5)
    difficulty = params.get("difficulty", "intermediate")
    return f"""You are an expert certification exam question writer. Generate {count} high-quality MCQ questions.

CERTIFICATION: {certification}
DOMAIN: {domain_name} ({weight}% of exam)
DIFFICULTY: {difficulty}

Guidelines:
{_bullets(_CERTIFICATION_RULES)}

Output JSON:
{{"questions": [{{"question": "...?", "options": [{{"id": "a", "text": "...", "isCorrect": false}}],
 "explanation": "...", "difficulty": "intermediate", "tags": ["..."]}}]}}

{JSON_ONLY}"""


PROMPT_BUILDERS: dict[str, PromptBuilder] = {
    "realWorldCase": _real_world_case,
    "blog": _blog,
    "linkedinStory": _linkedin_story,
    "coding-challenge": _coding_challenge,
    "rcaSearch": _rca_search,
    "rcaBlog": _rca_blog,
    "certification-question": _certification_question,
}


def build_prompt(operation: str, params: Mapping[str, Any]) -> str:
    try:
        builder = PROMPT_BUILDERS[operation]
    except KeyError as exc:
        raise KeyError(f"no prompt template for operation '{operation}'") from exc
    return builder(params)
