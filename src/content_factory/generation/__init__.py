from .llm import (
    ContentGenerator,
    LLMContentGenerator,
    StructuredOutputAdapter,
    bind_structured_output,
    ensure_openai_api_key,
    get_chat_model,
    get_structured_chat_model,
    normalize_structured_output,
)
from .models import (
    RESULT_MODELS,
    BlogResult,
    BlogSection,
    BlogSource,
    CertificationOption,
    CertificationQuestion,
    CertificationQuestionBatch,
    ChallengeComplexity,
    ChallengeTestCase,
    CodingChallengeResult,
    GenerationModel,
    Incident,
    LinkedInStoryResult,
    RcaBlogResult,
    RcaSearchResult,
    RealWorldCaseResult,
    parse_generation_result,
)
from .prompts import build_prompt

__all__ = [
    "RESULT_MODELS",
    "BlogResult",
    "BlogSection",
    "BlogSource",
    "CertificationOption",
    "CertificationQuestion",
    "CertificationQuestionBatch",
    "ChallengeComplexity",
    "ChallengeTestCase",
    "CodingChallengeResult",
    "ContentGenerator",
    "GenerationModel",
    "Incident",
    "LLMContentGenerator",
    "LinkedInStoryResult",
    "RcaBlogResult",
    "RcaSearchResult",
    "RealWorldCaseResult",
    "StructuredOutputAdapter",
    "bind_structured_output",
    "build_prompt",
    "ensure_openai_api_key",
    "get_chat_model",
    "get_structured_chat_model",
    "normalize_structured_output",
    "parse_generation_result",
]
