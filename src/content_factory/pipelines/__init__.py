from .base import ContentPipeline, PipelineResult
from .blog import BlogPipeline, BlogState, BlogTopic
from .certification import CertificationPipeline, CertificationState
from .coding_challenge import CodingChallengePipeline, CodingChallengeState
from .linkedin import ArticlePost, LinkedInPipeline, LinkedInState
from .rca_blog import RcaBlogPipeline, RcaBlogState

__all__ = [
    "ArticlePost",
    "BlogPipeline",
    "BlogState",
    "BlogTopic",
    "CertificationPipeline",
    "CertificationState",
    "CodingChallengePipeline",
    "CodingChallengeState",
    "ContentPipeline",
    "LinkedInPipeline",
    "LinkedInState",
    "PipelineResult",
    "RcaBlogPipeline",
    "RcaBlogState",
]
