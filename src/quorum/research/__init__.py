"""Deep-research clients: background jobs, streaming, polling and recovery."""

# Import clients to trigger auto-registration with research_client_registry.
from .base import ResearchClient, build_research_prompt, research_client_registry
from .errors import ProviderError, ResearchError, ResearchTransportError, categorize, classify
from .gemini import GeminiResearchClient
from .openai import OpenAIResearchClient
from .poll import poll_job
from .types import JobSnapshot, JobStatus, PollResult, StreamEvent

__all__ = [
    "GeminiResearchClient",
    "JobSnapshot",
    "JobStatus",
    "OpenAIResearchClient",
    "PollResult",
    "ProviderError",
    "ResearchClient",
    "ResearchError",
    "ResearchTransportError",
    "StreamEvent",
    "build_research_prompt",
    "categorize",
    "classify",
    "poll_job",
    "research_client_registry",
]
